# geomayora/schemas.py
import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class MeasurementStatus(str, Enum):
    PENDING = "Belum Diukur"
    IN_PROGRESS = "Sedang Diukur"
    COMPLETED = "Selesai Diukur"
    VERIFIED = "Terverifikasi"


class Village(str, Enum):
    DANGDEUR = "Desa Dangdeur"
    PABUARAN = "Desa Pabuaran"
    PANGKAT = "Desa Pangkat"
    SUMUR_BANDUNG = "Desa Sumur Bandung"


TEXT_FIELDS = ("no_gu", "owner_name", "village", "block", "plot_number", "document_number", "remarks")

# Fields every owner of one document should carry identically
DOCUMENT_SHARED_FIELDS = ("no_gu", "village", "block", "plot_number", "area")


def new_record_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


def coerce_status(value: Any) -> MeasurementStatus:
    """Map stored or imported status text to the enum; unknown -> PENDING."""
    if isinstance(value, MeasurementStatus):
        return value
    text = str(value).strip() if value is not None else ""
    for member in MeasurementStatus:
        if text == member.value or text == member.name:
            return member
    return MeasurementStatus.PENDING


def coerce_area(value: Any) -> float:
    try:
        area = float(value)
    except (TypeError, ValueError):
        return 0.0
    if area != area or area < 0:  # NaN or negative
        return 0.0
    return area


class _RecordFields(BaseModel):
    """
    Shared parcel fields. Python names are snake_case; the JSON API and the
    legacy browser blob use camelCase, both are accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    no_gu: str = ""
    owner_name: str = ""
    village: str = ""
    block: str = ""
    plot_number: str = ""
    document_number: str = ""
    area: float = 0.0
    status: MeasurementStatus = MeasurementStatus.PENDING
    remarks: str = ""
    file_link: Optional[str] = None

    @field_validator(*TEXT_FIELDS, mode="before")
    @classmethod
    def _default_text(cls, v):
        if v is None:
            return ""
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)

    @field_validator("area", mode="before")
    @classmethod
    def _default_area(cls, v):
        return coerce_area(v)

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, v):
        return coerce_status(v)

    @field_validator("file_link", mode="before")
    @classmethod
    def _blank_link(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class LandRecordForm(_RecordFields):
    """In-progress form state: a record without id/createdAt."""


class LandRecord(_RecordFields):
    id: str = Field(default_factory=new_record_id)
    created_at: int = Field(default_factory=now_ms)

    @classmethod
    def from_form(cls, form: LandRecordForm, **extra) -> "LandRecord":
        return cls(**form.model_dump(), **extra)

    def to_form(self) -> LandRecordForm:
        return LandRecordForm(**self.model_dump(exclude={"id", "created_at"}))

    def to_row(self, only_set: bool = False) -> dict:
        """Flat snake_case dict for the SQL backends."""
        data = self.model_dump(mode="json", exclude_unset=only_set)
        if only_set:
            data["id"] = self.id
        return data


class UserPermissions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_add: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_export_import: bool = False


class User(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str
    hashed_password: str
    email: str = ""
    permissions: UserPermissions = Field(default_factory=UserPermissions)
    is_super_admin: bool = False

    def to_row(self) -> dict:
        return {
            "username": self.username,
            "hashed_password": self.hashed_password,
            "email": self.email,
            "can_add": self.permissions.can_add,
            "can_edit": self.permissions.can_edit,
            "can_delete": self.permissions.can_delete,
            "can_export_import": self.permissions.can_export_import,
            "is_super_admin": self.is_super_admin,
        }

    @classmethod
    def from_row(cls, row: dict) -> "User":
        return cls(
            username=row["username"],
            hashed_password=row.get("hashed_password") or "",
            email=row.get("email") or "",
            permissions=UserPermissions(
                can_add=bool(row.get("can_add")),
                can_edit=bool(row.get("can_edit")),
                can_delete=bool(row.get("can_delete")),
                can_export_import=bool(row.get("can_export_import")),
            ),
            is_super_admin=bool(row.get("is_super_admin")),
        )


class UserPublic(BaseModel):
    """User as returned by the API (no password hash)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str
    email: str = ""
    permissions: UserPermissions = Field(default_factory=UserPermissions)
    is_super_admin: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            username=user.username,
            email=user.email,
            permissions=user.permissions,
            is_super_admin=user.is_super_admin,
        )


class UserCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=256)
    email: EmailStr
    permissions: UserPermissions = Field(default_factory=UserPermissions)
