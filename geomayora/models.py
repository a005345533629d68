# geomayora/models.py
from sqlalchemy import BigInteger, Boolean, Column, Float, Index, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class LandRecordRow(Base):
    __tablename__ = "land_records"

    id = Column(String, primary_key=True)

    # Parcel keys (not unique: owners share documents and drawings)
    no_gu = Column(String, nullable=True, index=True)
    document_number = Column(String, nullable=True, index=True)

    owner_name = Column(String, nullable=True)
    village = Column(String, nullable=True, index=True)
    block = Column(String, nullable=True)
    plot_number = Column(String, nullable=True)
    area = Column(Float, default=0.0)
    status = Column(String, nullable=True, index=True)
    remarks = Column(Text, nullable=True)
    file_link = Column(Text, nullable=True)

    # epoch milliseconds
    created_at = Column(BigInteger, nullable=False, index=True)

    __table_args__ = (
        Index("ix_land_records_gu_document", "no_gu", "document_number"),
    )


class UserRow(Base):
    __tablename__ = "users"

    username = Column(String, primary_key=True)
    hashed_password = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    can_add = Column(Boolean, default=False)
    can_edit = Column(Boolean, default=False)
    can_delete = Column(Boolean, default=False)
    can_export_import = Column(Boolean, default=False)
    is_super_admin = Column(Boolean, default=False)
