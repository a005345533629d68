# geomayora/config.py
"""
Application configuration.

Values come from the environment (a `.env` next to the project root is loaded
first). `Settings.from_env()` snapshots them so the app factory and the tests
can inject their own paths.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env before any os.getenv calls
load_dotenv(BASE_DIR / ".env")

DATA_DIR = BASE_DIR / "data"

# Key the old single-page app used for its localStorage blob
LEGACY_STORAGE_KEY = "geosip_land_records"

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class Settings:
    # Remote durable store (any SQLAlchemy async URL). Unset -> local only.
    remote_database_url: Optional[str] = None
    local_db_file: Path = DATA_DIR / "geomayora.db"
    legacy_storage_dir: Path = DATA_DIR / "legacy"

    jwt_secret: str = "change_this_in_prod"
    access_token_expire_minutes: int = 120

    superadmin_username: str = "superadmin"
    superadmin_email: str = "superadmin@example.com"
    superadmin_password: str = "change_this_in_prod"

    page_size: int = 10

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"

    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            remote_database_url=os.getenv("REMOTE_DATABASE_URL") or None,
            local_db_file=Path(os.getenv("LOCAL_DB_FILE", str(DATA_DIR / "geomayora.db"))),
            legacy_storage_dir=Path(os.getenv("LEGACY_STORAGE_DIR", str(DATA_DIR / "legacy"))),
            jwt_secret=os.getenv("JWT_SECRET", "change_this_in_prod"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "120")),
            superadmin_username=os.getenv("SUPERADMIN_USERNAME", "superadmin"),
            superadmin_email=os.getenv("SUPERADMIN_EMAIL", "superadmin@example.com"),
            superadmin_password=os.getenv("SUPERADMIN_PASSWORD", "change_this_in_prod"),
            page_size=int(os.getenv("PAGE_SIZE", "10")),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS")) or list(DEFAULT_CORS_ORIGINS),
        )
