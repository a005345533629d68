# geomayora/migration.py
"""
One-time move of the legacy flat blob into the active store.

The old browser app kept every record as one JSON array under a single
localStorage key. Exported, that blob lives as `<LEGACY_STORAGE_DIR>/<key>.json`.
`migrate_once()` is cheap to call when there is nothing to migrate, so the
record service runs it before every list.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from geomayora.config import LEGACY_STORAGE_KEY
from geomayora.db import RecordStore
from geomayora.errors import MigrationFailure, TransientBackendError
from geomayora.schemas import LandRecord

logger = logging.getLogger(__name__)


class LegacyBlobStore:
    """Flat key -> text storage, one file per key."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def _load_legacy_records(raw: str) -> list:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MigrationFailure(f"legacy blob is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise MigrationFailure("legacy blob is not a list of records")
    try:
        return [LandRecord.model_validate(item) for item in data]
    except ValidationError as e:
        raise MigrationFailure(f"legacy blob holds an unreadable record: {e}") from e


async def migrate_once(store: RecordStore, blobs: LegacyBlobStore, key: str = LEGACY_STORAGE_KEY) -> int:
    """
    Copy the legacy blob into `store` and delete it. Returns the number of
    migrated records. Failures are logged and leave the blob in place for the
    next session; they are never raised.
    """
    try:
        raw = blobs.get(key)
        if not raw:
            return 0

        records = _load_legacy_records(raw)
        if not records:
            return 0

        await store.create_many(records)
        blobs.remove(key)
    except (MigrationFailure, TransientBackendError, OSError) as e:
        logger.error("Migration failed: %s", e)
        return 0

    logger.info("Migrated %s legacy records into the %s store", len(records), store.backend)
    return len(records)
