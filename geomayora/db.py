# geomayora/db.py
"""
Record store adapter.

One `RecordStore` is active per process: either the remote durable store
(SQLAlchemy async engine on REMOTE_DATABASE_URL) or the local embedded SQLite
file. `select_store()` makes that choice once at startup; callers only ever
talk to the `RecordStore` interface.

Backend differences that leak through the interface on purpose:
- remote `update_record` merges (only fields explicitly set on the model are
  written), local `update_record` replaces the whole row;
- remote reads fall back to the local file when the remote is unreachable,
  remote writes raise `TransientBackendError`.
Callers that always pass complete records get identical behaviour from both.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine
from starlette.concurrency import run_in_threadpool

from geomayora.config import Settings
from geomayora.errors import TransientBackendError
from geomayora.models import Base
from geomayora.schemas import LandRecord, User

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    "id", "no_gu", "owner_name", "village", "block", "plot_number",
    "document_number", "area", "status", "remarks", "file_link", "created_at",
]
USER_COLUMNS = [
    "username", "hashed_password", "email",
    "can_add", "can_edit", "can_delete", "can_export_import", "is_super_admin",
]

# errors that mean "the remote is not answering", as opposed to bugs
REMOTE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

LOCAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS land_records (
    id TEXT PRIMARY KEY,
    no_gu TEXT,
    owner_name TEXT,
    village TEXT,
    block TEXT,
    plot_number TEXT,
    document_number TEXT,
    area REAL DEFAULT 0,
    status TEXT,
    remarks TEXT,
    file_link TEXT,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_land_records_no_gu ON land_records (no_gu);
CREATE INDEX IF NOT EXISTS ix_land_records_document_number ON land_records (document_number);
CREATE INDEX IF NOT EXISTS ix_land_records_village ON land_records (village);
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    hashed_password TEXT NOT NULL,
    email TEXT,
    can_add INTEGER DEFAULT 0,
    can_edit INTEGER DEFAULT 0,
    can_delete INTEGER DEFAULT 0,
    can_export_import INTEGER DEFAULT 0,
    is_super_admin INTEGER DEFAULT 0
);
"""


def _row_to_dict(row) -> Dict[str, Any]:
    """Convert a SQLAlchemy Row or sqlite3.Row to a plain dict."""
    if row is None:
        return {}
    if hasattr(row, "_mapping"):
        return dict(row._mapping)
    return {k: row[k] for k in row.keys()}


def _insert_sql(table: str, columns: Sequence[str], placeholder: str) -> str:
    cols = ", ".join(columns)
    if placeholder == "?":
        values = ", ".join("?" for _ in columns)
    else:
        values = ", ".join(f":{c}" for c in columns)
    return f"INSERT INTO {table} ({cols}) VALUES ({values})"


class RecordStore:
    """CRUD over land records and users for a single backend."""

    backend = "abstract"

    async def init(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def status_label(self) -> str:
        return "CLOUD (ONLINE)" if self.backend == "remote" else "LOCAL (OFFLINE)"

    # land records
    async def list_records(self) -> List[LandRecord]:
        raise NotImplementedError

    async def get_record(self, record_id: str) -> Optional[LandRecord]:
        raise NotImplementedError

    async def create_record(self, record: LandRecord) -> None:
        raise NotImplementedError

    async def create_many(self, records: Sequence[LandRecord]) -> None:
        raise NotImplementedError

    async def update_record(self, record: LandRecord) -> None:
        raise NotImplementedError

    async def delete_record(self, record_id: str) -> None:
        raise NotImplementedError

    async def clear_records(self) -> None:
        raise NotImplementedError

    async def sync_shared_link(self, no_gu: str, file_link: Optional[str]) -> int:
        """Set file_link on every record whose trimmed GU equals `no_gu`."""
        raise NotImplementedError

    # users
    async def save_user(self, user: User) -> None:
        raise NotImplementedError

    async def get_user(self, username: str) -> Optional[User]:
        raise NotImplementedError

    async def list_users(self) -> List[User]:
        raise NotImplementedError

    async def delete_user(self, username: str) -> None:
        raise NotImplementedError


# ----------------------------
# Local embedded store (sqlite3 in the threadpool)
# ----------------------------
class LocalRecordStore(RecordStore):
    backend = "local"

    def __init__(self, db_file: Path):
        self.db_file = Path(db_file)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_file))
        conn.row_factory = sqlite3.Row
        return conn

    async def _write(self, operation: str, sql: str, params: Any = (), many: bool = False) -> int:
        def _fn():
            conn = self._connect()
            try:
                cur = conn.cursor()
                if many:
                    cur.executemany(sql, params)
                else:
                    cur.execute(sql, params)
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()

        try:
            return await run_in_threadpool(_fn)
        except sqlite3.Error as e:
            logger.exception("local %s failed", operation)
            raise TransientBackendError(operation, e) from e

    async def _fetch(self, sql: str, params: Any = ()) -> List[Dict[str, Any]]:
        def _fn():
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(sql, params)
                return [_row_to_dict(r) for r in cur.fetchall()]
            finally:
                conn.close()

        try:
            return await run_in_threadpool(_fn)
        except sqlite3.Error as e:
            logger.exception("local read failed: %s", sql)
            raise TransientBackendError("read", e) from e

    async def init(self) -> None:
        def _fn():
            self.db_file.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.executescript(LOCAL_SCHEMA)
                conn.commit()
            finally:
                conn.close()

        await run_in_threadpool(_fn)

    async def list_records(self) -> List[LandRecord]:
        rows = await self._fetch("SELECT * FROM land_records")
        return [LandRecord.model_validate(r) for r in rows]

    async def get_record(self, record_id: str) -> Optional[LandRecord]:
        rows = await self._fetch("SELECT * FROM land_records WHERE id = ?", (record_id,))
        return LandRecord.model_validate(rows[0]) if rows else None

    @staticmethod
    def _record_params(record: LandRecord) -> tuple:
        row = record.to_row()
        return tuple(row[c] for c in RECORD_COLUMNS)

    async def create_record(self, record: LandRecord) -> None:
        await self._write("create_record", _insert_sql("land_records", RECORD_COLUMNS, "?"),
                          self._record_params(record))

    async def create_many(self, records: Sequence[LandRecord]) -> None:
        if not records:
            return
        await self._write("create_many", _insert_sql("land_records", RECORD_COLUMNS, "?"),
                          [self._record_params(r) for r in records], many=True)

    async def update_record(self, record: LandRecord) -> None:
        sql = _insert_sql("land_records", RECORD_COLUMNS, "?").replace("INSERT", "INSERT OR REPLACE", 1)
        await self._write("update_record", sql, self._record_params(record))

    async def delete_record(self, record_id: str) -> None:
        await self._write("delete_record", "DELETE FROM land_records WHERE id = ?", (record_id,))

    async def clear_records(self) -> None:
        await self._write("clear_records", "DELETE FROM land_records")

    async def sync_shared_link(self, no_gu: str, file_link: Optional[str]) -> int:
        return await self._write(
            "sync_shared_link",
            "UPDATE land_records SET file_link = ? WHERE TRIM(no_gu) = ?",
            (file_link, no_gu.strip()),
        )

    async def save_user(self, user: User) -> None:
        row = user.to_row()
        sql = _insert_sql("users", USER_COLUMNS, "?").replace("INSERT", "INSERT OR REPLACE", 1)
        await self._write("save_user", sql, tuple(row[c] for c in USER_COLUMNS))

    async def get_user(self, username: str) -> Optional[User]:
        rows = await self._fetch("SELECT * FROM users WHERE username = ?", (username,))
        return User.from_row(rows[0]) if rows else None

    async def list_users(self) -> List[User]:
        rows = await self._fetch("SELECT * FROM users ORDER BY username")
        return [User.from_row(r) for r in rows]

    async def delete_user(self, username: str) -> None:
        await self._write("delete_user", "DELETE FROM users WHERE username = ?", (username,))


# ----------------------------
# Remote durable store (SQLAlchemy async engine)
# ----------------------------
class RemoteRecordStore(RecordStore):
    backend = "remote"

    def __init__(self, database_url: str, fallback: LocalRecordStore, echo: bool = False):
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=echo, future=True)
        self.fallback = fallback

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await self.fallback.init()

    async def close(self) -> None:
        await self.engine.dispose()

    async def _fetch(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [_row_to_dict(r) for r in result.fetchall()]

    async def _upsert_record(self, conn: AsyncConnection, record: LandRecord, merge: bool) -> None:
        full = record.to_row()
        data = record.to_row(only_set=True) if merge else full
        cols = [c for c in data if c in RECORD_COLUMNS and c != "id"]

        if cols:
            sets = ", ".join(f"{c} = :{c}" for c in cols)
            res = await conn.execute(
                text(f"UPDATE land_records SET {sets} WHERE id = :id"),
                {c: data[c] for c in cols + ["id"]},
            )
            found = res.rowcount > 0
        else:
            res = await conn.execute(text("SELECT id FROM land_records WHERE id = :id"), {"id": record.id})
            found = res.fetchone() is not None

        if not found:
            await conn.execute(text(_insert_sql("land_records", RECORD_COLUMNS, ":")), full)

    async def _write_records(self, operation: str, records: Sequence[LandRecord], merge: bool) -> None:
        try:
            async with self.engine.begin() as conn:
                for r in records:
                    await self._upsert_record(conn, r, merge)
        except REMOTE_ERRORS as e:
            logger.exception("remote %s failed", operation)
            raise TransientBackendError(operation, e) from e

    async def _execute(self, operation: str, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                return result.rowcount
        except REMOTE_ERRORS as e:
            logger.exception("remote %s failed", operation)
            raise TransientBackendError(operation, e) from e

    # --- reads: fall back to the local file ---

    async def list_records(self) -> List[LandRecord]:
        try:
            rows = await self._fetch("SELECT * FROM land_records")
        except REMOTE_ERRORS as e:
            logger.error("Cloud fetch error, falling back to local: %s", e)
            return await self.fallback.list_records()
        return [LandRecord.model_validate(r) for r in rows]

    async def get_record(self, record_id: str) -> Optional[LandRecord]:
        try:
            rows = await self._fetch("SELECT * FROM land_records WHERE id = :id", {"id": record_id})
        except REMOTE_ERRORS as e:
            logger.error("Cloud fetch error for record %s, falling back to local: %s", record_id, e)
            return await self.fallback.get_record(record_id)
        return LandRecord.model_validate(rows[0]) if rows else None

    async def get_user(self, username: str) -> Optional[User]:
        try:
            rows = await self._fetch("SELECT * FROM users WHERE username = :u", {"u": username})
        except REMOTE_ERRORS as e:
            logger.error("Cloud user lookup failed, falling back to local: %s", e)
            return await self.fallback.get_user(username)
        return User.from_row(rows[0]) if rows else None

    async def list_users(self) -> List[User]:
        try:
            rows = await self._fetch("SELECT * FROM users ORDER BY username")
        except REMOTE_ERRORS as e:
            logger.error("Cloud user listing failed, falling back to local: %s", e)
            return await self.fallback.list_users()
        return [User.from_row(r) for r in rows]

    # --- writes: surface failures ---

    async def create_record(self, record: LandRecord) -> None:
        await self._write_records("create_record", [record], merge=False)

    async def create_many(self, records: Sequence[LandRecord]) -> None:
        if not records:
            return
        await self._write_records("create_many", records, merge=False)

    async def update_record(self, record: LandRecord) -> None:
        await self._write_records("update_record", [record], merge=True)

    async def delete_record(self, record_id: str) -> None:
        await self._execute("delete_record", "DELETE FROM land_records WHERE id = :id", {"id": record_id})

    async def clear_records(self) -> None:
        await self._execute("clear_records", "DELETE FROM land_records")

    async def sync_shared_link(self, no_gu: str, file_link: Optional[str]) -> int:
        return await self._execute(
            "sync_shared_link",
            "UPDATE land_records SET file_link = :link WHERE TRIM(no_gu) = :gu",
            {"link": file_link, "gu": no_gu.strip()},
        )

    async def save_user(self, user: User) -> None:
        row = user.to_row()
        cols = [c for c in USER_COLUMNS if c != "username"]
        sets = ", ".join(f"{c} = :{c}" for c in cols)
        try:
            async with self.engine.begin() as conn:
                res = await conn.execute(text(f"UPDATE users SET {sets} WHERE username = :username"), row)
                if res.rowcount == 0:
                    await conn.execute(text(_insert_sql("users", USER_COLUMNS, ":")), row)
        except REMOTE_ERRORS as e:
            logger.exception("remote save_user failed for %s", user.username)
            raise TransientBackendError("save_user", e) from e

    async def delete_user(self, username: str) -> None:
        await self._execute("delete_user", "DELETE FROM users WHERE username = :u", {"u": username})


# ----------------------------
# Boot-time backend selection
# ----------------------------
async def select_store(settings: Settings) -> RecordStore:
    """
    Pick the backend for this process. The remote store wins when it is
    configured and answers `SELECT 1`; otherwise the local file is used.
    """
    local = LocalRecordStore(settings.local_db_file)

    if settings.remote_database_url:
        remote = None
        try:
            remote = RemoteRecordStore(settings.remote_database_url, fallback=local)
            await remote.ping()
            await remote.init()
            logger.info("Remote database connected: %s", remote.engine.url.render_as_string(hide_password=True))
            return remote
        except (ImportError, *REMOTE_ERRORS) as e:
            logger.error("Remote database unavailable, using local store: %s", e)
            if remote is not None:
                await remote.close()
    else:
        logger.warning("REMOTE_DATABASE_URL not set; using local database (offline mode)")

    await local.init()
    logger.info("Local database at %s", local.db_file)
    return local
