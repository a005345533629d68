"""Shared fixtures: temporary stores, settings and sample records."""

import pytest
import pytest_asyncio

from geomayora.config import Settings
from geomayora.db import LocalRecordStore, RemoteRecordStore
from geomayora.migration import LegacyBlobStore
from geomayora.schemas import LandRecord, MeasurementStatus, Village
from geomayora.services.access import AccessContext
from geomayora.services.records import RecordService
from geomayora.schemas import UserPermissions


# ═══════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════

def make_record(**kwargs) -> LandRecord:
    """A complete record with sensible defaults; override any field."""
    base = dict(
        no_gu="N1",
        owner_name="Budi",
        village=Village.DANGDEUR.value,
        block="1",
        plot_number="7",
        document_number="C-100",
        area=250.0,
        status=MeasurementStatus.PENDING,
        remarks="",
        file_link=None,
    )
    base.update(kwargs)
    return LandRecord(**base)


def full_access(username="admin") -> AccessContext:
    return AccessContext(
        username=username,
        permissions=UserPermissions(can_add=True, can_edit=True, can_delete=True, can_export_import=True),
        is_super_admin=True,
    )


def read_only(username="viewer") -> AccessContext:
    return AccessContext(username=username)


# ═══════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════

@pytest.fixture
def settings(tmp_path):
    return Settings(
        remote_database_url=None,
        local_db_file=tmp_path / "local.db",
        legacy_storage_dir=tmp_path / "legacy",
        jwt_secret="test-secret",
        superadmin_username="superadmin",
        superadmin_email="superadmin@example.com",
        superadmin_password="rahasia",
        page_size=10,
        gemini_api_key=None,
    )


@pytest_asyncio.fixture
async def local_store(tmp_path):
    store = LocalRecordStore(tmp_path / "local.db")
    await store.init()
    return store


@pytest_asyncio.fixture
async def remote_store(tmp_path):
    fallback = LocalRecordStore(tmp_path / "fallback.db")
    store = RemoteRecordStore(f"sqlite+aiosqlite:///{(tmp_path / 'remote.db').as_posix()}", fallback=fallback)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def blobs(tmp_path):
    return LegacyBlobStore(tmp_path / "legacy")


@pytest.fixture
def service(local_store, blobs):
    return RecordService(local_store, blobs, page_size=10)
