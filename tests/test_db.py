"""Tests for the local and remote record stores and boot-time selection."""

import pytest

from geomayora.db import LocalRecordStore, RemoteRecordStore, select_store
from geomayora.errors import TransientBackendError
from geomayora.schemas import LandRecord, User, UserPermissions

from conftest import make_record


# ═══════════════════════════════════════════════════
# Local store
# ═══════════════════════════════════════════════════

class TestLocalStore:

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, local_store):
        rec = make_record(owner_name="Siti")
        await local_store.create_record(rec)

        got = await local_store.get_record(rec.id)
        assert got == rec
        assert [r.id for r in await local_store.list_records()] == [rec.id]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, local_store):
        assert await local_store.get_record("nope") is None

    @pytest.mark.asyncio
    async def test_update_replaces_whole_row(self, local_store):
        rec = make_record(remarks="lama", file_link="https://drive/a")
        await local_store.create_record(rec)

        # only owner_name set explicitly; local replace still writes every field
        partial = LandRecord(id=rec.id, created_at=rec.created_at, owner_name="Baru")
        await local_store.update_record(partial)

        got = await local_store.get_record(rec.id)
        assert got.owner_name == "Baru"
        assert got.remarks == ""
        assert got.file_link is None
        assert got.no_gu == ""

    @pytest.mark.asyncio
    async def test_duplicate_create_is_transient_error(self, local_store):
        rec = make_record()
        await local_store.create_record(rec)
        with pytest.raises(TransientBackendError):
            await local_store.create_record(rec)

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, local_store):
        a, b = make_record(), make_record(owner_name="Ani")
        await local_store.create_many([a, b])

        await local_store.delete_record(a.id)
        assert [r.id for r in await local_store.list_records()] == [b.id]

        await local_store.clear_records()
        assert await local_store.list_records() == []

    @pytest.mark.asyncio
    async def test_sync_shared_link_matches_trimmed_gu(self, local_store):
        a = make_record(no_gu="N1")
        b = make_record(no_gu=" N1 ", owner_name="Ani")
        c = make_record(no_gu="N2", owner_name="Dedi")
        await local_store.create_many([a, b, c])

        updated = await local_store.sync_shared_link("N1", "https://drive/x")

        assert updated == 2
        assert (await local_store.get_record(a.id)).file_link == "https://drive/x"
        assert (await local_store.get_record(b.id)).file_link == "https://drive/x"
        assert (await local_store.get_record(c.id)).file_link is None

    @pytest.mark.asyncio
    async def test_users_round_trip(self, local_store):
        user = User(
            username="petugas",
            hashed_password="x",
            email="p@example.com",
            permissions=UserPermissions(can_add=True),
        )
        await local_store.save_user(user)

        got = await local_store.get_user("petugas")
        assert got.permissions.can_add is True
        assert got.permissions.can_delete is False
        assert [u.username for u in await local_store.list_users()] == ["petugas"]

        await local_store.delete_user("petugas")
        assert await local_store.get_user("petugas") is None

    @pytest.mark.asyncio
    async def test_read_failure_is_transient_error(self, tmp_path):
        # schema never created, so every read fails inside sqlite
        store = LocalRecordStore(tmp_path / "uninitialised.db")
        with pytest.raises(TransientBackendError):
            await store.list_records()
        with pytest.raises(TransientBackendError):
            await store.get_user("superadmin")

    def test_status_label(self, local_store):
        assert local_store.status_label() == "LOCAL (OFFLINE)"


# ═══════════════════════════════════════════════════
# Remote store
# ═══════════════════════════════════════════════════

class TestRemoteStore:

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, remote_store):
        rec = make_record()
        await remote_store.create_record(rec)
        assert await remote_store.get_record(rec.id) == rec

    @pytest.mark.asyncio
    async def test_update_merges_set_fields_only(self, remote_store):
        rec = make_record(remarks="lama", file_link="https://drive/a")
        await remote_store.create_record(rec)

        partial = LandRecord(id=rec.id, owner_name="Baru")
        await remote_store.update_record(partial)

        got = await remote_store.get_record(rec.id)
        assert got.owner_name == "Baru"
        assert got.remarks == "lama"
        assert got.file_link == "https://drive/a"
        assert got.created_at == rec.created_at

    @pytest.mark.asyncio
    async def test_complete_update_matches_local(self, remote_store, local_store):
        rec = make_record()
        changed = rec.model_copy(update={"owner_name": "Ani", "area": 300.0})
        for store in (remote_store, local_store):
            await store.create_record(rec)
            await store.update_record(LandRecord(**changed.model_dump()))

        assert await remote_store.get_record(rec.id) == await local_store.get_record(rec.id)

    @pytest.mark.asyncio
    async def test_save_user_upserts(self, remote_store):
        await remote_store.save_user(User(username="a", hashed_password="1"))
        await remote_store.save_user(User(username="a", hashed_password="2", email="a@example.com"))

        users = await remote_store.list_users()
        assert len(users) == 1
        assert users[0].hashed_password == "2"

    @pytest.mark.asyncio
    async def test_sync_shared_link(self, remote_store):
        a, b = make_record(no_gu="N5"), make_record(no_gu="N5 ", owner_name="Ani")
        await remote_store.create_many([a, b])

        assert await remote_store.sync_shared_link("N5", "https://drive/z") == 2
        assert (await remote_store.get_record(b.id)).file_link == "https://drive/z"

    def test_status_label(self, remote_store):
        assert remote_store.status_label() == "CLOUD (ONLINE)"


class TestRemoteUnreachable:

    @pytest.mark.asyncio
    async def test_reads_fall_back_to_local(self, tmp_path):
        fallback = LocalRecordStore(tmp_path / "fallback.db")
        await fallback.init()
        rec = make_record()
        await fallback.create_record(rec)

        # parent directory does not exist, so every connect fails
        url = f"sqlite+aiosqlite:///{(tmp_path / 'missing' / 'remote.db').as_posix()}"
        remote = RemoteRecordStore(url, fallback=fallback)
        try:
            assert [r.id for r in await remote.list_records()] == [rec.id]
            assert await remote.get_record(rec.id) == rec
        finally:
            await remote.close()

    @pytest.mark.asyncio
    async def test_writes_raise_transient_error(self, tmp_path):
        fallback = LocalRecordStore(tmp_path / "fallback.db")
        await fallback.init()
        url = f"sqlite+aiosqlite:///{(tmp_path / 'missing' / 'remote.db').as_posix()}"
        remote = RemoteRecordStore(url, fallback=fallback)
        try:
            with pytest.raises(TransientBackendError):
                await remote.create_record(make_record())
            with pytest.raises(TransientBackendError):
                await remote.delete_record("x")
        finally:
            await remote.close()
        # nothing was written locally
        assert await fallback.list_records() == []


# ═══════════════════════════════════════════════════
# Boot-time selection
# ═══════════════════════════════════════════════════

class TestSelectStore:

    @pytest.mark.asyncio
    async def test_no_remote_url_selects_local(self, settings):
        store = await select_store(settings)
        assert store.backend == "local"
        assert settings.local_db_file.exists()

    @pytest.mark.asyncio
    async def test_reachable_remote_is_selected(self, settings, tmp_path):
        settings.remote_database_url = f"sqlite+aiosqlite:///{(tmp_path / 'remote.db').as_posix()}"
        store = await select_store(settings)
        try:
            assert store.backend == "remote"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unreachable_remote_selects_local(self, settings, tmp_path):
        settings.remote_database_url = f"sqlite+aiosqlite:///{(tmp_path / 'missing' / 'remote.db').as_posix()}"
        store = await select_store(settings)
        assert store.backend == "local"
