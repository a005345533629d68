# geomayora/services/records.py
"""
Record operations as the HTTP layer sees them.

Every write takes the caller's `AccessContext` and checks it before touching
the store. Saves that change a file link start link propagation as a separate
task; the save returns without waiting for it and hands the task back in
`SaveResult.link_sync` for callers that need ordering.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from geomayora.db import RecordStore
from geomayora.errors import RecordNotFound
from geomayora.migration import LegacyBlobStore, migrate_once
from geomayora.schemas import LandRecord, LandRecordForm, new_record_id, now_ms
from geomayora.services import grouping, spreadsheet
from geomayora.services.access import (
    CAN_ADD,
    CAN_DELETE,
    CAN_EDIT,
    CAN_EXPORT_IMPORT,
    AccessContext,
    require,
    require_super_admin,
)
from geomayora.services.consistency import (
    DivergentDocument,
    FormState,
    find_divergent_documents,
    schedule_link_sync,
    suggest_autofill,
    sync_shared_link,
)

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    record: LandRecord
    link_sync: Optional["asyncio.Task[Optional[int]]"] = None


class RecordService:
    def __init__(self, store: RecordStore, blobs: LegacyBlobStore, page_size: int = 10):
        self.store = store
        self.blobs = blobs
        self.page_size = page_size
        # propagation tasks still running; held so they are not collected early
        self._pending: Set["asyncio.Task[Optional[int]]"] = set()

    async def drain(self) -> None:
        """Wait for outstanding link propagation (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -------------------------
    # Reads
    # -------------------------
    async def list_records(self) -> List[LandRecord]:
        """All records, newest first. Legacy data is migrated before the read."""
        await migrate_once(self.store, self.blobs)
        records = await self.store.list_records()
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def get_record(self, record_id: str) -> LandRecord:
        record = await self.store.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    async def groups(
        self,
        filters: grouping.RecordFilters,
        sort_key: Optional[str] = grouping.DEFAULT_SORT,
        page: int = 1,
    ) -> grouping.GroupPage:
        records = await self.list_records()
        ordered = grouping.compute_groups(records, filters, sort_key)
        return grouping.paginate(ordered, page, self.page_size)

    async def village_counts(self) -> Dict[str, int]:
        return grouping.village_counts(await self.list_records())

    async def divergence(self) -> List[DivergentDocument]:
        return find_divergent_documents(await self.list_records())

    async def suggest(
        self,
        form: LandRecordForm,
        changed: str,
        editing: bool = False,
        document_match: bool = False,
        link_match: bool = False,
    ) -> FormState:
        existing = await self.list_records()
        state = FormState(form=form, document_match=document_match, link_match=link_match)
        return suggest_autofill(state, existing, changed, editing)

    # -------------------------
    # Writes
    # -------------------------
    def _propagate(self, record: LandRecord, clearing: bool = False) -> Optional["asyncio.Task[Optional[int]]"]:
        # a cleared link is pushed too, but only from an update
        if not record.no_gu.strip() or not (record.file_link or clearing):
            return None
        task = schedule_link_sync(self.store, record.no_gu, record.file_link)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def create_record(self, ctx: Optional[AccessContext], form: LandRecordForm) -> SaveResult:
        require(ctx, CAN_ADD)
        record = LandRecord.from_form(form, id=new_record_id(), created_at=now_ms())
        await self.store.create_record(record)
        logger.info("Record %s created by %s", record.id, ctx.username)
        return SaveResult(record=record, link_sync=self._propagate(record))

    async def update_record(self, ctx: Optional[AccessContext], record_id: str, form: LandRecordForm) -> SaveResult:
        require(ctx, CAN_EDIT)
        existing = await self.get_record(record_id)

        # always write a complete record so both backends behave the same
        record = LandRecord.from_form(form, id=existing.id, created_at=existing.created_at)
        await self.store.update_record(record)
        logger.info("Record %s updated by %s", record.id, ctx.username)

        link_sync = None
        if record.file_link != existing.file_link:
            link_sync = self._propagate(record, clearing=True)
        return SaveResult(record=record, link_sync=link_sync)

    async def delete_record(self, ctx: Optional[AccessContext], record_id: str) -> None:
        require(ctx, CAN_DELETE)
        await self.get_record(record_id)
        await self.store.delete_record(record_id)
        logger.info("Record %s deleted by %s", record_id, ctx.username)

    async def clear_records(self, ctx: Optional[AccessContext]) -> None:
        require(ctx, CAN_DELETE)
        require_super_admin(ctx)
        await self.store.clear_records()
        logger.warning("All records deleted by %s", ctx.username)

    async def sync_link(self, ctx: Optional[AccessContext], no_gu: str, file_link: Optional[str]) -> Optional[int]:
        require(ctx, CAN_EDIT)
        return await sync_shared_link(self.store, no_gu, file_link)

    # -------------------------
    # Spreadsheet interchange
    # -------------------------
    async def import_rows(self, ctx: Optional[AccessContext], rows: Iterable[Dict[str, Any]]) -> spreadsheet.ImportReport:
        """Append-only: rows matching existing groups are inserted as new records."""
        require(ctx, CAN_EXPORT_IMPORT)
        report = spreadsheet.rows_to_records(rows)
        await self.store.create_many(report.records)
        logger.info("Imported %s records for %s", len(report.records), ctx.username)
        return report

    async def export_workbook(self, ctx: Optional[AccessContext]) -> bytes:
        require(ctx, CAN_EXPORT_IMPORT)
        return spreadsheet.export_workbook(await self.list_records())
