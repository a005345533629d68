# geomayora/services/consistency.py
"""
Keeps owner-records of one parcel consistent.

Two cascades suggest values while a NEW record is being typed in:
- document cascade: a known document number copies the parcel fields
  (GU, village, block, plot, area) of the first matching record;
- drawing cascade: a known GU copies the file link of the first matching
  record that has one.
Both are suggestions applied to the form only; nothing is written.

`sync_shared_link` is the write-side counterpart for file links: after a link
is changed it is pushed to every record of the same GU.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence

from geomayora.db import RecordStore
from geomayora.errors import TransientBackendError
from geomayora.schemas import DOCUMENT_SHARED_FIELDS, LandRecord, LandRecordForm

logger = logging.getLogger(__name__)


def normalize_key(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


@dataclass
class FormState:
    form: LandRecordForm
    document_match: bool = False
    link_match: bool = False
    divergent: bool = False


def _shared_values(record) -> tuple:
    return tuple(getattr(record, f) for f in DOCUMENT_SHARED_FIELDS)


def apply_document_cascade(state: FormState, existing: Sequence[LandRecord], editing: bool = False) -> FormState:
    key = normalize_key(state.form.document_number)
    if editing or not key or not existing:
        return state

    matches = [r for r in existing if r.document_number and normalize_key(r.document_number) == key]
    if not matches:
        return replace(state, document_match=False, divergent=False)

    first = matches[0]
    divergent = any(_shared_values(m) != _shared_values(first) for m in matches[1:])
    if divergent:
        logger.warning(
            "Document %r has %s records with differing parcel fields; using record %s",
            state.form.document_number, len(matches), first.id,
        )

    form = state.form.model_copy(update={f: getattr(first, f) for f in DOCUMENT_SHARED_FIELDS})
    return replace(state, form=form, document_match=True, divergent=divergent)


def apply_drawing_cascade(state: FormState, existing: Sequence[LandRecord], editing: bool = False) -> FormState:
    key = normalize_key(state.form.no_gu)
    if editing or not key or not existing:
        return state

    match = next((r for r in existing if normalize_key(r.no_gu) == key and r.file_link), None)
    if match is None:
        return replace(state, link_match=False)

    form = state.form.model_copy(update={"file_link": match.file_link})
    return replace(state, form=form, link_match=True)


def suggest_autofill(
    state: FormState,
    existing: Sequence[LandRecord],
    changed: str,
    editing: bool = False,
) -> FormState:
    """Run the cascade for the field that just changed ("document_number" or "no_gu")."""
    if changed == "document_number":
        before = state.form.no_gu
        state = apply_document_cascade(state, existing, editing)
        if state.form.no_gu != before:
            state = apply_drawing_cascade(state, existing, editing)
        return state
    if changed == "no_gu":
        return apply_drawing_cascade(state, existing, editing)
    raise ValueError(f"no cascade for field {changed!r}")


@dataclass
class DivergentDocument:
    document_number: str
    record_ids: List[str] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)


def find_divergent_documents(records: Iterable[LandRecord]) -> List[DivergentDocument]:
    """Documents whose owner-records disagree on the shared parcel fields."""
    by_doc: Dict[str, List[LandRecord]] = {}
    for r in records:
        key = normalize_key(r.document_number)
        if key:
            by_doc.setdefault(key, []).append(r)

    report = []
    for members in by_doc.values():
        if len(members) < 2:
            continue
        differing = [
            f for f in DOCUMENT_SHARED_FIELDS
            if len({getattr(m, f) for m in members}) > 1
        ]
        if differing:
            report.append(DivergentDocument(
                document_number=members[0].document_number.strip(),
                record_ids=[m.id for m in members],
                fields=differing,
            ))
    return report


async def sync_shared_link(store: RecordStore, no_gu: str, file_link: Optional[str]) -> Optional[int]:
    """Best effort: failures are logged, not retried and not raised."""
    if not no_gu or not no_gu.strip():
        return None
    try:
        updated = await store.sync_shared_link(no_gu, file_link)
    except TransientBackendError as e:
        logger.error("Failed to sync links for GU %r: %s", no_gu, e)
        return None
    logger.info("Synced file link for GU %r on %s records", no_gu.strip(), updated)
    return updated


def schedule_link_sync(store: RecordStore, no_gu: str, file_link: Optional[str]) -> "asyncio.Task[Optional[int]]":
    return asyncio.create_task(sync_shared_link(store, no_gu, file_link))
