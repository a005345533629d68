# geomayora/routes/records.py
import datetime
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, Request, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from geomayora.errors import GeoMayoraError, PermissionDenied, RecordNotFound, TransientBackendError
from geomayora.routes.auth import get_access_context, get_current_user
from geomayora.schemas import LandRecord, LandRecordForm
from geomayora.services import spreadsheet
from geomayora.services.access import CAN_EXPORT_IMPORT, AccessContext, require
from geomayora.services.grouping import ALL_STATUSES, ALL_VILLAGES, DEFAULT_SORT, RecordFilters, RecordGroup
from geomayora.services.records import RecordService
from geomayora.services.remarks import generate_remarks

router = APIRouter(tags=["records"])
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# camelCase or snake_case field names accepted by /records/suggest
_CASCADE_FIELDS = {
    "document_number": "document_number",
    "documentNumber": "document_number",
    "no_gu": "no_gu",
    "noGu": "no_gu",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SuggestIn(_CamelModel):
    form: LandRecordForm
    changed: str
    editing: bool = False
    document_match: bool = False
    link_match: bool = False


class SyncLinkIn(_CamelModel):
    no_gu: str = Field(min_length=1)
    file_link: Optional[str] = None


# -------------------------
# Helpers
# -------------------------

def _service(request: Request) -> RecordService:
    return request.app.state.records


def _record_json(record: LandRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


def _group_json(group: RecordGroup) -> Dict[str, Any]:
    return {
        "noGu": group.no_gu,
        "documentNumber": group.document_number,
        "unifiedArea": group.unified_area,
        "memberCount": group.member_count,
        "latestCreatedAt": group.latest_created_at,
        "records": [_record_json(r) for r in group.members],
    }


def _http_error(e: GeoMayoraError, action: str) -> HTTPException:
    if isinstance(e, PermissionDenied):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, RecordNotFound):
        return HTTPException(status_code=404, detail="Record not found")
    if isinstance(e, TransientBackendError):
        logger.exception("%s failed on the storage backend", action)
        return HTTPException(status_code=503, detail=str(e))
    logger.exception("%s failed", action)
    return HTTPException(status_code=500, detail=str(e))


# =========================
# RECORDS ROUTES
# =========================

@router.get("/records")
async def list_records(request: Request):
    """All records, newest first."""
    try:
        records = await _service(request).list_records()
    except GeoMayoraError as e:
        raise _http_error(e, "list_records")
    return [_record_json(r) for r in records]


@router.get("/records/groups")
async def list_groups(
    request: Request,
    village: str = ALL_VILLAGES,
    q: str = "",
    status: str = ALL_STATUSES,
    sort: str = DEFAULT_SORT,
    page: int = Query(1, ge=1),
):
    """
    Records grouped by (GU, document number), filtered, sorted and paged.
    A page holds whole groups.
    """
    filters = RecordFilters(village=village, search=q, status=status)
    try:
        result = await _service(request).groups(filters, sort, page)
    except GeoMayoraError as e:
        raise _http_error(e, "list_groups")
    return {
        "page": result.page,
        "totalPages": result.total_pages,
        "totalGroups": result.total_groups,
        "groups": [_group_json(g) for g in result.groups],
    }


@router.get("/records/counts")
async def record_counts(request: Request):
    try:
        return await _service(request).village_counts()
    except GeoMayoraError as e:
        raise _http_error(e, "record_counts")


@router.get("/records/divergence")
async def record_divergence(request: Request, ctx: AccessContext = Depends(get_current_user)):
    """Documents whose owner-records disagree on shared parcel fields, for manual review."""
    try:
        report = await _service(request).divergence()
    except GeoMayoraError as e:
        raise _http_error(e, "record_divergence")
    return [
        {"documentNumber": d.document_number, "recordIds": d.record_ids, "fields": d.fields}
        for d in report
    ]


@router.post("/records/suggest")
async def suggest_autofill(request: Request, payload: SuggestIn, ctx: AccessContext = Depends(get_current_user)):
    changed = _CASCADE_FIELDS.get(payload.changed)
    if changed is None:
        raise HTTPException(status_code=400, detail="changed must be documentNumber or noGu")
    try:
        state = await _service(request).suggest(
            payload.form, changed,
            editing=payload.editing,
            document_match=payload.document_match,
            link_match=payload.link_match,
        )
    except GeoMayoraError as e:
        raise _http_error(e, "suggest_autofill")
    return {
        "form": state.form.model_dump(mode="json", by_alias=True),
        "documentMatch": state.document_match,
        "linkMatch": state.link_match,
        "divergent": state.divergent,
    }


@router.post("/records/remarks")
async def draft_remarks(request: Request, form: LandRecordForm, ctx: AccessContext = Depends(get_current_user)):
    settings = request.app.state.settings
    text = await generate_remarks(form, settings.gemini_api_key, settings.gemini_model)
    return {"remarks": text}


@router.post("/records/sync-link")
async def sync_link(request: Request, payload: SyncLinkIn, ctx: Optional[AccessContext] = Depends(get_access_context)):
    try:
        updated = await _service(request).sync_link(ctx, payload.no_gu, payload.file_link)
    except GeoMayoraError as e:
        raise _http_error(e, "sync_link")
    return {"success": updated is not None, "updated": updated or 0}


@router.post("/records/import-excel")
async def import_excel(
    request: Request,
    file: UploadFile = File(...),
    ctx: Optional[AccessContext] = Depends(get_access_context),
):
    """
    Accepts .xlsx or .csv where each row is one record, using the template
    headers. Unknown village/status text and bad areas fall back to defaults;
    the substitutions are returned as `gaps`.
    """
    try:
        require(ctx, CAN_EXPORT_IMPORT)
    except PermissionDenied as e:
        raise _http_error(e, "import_excel")

    content = await file.read()
    try:
        rows = spreadsheet.read_rows(content, file.filename or "")
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Could not read spreadsheet: {e}")

    if not rows:
        return {"success": True, "count": 0, "records": [], "gaps": []}

    try:
        report = await _service(request).import_rows(ctx, rows)
    except GeoMayoraError as e:
        raise _http_error(e, "import_excel")

    return {
        "success": True,
        "count": len(report.records),
        "records": [_record_json(r) for r in report.records],
        "gaps": [
            {"row": g.row, "column": g.column, "value": None if g.value is None else str(g.value), "substituted": g.substituted}
            for g in report.gaps
        ],
    }


@router.get("/export/records.xlsx")
async def export_records(request: Request, ctx: Optional[AccessContext] = Depends(get_access_context)):
    try:
        content = await _service(request).export_workbook(ctx)
    except GeoMayoraError as e:
        raise _http_error(e, "export_records")
    filename = f"Data_GeoMayora_PerDesa_{datetime.date.today().isoformat()}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/export/template.xlsx")
async def export_template():
    return Response(
        content=spreadsheet.template_workbook(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=Template_GeoMayora.xlsx"},
    )


@router.post("/records")
async def create_record(
    request: Request,
    form: LandRecordForm = Body(...),
    ctx: Optional[AccessContext] = Depends(get_access_context),
):
    try:
        result = await _service(request).create_record(ctx, form)
    except GeoMayoraError as e:
        raise _http_error(e, "create_record")
    return {"success": True, "record": _record_json(result.record), "linkSyncScheduled": result.link_sync is not None}


@router.delete("/records")
async def clear_records(
    request: Request,
    confirm: bool = Query(False, description="Set true to confirm deleting every record"),
    ctx: Optional[AccessContext] = Depends(get_access_context),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Delete-all not confirmed. Use ?confirm=true")
    try:
        await _service(request).clear_records(ctx)
    except GeoMayoraError as e:
        raise _http_error(e, "clear_records")
    return {"success": True}


@router.get("/records/{record_id}")
async def get_record(request: Request, record_id: str):
    try:
        record = await _service(request).get_record(record_id)
    except GeoMayoraError as e:
        raise _http_error(e, "get_record")
    return {"record": _record_json(record)}


@router.put("/records/{record_id}")
async def update_record(
    request: Request,
    record_id: str,
    form: LandRecordForm = Body(...),
    ctx: Optional[AccessContext] = Depends(get_access_context),
):
    """Replace the editable fields of a record; id and createdAt are kept."""
    logger.info("update_record called id=%s", record_id)
    try:
        result = await _service(request).update_record(ctx, record_id, form)
    except GeoMayoraError as e:
        raise _http_error(e, "update_record")
    return {"success": True, "record": _record_json(result.record), "linkSyncScheduled": result.link_sync is not None}


@router.delete("/records/{record_id}")
async def delete_record(request: Request, record_id: str, ctx: Optional[AccessContext] = Depends(get_access_context)):
    try:
        await _service(request).delete_record(ctx, record_id)
    except GeoMayoraError as e:
        raise _http_error(e, "delete_record")
    return Response(status_code=204)
