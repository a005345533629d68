# geomayora/services/spreadsheet.py
"""
Spreadsheet interchange for land records.

Import: raw rows keyed by the fixed headers in `COLUMNS` become new records.
Bad cells never fail the batch; they are replaced by defaults and reported as
`ValidationGap`s.

Export: one sheet per village, rows sorted by document number, and contiguous
rows of one document merged on the document-number and area columns.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from geomayora.errors import ValidationGap
from geomayora.schemas import LandRecord, MeasurementStatus, Village, coerce_area, new_record_id, now_ms

logger = logging.getLogger(__name__)

COL_GU = "NO. GU"
COL_OWNER = "NAMA PEMILIK"
COL_VILLAGE = "DESA"
COL_BLOCK = "BLOK"
COL_PLOT = "BIDANG"
COL_DOCUMENT = "NO DOKUMEN"
COL_AREA = "LUAS (m2)"
COL_STATUS = "STATUS"
COL_REMARKS = "KETERANGAN"

# Column order and labels are a compatibility contract with existing files.
COLUMNS = [COL_GU, COL_OWNER, COL_VILLAGE, COL_BLOCK, COL_PLOT, COL_DOCUMENT, COL_AREA, COL_STATUS, COL_REMARKS]
COLUMN_WIDTHS = [15, 25, 20, 10, 10, 25, 12, 15, 45]
MERGED_COLUMNS = (COLUMNS.index(COL_DOCUMENT) + 1, COLUMNS.index(COL_AREA) + 1)

DEFAULT_VILLAGE = list(Village)[0]
DEFAULT_STATUS = list(MeasurementStatus)[0]
DEFAULT_OWNER = "Tanpa Nama"
NO_VILLAGE_SHEET = "Tanpa Desa"

SHEET_TITLE_MAX = 31
_FORBIDDEN_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")
_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+(?:[.,]\d+)?|[.,]\d+)")

# keep codes like "007" or "0012" as typed; only empty cells are missing
_AS_TEXT = dict(dtype=str, keep_default_na=False, na_values=[""])

HEADER_FILL = PatternFill("solid", fgColor="D1FAE5")
HEADER_FONT = Font(bold=True, color="000000")
HEADER_BORDER = Border(*(Side(style="thin", color="000000") for _ in range(4)))
CELL_BORDER = Border(*(Side(style="thin", color="D1D5DB") for _ in range(4)))


@dataclass
class ImportReport:
    records: List[LandRecord] = field(default_factory=list)
    gaps: List[ValidationGap] = field(default_factory=list)


@dataclass
class VillageTable:
    village: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    # inclusive (first, last) row indexes into `rows` of same-document runs
    merges: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def sheet_name(self) -> str:
        return sheet_title(self.village)


# -------------------------
# Import
# -------------------------

def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _parse_area(value: Any) -> Optional[float]:
    """Leading number of the cell, like the old importer's parseFloat; None if there is none."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    m = _LEADING_NUMBER.match(_cell_text(value))
    if not m:
        return None
    return float(m.group(0).strip().replace(",", "."))


def _pick_enum(text: str, enum_cls, default):
    for member in enum_cls:
        if text == member.value:
            return member, False
    return default, True


def row_to_record(row: Dict[str, Any], row_number: int, gaps: List[ValidationGap]) -> LandRecord:
    village_raw = _cell_text(row.get(COL_VILLAGE))
    village, village_gap = _pick_enum(village_raw, Village, DEFAULT_VILLAGE)
    if village_gap:
        gaps.append(ValidationGap(row_number, COL_VILLAGE, village_raw, village.value))

    status_raw = _cell_text(row.get(COL_STATUS))
    status, status_gap = _pick_enum(status_raw, MeasurementStatus, DEFAULT_STATUS)
    if status_gap:
        gaps.append(ValidationGap(row_number, COL_STATUS, status_raw, status.value))

    area_raw = row.get(COL_AREA)
    parsed = _parse_area(area_raw)
    area = coerce_area(parsed)
    if parsed is None or parsed != area:
        gaps.append(ValidationGap(row_number, COL_AREA, area_raw, area))

    owner = _cell_text(row.get(COL_OWNER))
    if not owner:
        gaps.append(ValidationGap(row_number, COL_OWNER, row.get(COL_OWNER), DEFAULT_OWNER))
        owner = DEFAULT_OWNER

    # ids and timestamps are always fresh: import never overwrites records
    return LandRecord(
        id=new_record_id(),
        created_at=now_ms(),
        no_gu=_cell_text(row.get(COL_GU)),
        owner_name=owner,
        village=village.value,
        block=_cell_text(row.get(COL_BLOCK)),
        plot_number=_cell_text(row.get(COL_PLOT)),
        document_number=_cell_text(row.get(COL_DOCUMENT)),
        area=area,
        status=status,
        remarks=_cell_text(row.get(COL_REMARKS)),
    )


def rows_to_records(rows: Iterable[Dict[str, Any]]) -> ImportReport:
    report = ImportReport()
    for i, row in enumerate(rows):
        report.records.append(row_to_record(row, i + 1, report.gaps))
    if report.gaps:
        logger.info("Import substituted defaults for %s cells", len(report.gaps))
    return report


def _fill_merged(ws) -> None:
    """Copy the top-left value of every merged range into all of its cells."""
    for rng in list(ws.merged_cells.ranges):
        value = ws.cell(row=rng.min_row, column=rng.min_col).value
        ws.unmerge_cells(str(rng))
        for r in range(rng.min_row, rng.max_row + 1):
            for c in range(rng.min_col, rng.max_col + 1):
                ws.cell(row=r, column=c).value = value


def _frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    df = df.dropna(how="all")
    rows = []
    for rec in df.to_dict(orient="records"):
        rows.append({str(k).strip(): (None if _cell_text(v) == "" else v) for k, v in rec.items()})
    return rows


def read_rows(content: bytes, filename: str) -> List[Dict[str, Any]]:
    """
    Read every data row of a .csv or .xlsx upload as {header: value}.
    All sheets of a workbook are read, so a file produced by the exporter
    imports back in full.
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        return _frame_to_rows(pd.read_csv(io.BytesIO(content), **_AS_TEXT))
    if name.endswith(".xls"):
        return _frame_to_rows(pd.read_excel(io.BytesIO(content), **_AS_TEXT))

    wb = load_workbook(io.BytesIO(content), data_only=True)
    rows: List[Dict[str, Any]] = []
    for ws in wb.worksheets:
        _fill_merged(ws)
        values = list(ws.iter_rows(values_only=True))
        if not values:
            continue
        header = [_cell_text(h) for h in values[0]]
        keep = [i for i, h in enumerate(header) if h]
        df = pd.DataFrame(
            [[row[i] if i < len(row) else None for i in keep] for row in values[1:]],
            columns=[header[i] for i in keep],
        )
        rows.extend(_frame_to_rows(df))
    return rows


# -------------------------
# Export
# -------------------------

def sheet_title(name: str) -> str:
    title = _FORBIDDEN_SHEET_CHARS.sub("", name or "").strip()
    return (title or NO_VILLAGE_SHEET)[:SHEET_TITLE_MAX]


def record_to_row(record: LandRecord) -> Dict[str, Any]:
    return {
        COL_GU: record.no_gu,
        COL_OWNER: record.owner_name,
        COL_VILLAGE: record.village,
        COL_BLOCK: record.block,
        COL_PLOT: record.plot_number,
        COL_DOCUMENT: record.document_number,
        COL_AREA: record.area,
        COL_STATUS: record.status.value,
        COL_REMARKS: record.remarks,
    }


def _document_key(record: LandRecord) -> str:
    return (record.document_number or "").strip().casefold()


def _document_runs(records: Sequence[LandRecord]) -> List[Tuple[int, int]]:
    runs = []
    start = 0
    for i in range(1, len(records) + 1):
        if i == len(records) or _document_key(records[i]) != _document_key(records[start]):
            if i - 1 > start and _document_key(records[start]):
                runs.append((start, i - 1))
            start = i
    return runs


def build_village_tables(records: Iterable[LandRecord]) -> List[VillageTable]:
    """Partition the full record set by village, in first-seen village order."""
    by_village: Dict[str, List[LandRecord]] = {}
    for r in records:
        by_village.setdefault(r.village or NO_VILLAGE_SHEET, []).append(r)

    tables = []
    for village, members in by_village.items():
        ordered = sorted(members, key=_document_key)
        tables.append(VillageTable(
            village=village,
            rows=[record_to_row(r) for r in ordered],
            merges=_document_runs(ordered),
        ))
    return tables


def _style_sheet(ws, row_count: int) -> None:
    for col_idx, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.border = HEADER_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for row in ws.iter_rows(min_row=2, max_row=row_count + 1):
        for cell in row:
            cell.border = CELL_BORDER
            cell.alignment = Alignment(vertical="center")


def _add_sheet(wb: Workbook, title: str, rows: Sequence[Dict[str, Any]], merges: Sequence[Tuple[int, int]]):
    used = set(wb.sheetnames)
    candidate, n = title, 2
    while candidate in used:
        suffix = f" ({n})"
        candidate = title[:SHEET_TITLE_MAX - len(suffix)] + suffix
        n += 1

    ws = wb.create_sheet(title=candidate)
    ws.append(COLUMNS)
    for row in rows:
        ws.append([row.get(c) for c in COLUMNS])

    _style_sheet(ws, len(rows))

    for first, last in merges:
        for col in MERGED_COLUMNS:
            ws.merge_cells(start_row=first + 2, start_column=col, end_row=last + 2, end_column=col)

    ws.auto_filter.ref = f"A1:{get_column_letter(len(COLUMNS))}{len(rows) + 1}"
    return ws


def write_workbook(tables: Sequence[VillageTable]) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)
    for table in tables:
        _add_sheet(wb, table.sheet_name, table.rows, table.merges)
    if not tables:
        _add_sheet(wb, "Data", [], [])

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_workbook(records: Iterable[LandRecord]) -> bytes:
    return write_workbook(build_village_tables(records))


def template_workbook() -> bytes:
    example = {
        COL_GU: "Cth: N1",
        COL_OWNER: "Budi Santoso",
        COL_VILLAGE: Village.DANGDEUR.value,
        COL_BLOCK: "1",
        COL_PLOT: "1",
        COL_DOCUMENT: "C 1234",
        COL_AREA: 150,
        COL_STATUS: MeasurementStatus.PENDING.value,
        COL_REMARKS: "Tanah pekarangan",
    }
    wb = Workbook()
    wb.remove(wb.active)
    _add_sheet(wb, "Template Upload", [example], [])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
