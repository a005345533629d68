"""Tests for spreadsheet import/export."""

import io

from openpyxl import load_workbook

from geomayora.schemas import MeasurementStatus, Village
from geomayora.services.spreadsheet import (
    COL_AREA,
    COL_DOCUMENT,
    COL_GU,
    COL_OWNER,
    COL_STATUS,
    COL_VILLAGE,
    COLUMNS,
    DEFAULT_OWNER,
    build_village_tables,
    export_workbook,
    read_rows,
    rows_to_records,
    sheet_title,
    template_workbook,
)

from conftest import make_record


def _row(**overrides):
    row = {
        COL_GU: "N1",
        COL_OWNER: "Budi",
        COL_VILLAGE: Village.DANGDEUR.value,
        "BLOK": "1",
        "BIDANG": "7",
        COL_DOCUMENT: "C-100",
        COL_AREA: 250,
        COL_STATUS: MeasurementStatus.COMPLETED.value,
        "KETERANGAN": "",
    }
    row.update(overrides)
    return row


# ═══════════════════════════════════════════════════
# Import mapping
# ═══════════════════════════════════════════════════

class TestRowsToRecords:

    def test_clean_row_has_no_gaps(self):
        report = rows_to_records([_row()])

        rec = report.records[0]
        assert report.gaps == []
        assert rec.no_gu == "N1"
        assert rec.area == 250
        assert rec.status == MeasurementStatus.COMPLETED
        assert rec.file_link is None

    def test_bad_cells_get_defaults_and_are_reported(self):
        report = rows_to_records([_row(**{
            COL_VILLAGE: "Desa Entah",
            COL_STATUS: "selesai",
            COL_AREA: "luas?",
            COL_OWNER: None,
        })])

        rec = report.records[0]
        assert rec.village == Village.DANGDEUR.value
        assert rec.status == MeasurementStatus.PENDING
        assert rec.area == 0
        assert rec.owner_name == DEFAULT_OWNER
        assert {g.column for g in report.gaps} == {COL_VILLAGE, COL_STATUS, COL_AREA, COL_OWNER}
        assert all(g.row == 1 for g in report.gaps)

    def test_area_takes_leading_number(self):
        report = rows_to_records([_row(**{COL_AREA: "120,5 m2"})])
        assert report.records[0].area == 120.5
        assert report.gaps == []

    def test_negative_area_is_zeroed(self):
        report = rows_to_records([_row(**{COL_AREA: -5})])
        assert report.records[0].area == 0
        assert [g.column for g in report.gaps] == [COL_AREA]

    def test_every_row_gets_a_fresh_id(self):
        report = rows_to_records([_row(), _row()])
        assert report.records[0].id != report.records[1].id


# ═══════════════════════════════════════════════════
# Export
# ═══════════════════════════════════════════════════

class TestExport:

    def test_one_table_per_village_sorted_by_document(self):
        records = [
            make_record(village=Village.PANGKAT.value, document_number="c-300"),
            make_record(village=Village.DANGDEUR.value, document_number="C-200"),
            make_record(village=Village.PANGKAT.value, document_number="C-100"),
        ]
        tables = build_village_tables(records)

        assert [t.village for t in tables] == [Village.PANGKAT.value, Village.DANGDEUR.value]
        assert [r[COL_DOCUMENT] for r in tables[0].rows] == ["C-100", "c-300"]

    def test_same_document_rows_are_merged(self):
        records = [
            make_record(document_number="C-100", owner_name="Budi"),
            make_record(document_number="C-100", owner_name="Ani"),
            make_record(document_number="C-200"),
            make_record(document_number="", owner_name="Dedi"),
            make_record(document_number="", owner_name="Eka"),
        ]
        tables = build_village_tables(records)
        # blank document numbers sort first and are never merged
        assert tables[0].merges == [(2, 3)]

        wb = load_workbook(io.BytesIO(export_workbook(records)))
        ws = wb[sheet_title(Village.DANGDEUR.value)]
        assert [c.value for c in ws[1]] == COLUMNS
        assert sorted(str(r) for r in ws.merged_cells.ranges) == ["F4:F5", "G4:G5"]
        assert ws.auto_filter.ref == "A1:I6"

    def test_case_variants_of_one_document_merge(self):
        records = [
            make_record(document_number="C-100", owner_name="Budi"),
            make_record(document_number="c-100", owner_name="Ani"),
            make_record(document_number="C-100 ", owner_name="Dedi"),
        ]
        tables = build_village_tables(records)
        assert tables[0].merges == [(0, 2)]

    def test_empty_export_still_has_a_sheet(self):
        wb = load_workbook(io.BytesIO(export_workbook([])))
        assert wb.sheetnames == ["Data"]

    def test_sheet_title_is_sanitised(self):
        assert sheet_title("Desa [A]/B:C") == "Desa ABC"
        assert len(sheet_title("x" * 50)) == 31
        assert sheet_title("") == "Tanpa Desa"

    def test_template_has_headers_and_example(self):
        rows = read_rows(template_workbook(), "template.xlsx")
        assert len(rows) == 1
        assert set(rows[0]) == set(COLUMNS)


# ═══════════════════════════════════════════════════
# Reading uploads
# ═══════════════════════════════════════════════════

class TestReadRows:

    def test_export_reimports_with_merged_values_filled(self):
        records = [
            make_record(document_number="C-100", owner_name="Budi", area=250),
            make_record(document_number="C-100", owner_name="Ani", area=250),
            make_record(village=Village.PABUARAN.value, document_number="C-9", no_gu="N4"),
        ]
        rows = read_rows(export_workbook(records), "export.xlsx")
        report = rows_to_records(rows)

        assert len(report.records) == 3
        by_owner = {(r.village, r.owner_name): r for r in report.records}
        ani = by_owner[(Village.DANGDEUR.value, "Ani")]
        assert ani.document_number == "C-100"
        assert ani.area == 250
        assert report.gaps == []

    def test_export_reimports_every_field(self):
        def _fields(r):
            return (r.owner_name, r.no_gu, r.document_number, r.village, r.block,
                    r.plot_number, r.area, r.status, r.remarks)

        records = [
            make_record(no_gu="007", document_number="0012", owner_name="Budi", block="01",
                        status=MeasurementStatus.IN_PROGRESS, remarks="pemilik pertama"),
            make_record(no_gu="007", document_number="0012", owner_name="Ani", block="01",
                        status=MeasurementStatus.VERIFIED, remarks="ahli waris"),
            make_record(village=Village.SUMUR_BANDUNG.value, no_gu="N4", document_number="C-9",
                        owner_name="Dedi", area=99.5, status=MeasurementStatus.COMPLETED, remarks=""),
            make_record(village=Village.PANGKAT.value, no_gu="N2", document_number="",
                        owner_name="Eka", area=0, remarks="belum ada dokumen"),
        ]
        report = rows_to_records(read_rows(export_workbook(records), "export.xlsx"))

        assert {_fields(r) for r in report.records} == {_fields(r) for r in records}
        assert report.gaps == []

    def test_csv(self):
        content = (
            ",".join(COLUMNS) + "\n"
            + "N1,Budi,Desa Pangkat,1,7,C-100,150,Terverifikasi,catatan\n"
        ).encode("utf-8")
        rows = read_rows(content, "data.csv")
        report = rows_to_records(rows)

        rec = report.records[0]
        assert rec.village == Village.PANGKAT.value
        assert rec.status == MeasurementStatus.VERIFIED
        assert rec.area == 150
        assert rec.remarks == "catatan"

    def test_csv_keeps_leading_zeros_in_codes(self):
        content = (
            ",".join(COLUMNS) + "\n"
            + "007,Budi,Desa Pangkat,01,7,0012,150,Terverifikasi,\n"
        ).encode("utf-8")
        rec = rows_to_records(read_rows(content, "data.csv")).records[0]

        assert rec.no_gu == "007"
        assert rec.block == "01"
        assert rec.document_number == "0012"
        assert rec.area == 150

    def test_blank_rows_are_dropped(self):
        content = (",".join(COLUMNS) + "\n" + ",,,,,,,,\n" + "N2,Ani,,,,,,,\n").encode("utf-8")
        rows = read_rows(content, "data.csv")
        assert len(rows) == 1
        assert rows[0][COL_GU] == "N2"
