from __future__ import annotations

import zipfile
from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pytest

from statement_ingest.api import parse_statement
from statement_ingest.errors import CorruptFile
from statement_ingest.events import EventLog
from statement_ingest.ingest.adapters.excel import OLE2_SIGNATURE, extract_excel_rows
from statement_ingest.jobs import JobStore
from statement_ingest.normalizers import normalize_rows
from tests.helpers.builders import xlsx_bytes


def test_xlsx_with_header_and_native_dates() -> None:
    data = xlsx_bytes(
        [
            ["Date", "Description", "Amount", "Balance"],
            [datetime(2024, 1, 2), "GROCERY MART", -54.2, 945.8],
            [datetime(2024, 1, 3), "PAYROLL ACME", 1500, 2445.8],
        ]
    )
    result = extract_excel_rows(data)
    assert result.warnings == []
    assert [r.date for r in result.rows] == ["2024-01-02", "2024-01-03"]

    parsed = normalize_rows(result.rows).transactions
    assert [t.amount for t in parsed] == [Decimal("-54.20"), Decimal("1500.00")]
    assert parsed[0].balance == Decimal("945.80")


def test_xlsx_preamble_and_split_columns() -> None:
    data = xlsx_bytes(
        [
            ["Example Credit Union"],
            ["Statement period", "Jan 2024"],
            ["Posting Date", "Narrative", "Debit", "Credit"],
            ["2024-01-05", "RENT", 1200, None],
            ["2024-01-06", "REFUND", None, 30],
        ]
    )
    result = extract_excel_rows(data)
    parsed = normalize_rows(result.rows).transactions
    assert [(t.description, t.amount) for t in parsed] == [
        ("RENT", Decimal("-1200.00")),
        ("REFUND", Decimal("30.00")),
    ]
    assert result.rows[0].line_number == 4


def test_empty_worksheet() -> None:
    result = extract_excel_rows(xlsx_bytes([]))
    assert result.rows == []


def test_invalid_zip_is_corrupt() -> None:
    with pytest.raises(CorruptFile) as info:
        extract_excel_rows(b"PK\x03\x04 definitely not a workbook")
    assert info.value.file_format == "excel"


def test_invalid_xls_is_corrupt() -> None:
    with pytest.raises(CorruptFile):
        extract_excel_rows(OLE2_SIGNATURE + b"\x00" * 512)


def _replace_member(data: bytes, name: str, content: bytes) -> bytes:
    out = BytesIO()
    with zipfile.ZipFile(BytesIO(data)) as src, zipfile.ZipFile(out, "w") as dst:
        for info in src.infolist():
            dst.writestr(info, content if info.filename == name else src.read(info.filename))
    return out.getvalue()


@pytest.mark.parametrize(
    "sheet_xml",
    [
        b"<worksheet><sheetData><row><c r='A1'",
        b"\x00\x01 not xml at all",
    ],
)
def test_damaged_sheet_xml_is_corrupt(sheet_xml: bytes) -> None:
    good = xlsx_bytes([["Date", "Description", "Amount"], ["2024-01-05", "RENT", -1200]])
    data = _replace_member(good, "xl/worksheets/sheet1.xml", sheet_xml)
    with pytest.raises(CorruptFile) as info:
        extract_excel_rows(data)
    assert info.value.file_format == "excel"


def test_damaged_xlsx_fails_the_parse_job() -> None:
    good = xlsx_bytes([["Date", "Description", "Amount"], ["2024-01-05", "RENT", -1200]])
    data = _replace_member(good, "xl/worksheets/sheet1.xml", b"<worksheet><sheetData>")
    jobs = JobStore()
    events = EventLog()
    with pytest.raises(CorruptFile):
        parse_statement(data, "statement.xlsx", jobs=jobs, events=events)
    (failed,) = events.by_kind("parse_failed")
    assert jobs.get(failed.details["job_id"]).status == "failed"
