from __future__ import annotations

import types
from decimal import Decimal

import pytest

from statement_ingest.errors import CorruptFile
from statement_ingest.ingest.adapters.csv_rows import iter_csv_rows, sniff_encoding
from statement_ingest.ingest.adapters.tabular import detect_header
from statement_ingest.normalizers import normalize_rows
from tests.helpers.builders import dedent_bytes


def _rows(data: bytes, **kwargs):
    warnings: list[str] = []
    rows = list(iter_csv_rows(data, warnings=warnings, **kwargs))
    return rows, warnings


def test_header_with_split_columns() -> None:
    data = dedent_bytes(
        """
        Date,Description,Withdrawal,Deposit,Balance
        01/02/2024,COFFEE SHOP,4.50,,995.50
        01/03/2024,PAYROLL ACME,,"1,200.00","2,195.50"
        """
    )
    rows, warnings = _rows(data)
    assert warnings == []
    assert [r.date for r in rows] == ["01/02/2024", "01/03/2024"]
    assert rows[0].amount_fields.withdrawal == "4.50"
    assert rows[1].amount_fields.deposit == "1,200.00"
    assert rows[1].balance == "2,195.50"
    assert rows[0].line_number == 2

    result = normalize_rows(rows)
    assert [t.amount for t in result.transactions] == [Decimal("-4.50"), Decimal("1200.00")]
    assert [t.type for t in result.transactions] == ["expense", "income"]


def test_preamble_before_header_is_skipped() -> None:
    data = dedent_bytes(
        """
        First Example Bank
        Account,****1234
        Transaction Date,Details,Amount
        2024-02-01,GROCERY MART,-54.20
        """
    )
    rows, warnings = _rows(data)
    assert len(rows) == 1
    assert rows[0].description_raw == "GROCERY MART"
    assert warnings == []


def test_headerless_rows_guess_columns_by_position() -> None:
    data = dedent_bytes(
        """
        01/05/2024,CHECK 1001 RENT,-1500.00,500.00
        01/06/2024,ATM CASH,-40.00,460.00
        """
    )
    rows, _ = _rows(data)
    assert rows[0].amount_fields.amount == "-1500.00"
    assert rows[0].balance == "500.00"
    assert rows[1].description_raw == "ATM CASH"


def test_semicolon_delimiter_is_sniffed() -> None:
    data = dedent_bytes(
        """
        Date;Description;Amount
        2024-03-01;BAKERY;-3.20
        2024-03-02;BOOKSHOP;-12.00
        """
    )
    rows, _ = _rows(data)
    assert [r.description_raw for r in rows] == ["BAKERY", "BOOKSHOP"]


def test_rows_without_date_or_amount_are_dropped_with_warning() -> None:
    data = dedent_bytes(
        """
        Date,Description,Amount
        2024-03-01,BAKERY,-3.20
        ,Subtotal for page,
        """
    )
    rows, warnings = _rows(data)
    assert len(rows) == 1
    assert warnings == ["line 3: no date or amount found; row skipped"]


def test_type_column_marks_transfers() -> None:
    data = dedent_bytes(
        """
        Date,Description,Amount,Type
        2024-03-01,TO SAVINGS,-100.00,Transfer
        2024-03-02,BOOKSHOP,-12.00,Debit
        """
    )
    rows, _ = _rows(data)
    assert [r.transfer for r in rows] == [True, False]


def test_latin1_fallback() -> None:
    data = "Date,Description,Amount\n2024-01-01,CAFÉ,-3.00\n".encode("latin-1")
    assert sniff_encoding(data) == "latin-1"
    rows, _ = _rows(data)
    assert rows[0].description_raw == "CAFÉ"


def test_utf8_bom_is_stripped() -> None:
    data = b"\xef\xbb\xbfDate,Description,Amount\n2024-01-01,SHOP,-3.00\n"
    rows, _ = _rows(data)
    assert len(rows) == 1


def test_binary_payload_is_corrupt() -> None:
    with pytest.raises(CorruptFile):
        _rows(b"PK\x03\x04\x00\x00garbage")


def test_rows_are_streamed_lazily() -> None:
    data = dedent_bytes(
        """
        Date,Description,Amount
        2024-03-01,BAKERY,-3.20
        2024-03-02,BOOKSHOP,-12.00
        """
    )
    it = iter_csv_rows(data, warnings=[])
    assert isinstance(it, types.GeneratorType)
    assert next(it).description_raw == "BAKERY"


def test_detect_header_rejects_rows_with_dates() -> None:
    assert detect_header(["2024-01-01", "Amount", "5.00"]) is None
    cmap = detect_header(["Posted Date", "Description", "Debit", "Credit", "Balance"])
    assert cmap is not None
    assert (cmap.date, cmap.withdrawal, cmap.deposit, cmap.balance) == (0, 2, 3, 4)


@pytest.mark.parametrize(
    "cells",
    [
        ["Name", "John Smith"],
        ["Description", "Checking account"],
        ["Balance", "1,234.56"],
        ["Date", "Description"],
    ],
)
def test_detect_header_needs_date_and_money_columns(cells) -> None:
    assert detect_header(cells) is None


def test_preamble_label_does_not_hijack_the_header() -> None:
    data = dedent_bytes(
        """
        Name,John Smith
        Account,****1234
        Date,Description,Amount
        01/02/2024,COFFEE SHOP,-4.50
        01/03/2024,PAYROLL ACME,1200.00
        """
    )
    rows, warnings = _rows(data)
    parsed = normalize_rows(rows).transactions
    assert [(t.description, t.amount) for t in parsed] == [
        ("COFFEE SHOP", Decimal("-4.50")),
        ("PAYROLL ACME", Decimal("1200.00")),
    ]
    assert warnings == []
    assert rows[0].line_number == 4
