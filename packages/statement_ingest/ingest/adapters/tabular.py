"""Shared row → RawRow mapping for spreadsheet-shaped sources (CSV, Excel).

Header handling
---------------
The first non-blank row is treated as a header when any of its cells is a
recognizable column name (date/description/amount/withdrawal/deposit/balance
and common synonyms, case-insensitive) and none of its cells is a date. A few
preamble lines above the header (bank name, account number, period) are
tolerated. When no header shows up before the first dated row, every row is
treated as data and columns are guessed by position:

- the first date-like cell is the date;
- numeric cells after it are, from the right: balance, amount (two cells) or
  balance, deposit, withdrawal (three or more);
- the longest remaining text cell is the description.

Rows with neither a date nor an amount are dropped with a warning. Rows that
have one of the two are passed on so the normalizer can report exactly what is
wrong with them.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime

from ...config import DateOrder
from ...logging_setup import get_logger
from ...models import AmountFields, RawRow, RawValue
from ...normalizers import looks_like_date, try_decimal

_logger = get_logger("statement_ingest.ingest.tabular")

DATE_HEADERS = (
    "date",
    "transaction date",
    "trans date",
    "posted date",
    "post date",
    "posting date",
    "value date",
    "booking date",
)
DESCRIPTION_HEADERS = (
    "description",
    "transaction description",
    "details",
    "narrative",
    "particulars",
    "payee",
    "name",
    "memo",
)
AMOUNT_HEADERS = ("amount", "transaction amount", "amount ($)", "amount($)", "value")
WITHDRAWAL_HEADERS = (
    "withdrawal",
    "withdrawals",
    "withdrawal amount",
    "debit",
    "debits",
    "debit amount",
    "money out",
    "paid out",
    "dr",
)
DEPOSIT_HEADERS = (
    "deposit",
    "deposits",
    "deposit amount",
    "credit",
    "credits",
    "credit amount",
    "money in",
    "paid in",
    "cr",
)
BALANCE_HEADERS = ("balance", "running balance", "closing balance", "available balance")
TYPE_HEADERS = ("type", "transaction type")

# Preamble rows tolerated above a header before falling back to positional mode
MAX_PREAMBLE_ROWS = 15


@dataclass(frozen=True, slots=True)
class ColumnMap:
    date: int | None = None
    description: int | None = None
    amount: int | None = None
    withdrawal: int | None = None
    deposit: int | None = None
    balance: int | None = None
    type: int | None = None

    def mapped(self) -> set[int]:
        return {
            i
            for i in (
                self.date,
                self.description,
                self.amount,
                self.withdrawal,
                self.deposit,
                self.balance,
                self.type,
            )
            if i is not None
        }


def cell_text(value: object) -> str:
    """Render a cell for text matching; dates become ISO strings."""

    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return " ".join(str(value).split())


def _find(normalized: Sequence[str], candidates: Iterable[str]) -> int | None:
    for candidate in candidates:
        if candidate in normalized:
            return normalized.index(candidate)
    return None


def detect_header(cells: Sequence[object], *, date_order: DateOrder = "MDY") -> ColumnMap | None:
    """Return a :class:`ColumnMap` when ``cells`` look like a header row.

    A header must name a date column and at least one money column; a lone
    matching label in a preamble line such as ``Name,John Smith`` is not one.
    """

    normalized = [cell_text(c).lower().strip(" :") for c in cells]
    if any(looks_like_date(c, date_order=date_order) for c in cells if cell_text(c)):
        return None
    cmap = ColumnMap(
        date=_find(normalized, DATE_HEADERS),
        description=_find(normalized, DESCRIPTION_HEADERS),
        amount=_find(normalized, AMOUNT_HEADERS),
        withdrawal=_find(normalized, WITHDRAWAL_HEADERS),
        deposit=_find(normalized, DEPOSIT_HEADERS),
        balance=_find(normalized, BALANCE_HEADERS),
        type=_find(normalized, TYPE_HEADERS),
    )
    if cmap.date is None:
        return None
    if cmap.amount is None and cmap.withdrawal is None and cmap.deposit is None:
        return None
    return cmap


def _get(cells: Sequence[object], idx: int | None) -> object:
    if idx is None or idx >= len(cells):
        return None
    return cells[idx]


def _raw(value: object) -> RawValue:
    if value is None or isinstance(value, (str, int, float)):
        return value
    return cell_text(value)


def _source_text(cells: Sequence[object]) -> str:
    return ",".join(cell_text(c) for c in cells)


def _is_transfer(value: object) -> bool:
    return "transfer" in cell_text(value).lower() or cell_text(value).upper() == "XFER"


def row_from_columns(cells: Sequence[object], cmap: ColumnMap, line_number: int) -> RawRow:
    """Map a data row using header-derived column positions."""

    description_cell = _get(cells, cmap.description)
    description = cell_text(description_cell)
    if not description:
        # No description column: join the unmapped text cells instead
        used = cmap.mapped()
        description = " ".join(
            cell_text(c)
            for i, c in enumerate(cells)
            if i not in used and cell_text(c) and try_decimal(_raw(c)) is None
        )

    date_cell = _get(cells, cmap.date)
    return RawRow(
        date=cell_text(date_cell) or None,
        description_raw=description,
        amount_fields=AmountFields(
            withdrawal=_raw(_get(cells, cmap.withdrawal)),
            deposit=_raw(_get(cells, cmap.deposit)),
            amount=_raw(_get(cells, cmap.amount)),
        ),
        balance=_raw(_get(cells, cmap.balance)),
        source_line_text=_source_text(cells),
        line_number=line_number,
        transfer=cmap.type is not None and _is_transfer(_get(cells, cmap.type)),
    )


def row_from_positions(
    cells: Sequence[object], line_number: int, *, date_order: DateOrder = "MDY"
) -> RawRow:
    """Map a data row by guessing which cell holds which field."""

    date_idx: int | None = None
    for i, c in enumerate(cells):
        if cell_text(c) and looks_like_date(c, date_order=date_order):
            date_idx = i
            break

    start = (date_idx + 1) if date_idx is not None else 0
    numeric = [
        i
        for i in range(start, len(cells))
        if cell_text(cells[i]) and try_decimal(_raw(cells[i])) is not None
    ]

    withdrawal = deposit = amount = balance = None
    if len(numeric) >= 3:
        withdrawal, deposit, balance = (cells[i] for i in numeric[-3:])
    elif len(numeric) == 2:
        amount, balance = cells[numeric[0]], cells[numeric[1]]
    elif len(numeric) == 1:
        amount = cells[numeric[0]]

    used = set(numeric) | ({date_idx} if date_idx is not None else set())
    texts = [cell_text(c) for i, c in enumerate(cells) if i not in used and cell_text(c)]
    description = max(texts, key=len) if texts else ""

    return RawRow(
        date=cell_text(cells[date_idx]) if date_idx is not None else None,
        description_raw=description,
        amount_fields=AmountFields(
            withdrawal=_raw(withdrawal), deposit=_raw(deposit), amount=_raw(amount)
        ),
        balance=_raw(balance),
        source_line_text=_source_text(cells),
        line_number=line_number,
    )


def _has_date_and_amount(row: RawRow, *, date_order: DateOrder) -> tuple[bool, bool]:
    has_date = bool(row.date) and looks_like_date(row.date, date_order=date_order)
    f = row.amount_fields
    has_amount = any(try_decimal(v) is not None for v in (f.withdrawal, f.deposit, f.amount))
    return has_date, has_amount


def iter_table_rows(
    rows: Iterable[tuple[int, Sequence[object]]],
    *,
    warnings: list[str],
    date_order: DateOrder = "MDY",
) -> Iterator[RawRow]:
    """Yield :class:`RawRow` items from ``(line_number, cells)`` pairs.

    Lazy: rows are consumed one at a time so CSV input streams end to end.
    Warnings for dropped rows are appended to ``warnings``.
    """

    cmap: ColumnMap | None = None
    locked = False
    preamble = 0

    for line_number, cells in rows:
        if not any(cell_text(c) for c in cells):
            continue

        if not locked:
            header = detect_header(cells, date_order=date_order)
            if header is not None:
                cmap = header
                locked = True
                _logger.debug("header detected on line %d: %s", line_number, header)
                continue
            if any(cell_text(c) and looks_like_date(c, date_order=date_order) for c in cells):
                locked = True
                _logger.debug("no header row; guessing columns by position")
            else:
                preamble += 1
                if preamble > MAX_PREAMBLE_ROWS:
                    locked = True
                else:
                    continue

        if cmap is not None:
            row = row_from_columns(cells, cmap, line_number)
        else:
            row = row_from_positions(cells, line_number, date_order=date_order)

        has_date, has_amount = _has_date_and_amount(row, date_order=date_order)
        if not has_date and not has_amount:
            warnings.append(f"line {line_number}: no date or amount found; row skipped")
            continue
        yield row


__all__ = [
    "ColumnMap",
    "MAX_PREAMBLE_ROWS",
    "cell_text",
    "detect_header",
    "row_from_columns",
    "row_from_positions",
    "iter_table_rows",
]
