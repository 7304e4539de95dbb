"""Ingest utilities shared by parse jobs and CLI commands.

``StatementRows`` picks the adapter for a detected format and exposes the
extracted rows as one iterable, so the normalizer consumes CSV and OFX input
lazily while Excel and PDF (which need the whole document) are materialized.
Side-channel results (warnings, the OFX ledger balance) are available on the
instance once iteration finishes.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Sequence
from decimal import Decimal

from ..config import DateOrder
from ..logging_setup import get_logger
from ..models import ExtractionResult, FileFormat, ParsedTransaction, RawRow
from ..normalizers import quantize_cents, try_decimal

_logger = get_logger("statement_ingest.ingest.utils")


class StatementRows:
    """Iterable of :class:`RawRow` for one upload.

    Usage
    -----
    rows = StatementRows(FileFormat.CSV, data)
    result = normalize_rows(rows)
    rows.warnings, rows.closing_balance, rows.closing_date
    """

    def __init__(self, kind: FileFormat, data: bytes, *, date_order: DateOrder = "MDY") -> None:
        if kind not in (FileFormat.CSV, FileFormat.EXCEL, FileFormat.OFX, FileFormat.PDF):
            raise ValueError(f"no extractor for format {kind!r}")
        self.kind = kind
        self.date_order = date_order
        self.warnings: list[str] = []
        self.closing_balance: Decimal | None = None
        self.closing_date: str | None = None
        self._data = data

    def __iter__(self) -> Iterator[RawRow]:
        # Adapters import their third-party decoders; load only the one needed
        if self.kind is FileFormat.CSV:
            from .adapters.csv_rows import iter_csv_rows

            yield from iter_csv_rows(self._data, warnings=self.warnings, date_order=self.date_order)
        elif self.kind is FileFormat.OFX:
            from .adapters.ofx import OfxReader

            reader = OfxReader(self._data)
            yield from reader
            self.warnings.extend(reader.warnings)
            self.closing_balance = try_decimal(reader.ledger_balance)
            self.closing_date = reader.ledger_date
        else:
            result = self._materialized()
            self.warnings.extend(result.warnings)
            yield from result.rows

    def _materialized(self) -> ExtractionResult:
        if self.kind is FileFormat.EXCEL:
            from .adapters.excel import extract_excel_rows

            return extract_excel_rows(self._data, date_order=self.date_order)
        from .adapters.pdf import extract_pdf_rows

        return extract_pdf_rows(self._data, date_order=self.date_order)


def attach_statement_balance(
    transactions: Sequence[ParsedTransaction],
    balance: Decimal | None,
    as_of: str | None,
) -> list[ParsedTransaction]:
    """Attach a statement-level closing balance to one transaction.

    The snapshot goes to the latest-dated transaction on or before ``as_of``
    (ties: last in file order). Nothing changes when no balance was reported
    or when any transaction already carries its own running balance.
    """

    items = list(transactions)
    if balance is None or not items or any(t.balance is not None for t in items):
        return items

    target: int | None = None
    for idx, tx in enumerate(items):
        if as_of is not None and tx.date > as_of:
            continue
        if target is None or tx.date >= items[target].date:
            target = idx
    if target is None:
        _logger.debug("closing balance dated %s precedes every transaction", as_of)
        return items

    items[target] = dataclasses.replace(items[target], balance=quantize_cents(balance))
    return items


__all__ = ["StatementRows", "attach_statement_balance"]
