"""Data models for statement ingestion and reconciliation.

Three layers of records flow through the pipeline:

- :class:`RawRow`: what a format adapter pulled out of the file, with cell
  values still in their source representation. Never persisted.
- :class:`ParsedTransaction`: canonical, validated transaction produced by
  the normalizer and shown to the user for review. Immutable.
- :class:`Transaction`: a transaction persisted against an
  :class:`Account`.

Amounts are ``Decimal`` quantized to two places throughout; negative means
money leaving the account.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal, TypeAlias

TransactionType: TypeAlias = Literal["income", "expense", "transfer"]
ImportSource: TypeAlias = Literal["manual", "upload"]

# Cell value as read from the source file (CSV/PDF text, Excel numbers, ...)
RawValue: TypeAlias = str | int | float | Decimal | None

TRANSACTION_TYPES: frozenset[str] = frozenset({"income", "expense", "transfer"})

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class FileFormat(StrEnum):
    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"
    OFX = "ofx"
    UNKNOWN = "unknown"


def is_iso_date(value: str) -> bool:
    """Return True when ``value`` is a real calendar date in ``YYYY-MM-DD`` form."""

    if not _ISO_DATE_RE.fullmatch(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Extraction output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AmountFields:
    """Amount-ish cells of a row. Any subset may be present."""

    withdrawal: RawValue = None
    deposit: RawValue = None
    amount: RawValue = None


@dataclass(frozen=True, slots=True)
class RawRow:
    """A single row extracted from an uploaded statement.

    ``date`` is kept in whatever textual form the source used; Excel date
    cells are rendered to ISO by the adapter. ``transfer`` is set when the
    source explicitly marks the row as a transfer (e.g. OFX ``XFER``).
    """

    date: str | None
    description_raw: str
    amount_fields: AmountFields
    balance: RawValue = None
    source_line_text: str = ""
    line_number: int | None = None
    transfer: bool = False
    extra_lines: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Materialized adapter output: rows plus soft warnings."""

    rows: list[RawRow] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical transactions
# ---------------------------------------------------------------------------


def check_amount_type(amount: Decimal, type_: str) -> None:
    """Raise ``ValueError`` when ``amount``'s sign contradicts ``type_``.

    Zero amounts are accepted as expenses (see ``normalizers.ZERO_AMOUNT_TYPE``).
    Transfers carry a per-leg sign and are not constrained.
    """

    if type_ not in TRANSACTION_TYPES:
        raise ValueError(f"unknown transaction type: {type_!r}")
    if type_ == "income" and amount <= 0:
        raise ValueError(f"income must have a positive amount, got {amount}")
    if type_ == "expense" and amount > 0:
        raise ValueError(f"expense must not have a positive amount, got {amount}")


@dataclass(frozen=True, slots=True)
class ParsedTransaction:
    """Canonical transaction produced by a parse job.

    Attributes
    ----------
    date:
        ISO-8601 calendar date (``YYYY-MM-DD``).
    description:
        Whitespace-collapsed, non-empty description.
    amount:
        Signed amount; negative is an expense.
    type:
        ``income``, ``expense`` or ``transfer``; consistent with ``amount``.
    merchant:
        Best-effort merchant guess, ``None`` when no guess was possible.
    balance:
        Running balance snapshot printed on the statement for this row.
    raw_lines:
        Source text the row was built from (for review/debugging).
    """

    date: str
    description: str
    amount: Decimal
    type: TransactionType
    merchant: str | None = None
    balance: Decimal | None = None
    raw_lines: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not is_iso_date(self.date):
            raise ValueError(f"date must be YYYY-MM-DD, got {self.date!r}")
        if not self.description.strip():
            raise ValueError("description must be non-empty")
        if not isinstance(self.amount, Decimal):
            raise TypeError("amount must be a Decimal")
        check_amount_type(self.amount, self.type)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParsedTransaction:
        """Rebuild a transaction from :meth:`to_dict` output (or an edited copy).

        ``type`` may be omitted, in which case it is inferred from the amount.
        Raises ``ValueError``/``TypeError`` when the payload is invalid.
        """

        from .normalizers import infer_type, quantize_cents, to_decimal

        amount = quantize_cents(to_decimal(data.get("amount")))
        balance_raw = data.get("balance")
        balance = quantize_cents(to_decimal(balance_raw)) if balance_raw is not None else None
        raw_lines = data.get("rawLines", data.get("raw_lines")) or ()
        return cls(
            date=str(data.get("date") or ""),
            description=" ".join(str(data.get("description") or "").split()),
            amount=amount,
            type=data.get("type") or infer_type(amount),
            merchant=data.get("merchant") or None,
            balance=balance,
            raw_lines=tuple(str(line) for line in raw_lines),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view with camelCase keys for the review UI."""

        out: dict[str, Any] = {
            "date": self.date,
            "description": self.description,
            "amount": str(self.amount),
            "type": self.type,
        }
        if self.merchant is not None:
            out["merchant"] = self.merchant
        if self.balance is not None:
            out["balance"] = str(self.balance)
        if self.raw_lines:
            out["rawLines"] = list(self.raw_lines)
        return out


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Account:
    id: str
    name: str
    account_type: str
    balance: Decimal = Decimal("0.00")
    opening_balance: Decimal = Decimal("0.00")
    masked_number: str | None = None
    institution_name: str | None = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """A transaction stored against an account.

    ``fingerprint`` is stored for fast duplicate lookups but is always
    recomputable from ``(account_id, date, amount, description)``.
    """

    id: str
    account_id: str
    date: str
    description: str
    amount: Decimal
    type: TransactionType
    fingerprint: str
    import_source: ImportSource = "manual"
    merchant: str | None = None
    category_id: str | None = None
    balance: Decimal | None = None
    raw_lines: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Import options and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportOptions:
    update_account_balance: bool = False


@dataclass(slots=True)
class ImportResult:
    added: int = 0
    duplicates: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"added": self.added, "duplicates": self.duplicates, "errors": list(self.errors)}


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    transactions: list[ParsedTransaction]
    errors: list[str]


def amounts_total(items: Sequence[ParsedTransaction]) -> Decimal:
    """Sum of signed amounts, handy for previews and reports."""

    return sum((t.amount for t in items), Decimal("0.00"))


__all__ = [
    "FileFormat",
    "TransactionType",
    "ImportSource",
    "RawValue",
    "TRANSACTION_TYPES",
    "is_iso_date",
    "check_amount_type",
    "AmountFields",
    "RawRow",
    "ExtractionResult",
    "ParsedTransaction",
    "Account",
    "Transaction",
    "ImportOptions",
    "ImportResult",
    "NormalizationResult",
    "amounts_total",
]
