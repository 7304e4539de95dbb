"""RawRow → ParsedTransaction normalization.

Parsing primitives (amounts, dates, merchant guesses) live here and are also
used by the format adapters to recognise date/amount cells when guessing
column positions.

Policy
------
- Dates: an ordered list of patterns is tried; the first match wins.
  Ambiguous numeric dates (``01/02/03``) follow one locale assumption for the
  whole run (``date_order``, default month-first). A row whose date matches
  no pattern is dropped with a warning, never reinterpreted.
- Amounts: ``deposit - withdrawal`` when either side is present, else the
  signed ``amount`` cell. Values are quantized to cents.
- Type: explicit transfer marker → ``transfer``; positive → ``income``;
  negative → ``expense``; zero → :data:`ZERO_AMOUNT_TYPE`.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .config import DateOrder
from .logging_setup import get_logger
from .models import NormalizationResult, ParsedTransaction, RawRow, RawValue, TransactionType

_logger = get_logger("statement_ingest.normalizers")

# Zero-amount rows (fee reversals, $0 authorizations) are booked as expenses.
# This mirrors the behaviour users already see; revisit with product before
# changing it.
ZERO_AMOUNT_TYPE: TransactionType = "expense"

_CENTS = Decimal("0.01")

# Largest magnitude a Numeric(18, 2) column can store.
MAX_AMOUNT = Decimal("9999999999999999.99")

# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = ("$", "€", "£", "¥")
_TRAILING_MARKERS = re.compile(r"\s*(CR|DR|-)\s*$", re.IGNORECASE)


def to_decimal(raw: RawValue) -> Decimal:
    """Parse an accounting-formatted amount into a ``Decimal``.

    Accepts currency symbols, thousands separators, leading ``+``/``-``,
    surrounding parentheses (negative) and trailing ``CR`` (positive) / ``DR``
    or ``-`` (negative) markers, in any combination.

    Raises ``ValueError`` when ``raw`` is missing, not a number, or larger
    in magnitude than :data:`MAX_AMOUNT`.
    """

    d = _parse_amount(raw)
    if not d.is_finite() or abs(d) > MAX_AMOUNT:
        raise ValueError(f"amount out of range: {raw!r}")
    return d


def _parse_amount(raw: RawValue) -> Decimal:
    if raw is None:
        raise ValueError("amount is required")
    if isinstance(raw, bool):
        raise ValueError(f"invalid amount: {raw!r}")
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        if raw != raw or raw in (float("inf"), float("-inf")):
            raise ValueError(f"invalid amount: {raw!r}")
        # str() keeps the shortest repr (0.1 -> "0.1"), avoiding binary noise
        return Decimal(str(raw))

    s = str(raw).strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    m = _TRAILING_MARKERS.search(s)
    if m and m.start() > 0:
        negative = m.group(1).upper() != "CR"
        s = s[: m.start()].strip()

    # Strip leading sign, currency symbol and surrounding parentheses until
    # stable so orderings like "-($1,234.56)" and "$(12.00)" both work.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        for sym in _CURRENCY_SYMBOLS:
            if s.startswith(sym):
                s = s[len(sym) :].lstrip()
                changed = True
            elif s.endswith(sym):
                s = s[: -len(sym)].rstrip()
                changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").replace(" ", "")
    if not s:
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def try_decimal(raw: RawValue) -> Decimal | None:
    """Like :func:`to_decimal` but returns ``None`` for blank/invalid input."""

    try:
        return to_decimal(raw)
    except ValueError:
        return None


def quantize_cents(d: Decimal) -> Decimal:
    try:
        return d.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"amount out of range: {d}") from exc


def _is_blank(raw: RawValue) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def derive_amount(withdrawal: RawValue, deposit: RawValue, amount: RawValue) -> Decimal:
    """Return the signed amount for a row.

    When a withdrawal or deposit cell is present the result is
    ``deposit - withdrawal`` using magnitudes (a missing side counts as zero).
    Otherwise the signed ``amount`` cell is used as-is.
    """

    if not (_is_blank(withdrawal) and _is_blank(deposit)):
        w = Decimal(0) if _is_blank(withdrawal) else abs(to_decimal(withdrawal))
        d = Decimal(0) if _is_blank(deposit) else abs(to_decimal(deposit))
        return quantize_cents(d - w)
    if not _is_blank(amount):
        return quantize_cents(to_decimal(amount))
    raise ValueError("no amount, withdrawal or deposit value")


def infer_type(amount: Decimal, *, transfer: bool = False) -> TransactionType:
    if transfer:
        return "transfer"
    if amount > 0:
        return "income"
    if amount < 0:
        return "expense"
    return ZERO_AMOUNT_TYPE


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_ISO_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y%m%d")
_MDY_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%m-%d-%y")
_DMY_FORMATS = ("%d/%m/%Y", "%d/%m/%y", "%d-%m-%Y", "%d-%m-%y", "%d.%m.%Y", "%d.%m.%y")
_WRITTEN_FORMATS = (
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d %b, %Y",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%b-%d-%Y",
    "%b. %d, %Y",
)

_TIME_SUFFIX = re.compile(
    r"(?:[T\s]+\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:\s*[AaPp][Mm])?(?:Z|[+-]\d{2}:?\d{2})?)$"
)


def date_formats(date_order: DateOrder = "MDY") -> tuple[str, ...]:
    """Ordered ``strptime`` patterns for the given locale assumption."""

    numeric = _MDY_FORMATS if date_order == "MDY" else _DMY_FORMATS
    return _ISO_FORMATS + numeric + _WRITTEN_FORMATS


def parse_date(raw: object, *, date_order: DateOrder = "MDY") -> date | None:
    """Parse ``raw`` into a ``date``; ``None`` when no pattern matches."""

    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = " ".join(str(raw).split())
    if not text:
        return None
    candidates = [text]
    stripped = _TIME_SUFFIX.sub("", text).strip()
    if stripped and stripped != text:
        candidates.append(stripped)

    for candidate in candidates:
        for fmt in date_formats(date_order):
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    return None


def looks_like_date(raw: object, *, date_order: DateOrder = "MDY") -> bool:
    return parse_date(raw, date_order=date_order) is not None


# ---------------------------------------------------------------------------
# Descriptions and merchants
# ---------------------------------------------------------------------------

_MERCHANT_PREFIX = re.compile(
    r"^(?:(?:"
    r"DEBIT\s+CARD\s+PURCHASE|POS\s+PURCHASE|POS\s+DEBIT|POS|CHECKCARD|CHECK\s+CARD|"
    r"CARD\s+PURCHASE|PURCHASE\s+AUTHORIZED\s+ON\s+\d{1,2}/\d{1,2}|PURCHASE|"
    r"ACH\s+DEBIT|ACH\s+CREDIT|ACH|RECURRING\s+PAYMENT|VISA"
    r")\b|SQ\s*\*|TST\s*\*|PAYPAL\s*\*)[\s\-:*]*",
    re.IGNORECASE,
)
_REFERENCE_TOKEN = re.compile(
    r"^(?:"
    r"#?\d[\d\-/.]*"  # 12345, #0042, 12/31, 2024-01-05
    r"|[A-Z]*\d{4,}[A-Z0-9]*"  # REF0012345, 4412ABC
    r"|X{2,}\d*|\*+\d+"  # card masks
    r"|(?:REF|ID|TRACE|CONF)[#:]?\S*"
    r")$",
    re.IGNORECASE,
)


def clean_description(raw: str | None) -> str:
    """NFKC-normalize and collapse internal whitespace."""

    if raw is None:
        return ""
    s = unicodedata.normalize("NFKC", str(raw))
    return " ".join(s.split())


def guess_merchant(description: str) -> str | None:
    """Best-effort merchant name from a bank description.

    Strips processor prefixes (``POS``, ``ACH DEBIT``, ``SQ *``...) and
    trailing reference numbers, dates and card masks. Returns ``None`` when
    nothing meaningful remains.
    """

    s = clean_description(description)
    if not s:
        return None
    prev = None
    while prev != s:
        prev = s
        s = _MERCHANT_PREFIX.sub("", s).strip()

    tokens = s.split()
    while tokens and _REFERENCE_TOKEN.match(tokens[-1]):
        tokens.pop()
    # Inline store numbers ("STARBUCKS #1234 SEATTLE")
    tokens = [t for t in tokens if not re.fullmatch(r"#\d+", t)]
    merchant = " ".join(tokens).strip(" -*:#,.")
    if len(merchant) < 2 or not any(ch.isalpha() for ch in merchant):
        return None
    return merchant


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


def _row_label(row: RawRow, position: int) -> str:
    return f"line {row.line_number}" if row.line_number is not None else f"row {position + 1}"


def normalize_row(row: RawRow, *, date_order: DateOrder = "MDY") -> ParsedTransaction:
    """Convert a single :class:`RawRow`; raises ``ValueError`` with a reason."""

    parsed_date = parse_date(row.date, date_order=date_order)
    if parsed_date is None:
        raise ValueError(f"unrecognized date {row.date!r}")

    description = clean_description(row.description_raw)
    if not description:
        raise ValueError("missing description")

    fields = row.amount_fields
    try:
        amount = derive_amount(fields.withdrawal, fields.deposit, fields.amount)
    except ValueError as exc:
        raise ValueError(f"bad amount: {exc}") from exc

    balance = try_decimal(row.balance)
    raw_lines = tuple(line for line in (row.source_line_text, *row.extra_lines) if line)

    return ParsedTransaction(
        date=parsed_date.isoformat(),
        description=description,
        amount=amount,
        type=infer_type(amount, transfer=row.transfer),
        merchant=guess_merchant(description),
        balance=quantize_cents(balance) if balance is not None else None,
        raw_lines=raw_lines,
    )


def normalize_rows(
    rows: Iterable[RawRow],
    *,
    date_order: DateOrder = "MDY",
) -> NormalizationResult:
    """Normalize ``rows``; failures are collected as warnings, never raised."""

    transactions: list[ParsedTransaction] = []
    errors: list[str] = []
    for position, row in enumerate(rows):
        try:
            transactions.append(normalize_row(row, date_order=date_order))
        except ValueError as exc:
            errors.append(f"{_row_label(row, position)}: {exc}; row skipped")

    if errors:
        _logger.info("normalization dropped %d row(s)", len(errors))
    return NormalizationResult(transactions=transactions, errors=errors)


__all__ = [
    "ZERO_AMOUNT_TYPE",
    "MAX_AMOUNT",
    "to_decimal",
    "try_decimal",
    "quantize_cents",
    "derive_amount",
    "infer_type",
    "date_formats",
    "parse_date",
    "looks_like_date",
    "clean_description",
    "guess_merchant",
    "normalize_row",
    "normalize_rows",
]
