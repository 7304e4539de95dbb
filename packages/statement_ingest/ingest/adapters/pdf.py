"""PDF statement adapter: text layer → RawRows.

Only the selectable text layer is used (via pdfplumber). Image-only scans have
no text; they yield no rows and a single soft error, ``"no extractable
text"``, so the job still completes and the user can try another format.

Line parsing is a three-stage pipeline, each stage testable on its own:

1. :func:`tokenize_line`: split a text line into DATE / AMOUNT / WORD tokens.
2. :func:`classify_line`: TRANSACTION, CONTINUATION, HEADER or NOISE.
3. :func:`extract_fields`: map a transaction line's tokens to row fields.

:class:`StatementTextParser` drives the stages over all lines, tracking the
state a statement needs: column layout from the header, the statement year
for dates printed without one, and the running balance used to sign
unsigned amounts in split withdrawal/deposit layouts.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from io import BytesIO

import pdfplumber
from pdfminer.pdfparser import PDFSyntaxError
from pdfminer.psparser import PSException
from pdfplumber.utils.exceptions import PdfminerException

from ...config import DateOrder
from ...errors import CorruptFile
from ...logging_setup import get_logger
from ...models import AmountFields, ExtractionResult, RawRow
from ...normalizers import parse_date, try_decimal

_logger = get_logger("statement_ingest.ingest.pdf")

NO_TEXT_ERROR = "no extractable text"

_PDF_ERRORS = (PdfminerException, PDFSyntaxError, PSException, ValueError, KeyError, TypeError)

# Leading date forms: 01/05, 01/05/2024, 2024-01-05, Jan 5, 2024, 5 Jan 2024, 05-Jan-24
_DATE_PREFIX = re.compile(
    r"^(?:"
    r"\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}"
    r"|\d{1,2}[/-]\d{1,2}"
    r"|\d{1,2}-[A-Za-z]{3}(?:-\d{2,4})?"
    r"|[A-Za-z]{3,9}\.?\s+\d{1,2}(?:,?\s+\d{4})?"
    r"|\d{1,2}\s+[A-Za-z]{3,9}(?:,?\s+\d{4})?"
    r")(?=\s|$)"
)
_MONTHS = {
    m
    for m in (
        "jan feb mar apr may jun jul aug sep sept oct nov dec january february march april "
        "june july august september october november december"
    ).split()
}
_AMOUNT = re.compile(
    r"^[-+]?\(?[-+]?[$€£]?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}\)?(?:CR|DR|-)?$",
    re.IGNORECASE,
)
_YEAR_IN_DATE = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-](\d{4})\b|\b(\d{4})-\d{2}-\d{2}\b")

HEADER_WORDS = {
    "date",
    "description",
    "details",
    "amount",
    "withdrawal",
    "withdrawals",
    "deposit",
    "deposits",
    "debit",
    "debits",
    "credit",
    "credits",
    "balance",
}
_SPLIT_OUT = {"withdrawal", "withdrawals", "debit", "debits"}
_SPLIT_IN = {"deposit", "deposits", "credit", "credits"}
_NOISE = re.compile(
    r"\bpage\s+\d+|\bcontinued\b|\btotal\b|\bstatement\s+period\b|\baccount\s+number\b",
    re.IGNORECASE,
)
_BALANCE_LINE = re.compile(
    r"\b(?:opening|beginning|previous|starting)\s+balance\b|\bbalance\s+(?:forward|brought)\b",
    re.IGNORECASE,
)


class TokenKind(StrEnum):
    DATE = "date"
    AMOUNT = "amount"
    WORD = "word"


class LineKind(StrEnum):
    TRANSACTION = "transaction"
    CONTINUATION = "continuation"
    HEADER = "header"
    NOISE = "noise"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str


@dataclass(frozen=True, slots=True)
class ExtractedFields:
    date: str
    description: str
    withdrawal: str | None = None
    deposit: str | None = None
    amount: str | None = None
    balance: str | None = None


# ---------------------------------------------------------------------------
# Stage 1: tokenize
# ---------------------------------------------------------------------------


def _is_date_prefix(text: str) -> bool:
    if not text:
        return False
    first = re.split(r"[\s.\-]", text, maxsplit=1)[0].lower()
    if first.isalpha() and first not in _MONTHS:
        return False
    parts = text.split()
    if len(parts) >= 2 and parts[1].rstrip(",.").isalpha() and parts[0].isdigit():
        return parts[1].rstrip(",.").lower() in _MONTHS
    return True


def tokenize_line(line: str) -> list[Token]:
    """Split ``line`` into tokens; only a leading date is typed DATE."""

    text = " ".join(line.split())
    tokens: list[Token] = []
    m = _DATE_PREFIX.match(text)
    if m and _is_date_prefix(m.group(0)):
        tokens.append(Token(TokenKind.DATE, m.group(0)))
        text = text[m.end() :].strip()

    words = text.split()
    i = 0
    while i < len(words):
        word = words[i]
        nxt = words[i + 1] if i + 1 < len(words) else None
        # "$ 12.00" and "12.00 CR" are one amount
        if word in ("$", "€", "£", "-$", "+$") and nxt and _AMOUNT.match(word + nxt):
            word, i = word + nxt, i + 1
            nxt = words[i + 1] if i + 1 < len(words) else None
        if _AMOUNT.match(word) and nxt and nxt.upper() in ("CR", "DR"):
            word, i = word + nxt.upper(), i + 1
        kind = TokenKind.AMOUNT if _AMOUNT.match(word) else TokenKind.WORD
        tokens.append(Token(kind, word))
        i += 1
    return tokens


# ---------------------------------------------------------------------------
# Stage 2: classify
# ---------------------------------------------------------------------------


def _trailing_amounts(tokens: Sequence[Token]) -> list[Token]:
    out: list[Token] = []
    for tok in reversed(tokens):
        if tok.kind is not TokenKind.AMOUNT:
            break
        out.append(tok)
    return list(reversed(out))


def classify_line(tokens: Sequence[Token], raw_line: str = "") -> LineKind:
    if not tokens:
        return LineKind.NOISE
    words = [t for t in tokens if t.kind is TokenKind.WORD]
    has_amount = any(t.kind is TokenKind.AMOUNT for t in tokens)

    if tokens[0].kind is TokenKind.DATE:
        trailing = _trailing_amounts(tokens)
        if trailing and words and not _BALANCE_LINE.search(raw_line):
            return LineKind.TRANSACTION
        return LineKind.NOISE

    lowered = {t.text.lower().strip(":") for t in words}
    if not has_amount and len(lowered & HEADER_WORDS) >= 2:
        return LineKind.HEADER
    if _NOISE.search(raw_line) or _BALANCE_LINE.search(raw_line):
        return LineKind.NOISE
    if not has_amount and words:
        return LineKind.CONTINUATION
    return LineKind.NOISE


# ---------------------------------------------------------------------------
# Stage 3: extract
# ---------------------------------------------------------------------------


def _is_unsigned(text: str) -> bool:
    t = text.upper()
    return not (t.startswith(("-", "+", "(")) or t.endswith(("CR", "DR", "-", ")")))


def extract_fields(
    tokens: Sequence[Token],
    *,
    split_columns: bool = False,
    previous_balance: Decimal | None = None,
) -> ExtractedFields:
    """Map a TRANSACTION line's tokens to fields.

    Trailing amounts are read right to left: three or more are
    ``withdrawal, deposit, balance``; two are ``amount, balance``; one is a
    signed ``amount``. In split withdrawal/deposit layouts an unsigned amount
    next to a balance is assigned to the side that reconciles with
    ``previous_balance``.
    """

    if not tokens or tokens[0].kind is not TokenKind.DATE:
        raise ValueError("transaction line must start with a date")
    trailing = _trailing_amounts(tokens)
    body = tokens[1 : len(tokens) - len(trailing)]
    description = " ".join(t.text for t in body)
    date_text = tokens[0].text

    if len(trailing) >= 3:
        w, d, b = (t.text for t in trailing[-3:])
        return ExtractedFields(date_text, description, withdrawal=w, deposit=d, balance=b)
    if len(trailing) == 2:
        amt, bal = trailing[0].text, trailing[1].text
        if split_columns and _is_unsigned(amt) and previous_balance is not None:
            a, b = try_decimal(amt), try_decimal(bal)
            if a is not None and b is not None:
                if abs(previous_balance - a - b) < Decimal("0.005"):
                    return ExtractedFields(date_text, description, withdrawal=amt, balance=bal)
                if abs(previous_balance + a - b) < Decimal("0.005"):
                    return ExtractedFields(date_text, description, deposit=amt, balance=bal)
        return ExtractedFields(date_text, description, amount=amt, balance=bal)
    return ExtractedFields(date_text, description, amount=trailing[0].text)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def infer_statement_year(lines: Iterable[str]) -> int | None:
    """Year of the first fully-qualified date found in the text."""

    for line in lines:
        m = _YEAR_IN_DATE.search(line)
        if m:
            return int(m.group(1) or m.group(2))
    return None


@dataclass
class _Pending:
    fields: ExtractedFields
    line_number: int
    lines: list[str] = field(default_factory=list)
    extra_description: list[str] = field(default_factory=list)


class StatementTextParser:
    """Turn statement text lines into RawRows."""

    def __init__(self, *, date_order: DateOrder = "MDY", year: int | None = None) -> None:
        self.date_order = date_order
        self.year = year
        self.split_columns = False
        self.previous_balance: Decimal | None = None
        self.warnings: list[str] = []

    def _complete_date(self, text: str) -> str:
        if parse_date(text, date_order=self.date_order) is not None or self.year is None:
            return text
        # Statement lines often omit the year ("01/05", "Jan 5")
        sep = "/" if "/" in text else ("-" if "-" in text else " ")
        return f"{text}{sep}{self.year}"

    def _finish(self, pending: _Pending) -> RawRow:
        f = pending.fields
        description = " ".join([f.description, *pending.extra_description]).strip()
        balance = try_decimal(f.balance)
        if balance is not None:
            self.previous_balance = balance
        return RawRow(
            date=self._complete_date(f.date),
            description_raw=description,
            amount_fields=AmountFields(withdrawal=f.withdrawal, deposit=f.deposit, amount=f.amount),
            balance=f.balance,
            source_line_text=pending.lines[0],
            line_number=pending.line_number,
            extra_lines=tuple(pending.lines[1:]),
        )

    def parse(self, lines: Sequence[str]) -> list[RawRow]:
        if self.year is None:
            self.year = infer_statement_year(lines)

        rows: list[RawRow] = []
        pending: _Pending | None = None
        for number, line in enumerate(lines, start=1):
            tokens = tokenize_line(line)
            kind = classify_line(tokens, line)

            if kind is LineKind.TRANSACTION:
                if pending is not None:
                    rows.append(self._finish(pending))
                fields = extract_fields(
                    tokens,
                    split_columns=self.split_columns,
                    previous_balance=self.previous_balance,
                )
                pending = _Pending(fields=fields, line_number=number, lines=[line.strip()])
            elif kind is LineKind.CONTINUATION and pending is not None:
                pending.lines.append(line.strip())
                pending.extra_description.append(" ".join(t.text for t in tokens))
            else:
                if pending is not None:
                    rows.append(self._finish(pending))
                    pending = None
                if kind is LineKind.HEADER:
                    words = {t.text.lower() for t in tokens}
                    self.split_columns = bool(words & _SPLIT_OUT) and bool(words & _SPLIT_IN)
                elif _BALANCE_LINE.search(line):
                    trailing = _trailing_amounts(tokens)
                    if trailing:
                        self.previous_balance = try_decimal(trailing[-1].text)

        if pending is not None:
            rows.append(self._finish(pending))
        return rows


def pdf_text_lines(data: bytes) -> list[str]:
    """Return the text layer as lines; empty for image-only documents."""

    try:
        with pdfplumber.open(BytesIO(data)) as pdf:
            lines: list[str] = []
            for page in pdf.pages:
                text = page.extract_text() or ""
                lines.extend(ln for ln in text.splitlines() if ln.strip())
            return lines
    except _PDF_ERRORS as exc:
        raise CorruptFile("pdf", str(exc) or exc.__class__.__name__) from exc


def extract_pdf_rows(data: bytes, *, date_order: DateOrder = "MDY") -> ExtractionResult:
    """Extract RawRows from a PDF statement.

    Raises :class:`~statement_ingest.errors.CorruptFile` when the PDF cannot be
    opened. Missing text is a soft error, reported in ``warnings``.
    """

    lines = pdf_text_lines(data)
    if not lines:
        _logger.info("pdf has no text layer")
        return ExtractionResult(rows=[], warnings=[NO_TEXT_ERROR])

    parser = StatementTextParser(date_order=date_order)
    rows = parser.parse(lines)
    warnings = list(parser.warnings)
    if not rows:
        warnings.append("no transaction lines recognized in PDF text")
    _logger.debug("pdf: %d rows from %d text lines", len(rows), len(lines))
    return ExtractionResult(rows=rows, warnings=warnings)


__all__ = [
    "NO_TEXT_ERROR",
    "TokenKind",
    "LineKind",
    "Token",
    "ExtractedFields",
    "tokenize_line",
    "classify_line",
    "extract_fields",
    "infer_statement_year",
    "StatementTextParser",
    "pdf_text_lines",
    "extract_pdf_rows",
]
