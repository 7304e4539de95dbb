"""OFX statement adapter (SGML OFX 1.x and XML OFX 2.x).

Both dialects are read with one tag scanner: SGML leaf elements are unclosed
(``<TRNAMT>-20.00``) while XML closes them (``<TRNAMT>-20.00</TRNAMT>``); in
both cases the text following an opening tag is the element value. Aggregates
(``<STMTTRN>``, ``<LEDGERBAL>``) are closed explicitly in both dialects.

Each ``<STMTTRN>`` block yields one RawRow as soon as it closes, so
transactions stream without building a document tree. The statement's
``<LEDGERBAL>`` is exposed on the reader after iteration; it usually follows
the transaction list.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from ...errors import CorruptFile
from ...logging_setup import get_logger
from ...models import AmountFields, RawRow

_logger = get_logger("statement_ingest.ingest.ofx")

_TAG_RE = re.compile(r"<(/?)([A-Za-z0-9_.]+)>([^<]*)")
_OFX_ROOT_RE = re.compile(r"<OFX>", re.IGNORECASE)
_CHARSET_RE = re.compile(r"CHARSET:\s*(\S+)|encoding=\"([^\"]+)\"", re.IGNORECASE)
_OFX_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})")

_SGML_CHARSETS = {"1252": "cp1252", "ISO-8859-1": "latin-1", "NONE": "utf-8"}


def _decode(data: bytes) -> str:
    head = data[:1024].decode("ascii", errors="ignore")
    m = _CHARSET_RE.search(head)
    declared = (m.group(1) or m.group(2)).upper() if m else None
    candidates = []
    if declared:
        candidates.append(_SGML_CHARSETS.get(declared, declared.lower()))
    candidates += ["utf-8", "cp1252"]
    for enc in candidates:
        try:
            return data.decode(enc)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("latin-1")


def ofx_date_to_iso(value: str | None) -> str | None:
    """``YYYYMMDD[hhmmss[.xxx]][[gmt offset:tz]]`` → ``YYYY-MM-DD``."""

    if not value:
        return None
    m = _OFX_DATE_RE.match(value.strip())
    if not m:
        return value.strip() or None
    return f"{m.group(1)}-{m.group(2)}-{m.group(3)}"


class OfxReader:
    """Iterate an OFX payload's transactions.

    Usage
    -----
    reader = OfxReader(data)
    rows = list(reader)                # RawRow per <STMTTRN>
    reader.ledger_balance, reader.ledger_date

    Raises :class:`~statement_ingest.errors.CorruptFile` when the payload has
    no ``<OFX>`` root element.
    """

    def __init__(self, data: bytes) -> None:
        self._text = _decode(data)
        root = _OFX_ROOT_RE.search(self._text)
        if root is None:
            raise CorruptFile("ofx", "missing <OFX> root element")
        self._body_start = root.start()
        self.ledger_balance: str | None = None
        self.ledger_date: str | None = None
        self.warnings: list[str] = []

    def __iter__(self) -> Iterator[RawRow]:
        text = self._text
        line = text.count("\n", 0, self._body_start) + 1
        pos = self._body_start

        current: dict[str, str] | None = None
        current_line = line
        in_ledger = False

        for m in _TAG_RE.finditer(text, self._body_start):
            line += text.count("\n", pos, m.start())
            pos = m.start()
            closing, tag, value = m.group(1) == "/", m.group(2).upper(), m.group(3).strip()

            if tag == "STMTTRN":
                if current is not None:
                    # Unclosed block followed by another: emit what we have
                    yield self._row(current, current_line)
                    current = None
                if not closing:
                    current = {}
                    current_line = line
                continue
            if tag == "LEDGERBAL":
                in_ledger = not closing
                continue
            if tag == "BANKTRANLIST" and closing and current is not None:
                yield self._row(current, current_line)
                current = None
                continue
            if closing or not value:
                continue

            if current is not None:
                # First occurrence wins (PAYEE/NAME nested inside PAYEE aggregate)
                current.setdefault(tag, value)
            elif in_ledger:
                if tag == "BALAMT":
                    self.ledger_balance = value
                elif tag == "DTASOF":
                    self.ledger_date = ofx_date_to_iso(value)

        if current is not None:
            self.warnings.append(f"line {current_line}: unterminated <STMTTRN> block")
            yield self._row(current, current_line)

        _logger.debug("ofx: ledger balance %s as of %s", self.ledger_balance, self.ledger_date)

    def _row(self, fields: dict[str, str], line_number: int) -> RawRow:
        name = fields.get("NAME") or fields.get("PAYEE") or ""
        memo = fields.get("MEMO") or ""
        description = name or memo
        extra = (f"MEMO: {memo}",) if memo and name and memo != name else ()
        source = " ".join(
            f"{key}={fields[key]}"
            for key in ("FITID", "TRNTYPE", "DTPOSTED", "TRNAMT", "NAME", "MEMO")
            if key in fields
        )
        return RawRow(
            date=ofx_date_to_iso(fields.get("DTPOSTED") or fields.get("DTUSER")),
            description_raw=description,
            amount_fields=AmountFields(amount=fields.get("TRNAMT")),
            source_line_text=source,
            line_number=line_number,
            transfer=(fields.get("TRNTYPE") or "").upper() == "XFER",
            extra_lines=extra,
        )


__all__ = ["OfxReader", "ofx_date_to_iso"]
