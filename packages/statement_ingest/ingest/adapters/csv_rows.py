"""CSV statement adapter.

Rows are read lazily through ``csv.reader`` over a text wrapper around the
upload bytes, so large exports are never materialized as a list of rows.
Parsing follows RFC 4180 via the stdlib :mod:`csv` module; the delimiter is
sniffed from the first few KiB (comma, semicolon, tab or pipe).
"""

from __future__ import annotations

import codecs
import csv
import io
from collections.abc import Iterator

from ...config import DateOrder
from ...errors import CorruptFile
from ...models import RawRow
from .tabular import iter_table_rows

_SNIFF_BYTES = 8192
_DELIMITERS = ",;\t|"


def sniff_encoding(data: bytes) -> str:
    """Pick a text encoding: UTF-8 (with or without BOM), else Latin-1."""

    if data.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return "latin-1"
    return "utf-8"


def _dialect(sample: str) -> type[csv.Dialect] | csv.Dialect:
    try:
        return csv.Sniffer().sniff(sample, delimiters=_DELIMITERS)
    except csv.Error:
        return csv.excel


def iter_csv_rows(
    data: bytes,
    *,
    warnings: list[str],
    date_order: DateOrder = "MDY",
) -> Iterator[RawRow]:
    """Yield RawRows from CSV bytes.

    Raises
    ------
    CorruptFile
        The payload is binary or the CSV structure cannot be tokenized.
    """

    if b"\x00" in data[:_SNIFF_BYTES]:
        raise CorruptFile("csv", "file contains binary data")

    encoding = sniff_encoding(data)
    stream = io.TextIOWrapper(io.BytesIO(data), encoding=encoding, newline="")
    sample = stream.read(_SNIFF_BYTES)
    stream.seek(0)

    reader = csv.reader(stream, _dialect(sample))
    numbered = ((reader.line_num, cells) for cells in reader)
    try:
        yield from iter_table_rows(numbered, warnings=warnings, date_order=date_order)
    except csv.Error as exc:
        raise CorruptFile("csv", f"line {reader.line_num}: {exc}") from exc
    finally:
        stream.close()


__all__ = ["sniff_encoding", "iter_csv_rows"]
