"""Excel statement adapter (``.xlsx`` via openpyxl, legacy ``.xls`` via xlrd).

Only the active (or first) worksheet is read. Workbooks are materialized; the
upload size ceiling bounds memory use. Column mapping is shared with the CSV
adapter (see :mod:`.tabular`).
"""

from __future__ import annotations

import struct
import zipfile
import zlib
from io import BytesIO
from typing import Any
from xml.etree.ElementTree import ParseError

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from ...config import DateOrder
from ...errors import CorruptFile
from ...logging_setup import get_logger
from ...models import ExtractionResult
from .tabular import iter_table_rows

_logger = get_logger("statement_ingest.ingest.excel")

# Compound File Binary header used by BIFF (.xls) workbooks
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


# Malformed packages surface while opening or only once the sheet XML is
# streamed, depending on which part is damaged.
_XLSX_ERRORS = (
    zipfile.BadZipFile,
    InvalidFileException,
    ParseError,
    KeyError,
    EOFError,
    OSError,
    ValueError,
    zlib.error,
)
_XLS_ERRORS = (xlrd.XLRDError, CompDocError, ValueError, IndexError, struct.error)


def _xlsx_rows(data: bytes) -> list[tuple[int, list[Any]]]:
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
        try:
            sheet = workbook.active or workbook.worksheets[0]
            return [
                (idx, list(values))
                for idx, values in enumerate(sheet.iter_rows(values_only=True), start=1)
            ]
        finally:
            workbook.close()
    except _XLSX_ERRORS as exc:
        raise CorruptFile("excel", str(exc) or exc.__class__.__name__) from exc


def _xls_rows(data: bytes) -> list[tuple[int, list[Any]]]:
    try:
        book = xlrd.open_workbook(file_contents=data)
        sheet = book.sheet_by_index(0)
        rows: list[tuple[int, list[Any]]] = []
        for r in range(sheet.nrows):
            cells: list[Any] = []
            for cell in sheet.row(r):
                if cell.ctype == xlrd.XL_CELL_DATE:
                    cells.append(xlrd.xldate_as_datetime(cell.value, book.datemode))
                elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                    cells.append(None)
                else:
                    cells.append(cell.value)
            rows.append((r + 1, cells))
    except _XLS_ERRORS as exc:
        raise CorruptFile("excel", str(exc) or exc.__class__.__name__) from exc
    return rows


def extract_excel_rows(data: bytes, *, date_order: DateOrder = "MDY") -> ExtractionResult:
    """Extract RawRows from an Excel workbook.

    Raises
    ------
    CorruptFile
        The bytes are not a readable ``.xlsx`` zip package or ``.xls`` workbook.
    """

    if data.startswith(OLE2_SIGNATURE):
        table = _xls_rows(data)
    else:
        table = _xlsx_rows(data)

    if not table:
        return ExtractionResult(rows=[], warnings=["worksheet is empty"])

    warnings: list[str] = []
    rows = list(iter_table_rows(table, warnings=warnings, date_order=date_order))
    _logger.debug("excel: %d candidate rows from %d sheet rows", len(rows), len(table))
    return ExtractionResult(rows=rows, warnings=warnings)


__all__ = ["OLE2_SIGNATURE", "extract_excel_rows"]
