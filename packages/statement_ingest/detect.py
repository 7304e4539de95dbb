"""Upload gate: classify a statement upload before any parsing happens.

The declared MIME type is only a hint from the client, so it is trusted only
when it is one of the known statement types; otherwise the filename extension
decides. Everything here is pure; no bytes beyond the length are inspected.
"""

from __future__ import annotations

from pathlib import PurePath

from .errors import EmptyFile, FileTooLarge, UnsupportedFormat
from .models import FileFormat

MIME_TYPES: dict[str, FileFormat] = {
    "text/csv": FileFormat.CSV,
    "application/csv": FileFormat.CSV,
    "application/vnd.ms-excel": FileFormat.EXCEL,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileFormat.EXCEL,
    "application/pdf": FileFormat.PDF,
    "application/x-pdf": FileFormat.PDF,
    "application/vnd.ofx": FileFormat.OFX,
    "application/x-ofx": FileFormat.OFX,
    "application/ofx": FileFormat.OFX,
}

EXTENSIONS: dict[str, FileFormat] = {
    ".csv": FileFormat.CSV,
    ".xls": FileFormat.EXCEL,
    ".xlsx": FileFormat.EXCEL,
    ".pdf": FileFormat.PDF,
    ".ofx": FileFormat.OFX,
}


def _normalize_mime(mime_type: str | None) -> str:
    # Drop parameters such as "; charset=utf-8"
    return (mime_type or "").split(";", 1)[0].strip().lower()


def detect_format(data: bytes, filename: str | None, mime_type: str | None = None) -> FileFormat:
    """Classify an upload as CSV, Excel, PDF or OFX.

    Raises
    ------
    EmptyFile
        ``data`` is zero bytes (checked before anything else).
    UnsupportedFormat
        Neither the MIME type nor the extension is a known statement type.
    """

    if not data:
        raise EmptyFile(filename)

    by_mime = MIME_TYPES.get(_normalize_mime(mime_type))
    if by_mime is not None:
        return by_mime

    suffix = PurePath(filename or "").suffix.lower()
    by_ext = EXTENSIONS.get(suffix)
    if by_ext is not None:
        return by_ext

    raise UnsupportedFormat(filename, mime_type)


def validate_upload(
    data: bytes,
    filename: str | None,
    mime_type: str | None,
    *,
    max_bytes: int,
) -> FileFormat:
    """Run the full pre-parse gate: empty check, size ceiling, then format.

    A file of exactly ``max_bytes`` is accepted; one byte more raises
    :class:`~statement_ingest.errors.FileTooLarge`.
    """

    if not data:
        raise EmptyFile(filename)
    if len(data) > max_bytes:
        raise FileTooLarge(len(data), max_bytes)
    return detect_format(data, filename, mime_type)


__all__ = ["MIME_TYPES", "EXTENSIONS", "detect_format", "validate_upload"]
