"""Exception taxonomy for statement ingestion and reconciliation.

All errors derive from :class:`IngestError` so hosts can catch a single type.
Row-level problems are never raised; they are accumulated as strings on the
parse job (see ``statement_ingest.normalizers``).
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by ``statement_ingest``."""


# ---------------------------------------------------------------------------
# Pre-parse rejections (fatal to the request, not retried)
# ---------------------------------------------------------------------------


class UploadRejected(IngestError):
    """The upload was rejected before any parsing was attempted."""


class EmptyFile(UploadRejected):
    def __init__(self, filename: str | None = None) -> None:
        self.filename = filename
        msg = "uploaded file is empty"
        super().__init__(f"{msg}: {filename!r}" if filename else msg)


class UnsupportedFormat(UploadRejected):
    def __init__(self, filename: str | None, mime_type: str | None) -> None:
        self.filename = filename
        self.mime_type = mime_type
        super().__init__(
            "unsupported file type "
            f"(filename={filename!r}, mime_type={mime_type!r}); "
            "expected CSV, Excel, PDF, or OFX"
        )


class FileTooLarge(UploadRejected):
    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"file size {size} bytes exceeds the {limit} byte limit")


# ---------------------------------------------------------------------------
# Parse failures
# ---------------------------------------------------------------------------


class CorruptFile(IngestError):
    """The decoder could not parse the file's structural envelope.

    ``detail`` carries the raw decoder message; :meth:`user_message` only
    includes it when running in a development context.
    """

    def __init__(self, file_format: str, detail: str) -> None:
        self.file_format = file_format
        self.detail = detail
        super().__init__(f"could not read {file_format} file: {detail}")

    def user_message(self, *, debug: bool = False) -> str:
        if debug:
            return str(self)
        return (
            f"The {self.file_format} file appears to be damaged "
            f"or is not a valid {self.file_format} file."
        )


# ---------------------------------------------------------------------------
# Reconciliation failures
# ---------------------------------------------------------------------------


class AccountNotFound(IngestError):
    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"account not found: {account_id!r}")


class ImportFailed(IngestError):
    """Storage failed during a batch append; nothing from the batch was kept.

    The whole batch is safe to retry: already-imported rows are skipped by the
    fingerprint check on the next attempt.
    """

    def __init__(self, account_id: str, reason: str) -> None:
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"import into account {account_id!r} failed: {reason}")


__all__ = [
    "IngestError",
    "UploadRejected",
    "EmptyFile",
    "UnsupportedFormat",
    "FileTooLarge",
    "CorruptFile",
    "AccountNotFound",
    "ImportFailed",
]
