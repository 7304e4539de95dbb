"""Public interface for the ``statement_ingest`` package.

This module exposes the package's API functions and public models/types as
the stable import surface. There is no runtime logic here, only symbol
re-exports.
"""

from .api import create_account, import_transactions, parse_statement
from .config import IngestSettings
from .errors import (
    AccountNotFound,
    CorruptFile,
    EmptyFile,
    FileTooLarge,
    ImportFailed,
    IngestError,
    UnsupportedFormat,
    UploadRejected,
)
from .events import EventLog, IngestEvent
from .jobs import JobStore, ParseJob
from .models import (
    Account,
    FileFormat,
    ImportOptions,
    ImportResult,
    ParsedTransaction,
    RawRow,
    Transaction,
)
from .reconcile import AccountLocks, ImportReconciler
from .repository import InMemoryRepository, Repository

__all__ = [
    # API
    "parse_statement",
    "import_transactions",
    "create_account",
    "ImportReconciler",
    "AccountLocks",
    "JobStore",
    "EventLog",
    "IngestSettings",
    # Storage
    "Repository",
    "InMemoryRepository",
    # Models / types
    "FileFormat",
    "RawRow",
    "ParsedTransaction",
    "ParseJob",
    "Account",
    "Transaction",
    "ImportOptions",
    "ImportResult",
    "IngestEvent",
    # Errors
    "IngestError",
    "UploadRejected",
    "EmptyFile",
    "UnsupportedFormat",
    "FileTooLarge",
    "CorruptFile",
    "AccountNotFound",
    "ImportFailed",
]
