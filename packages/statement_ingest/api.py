"""Public API for statement ingestion and reconciliation.

Two entry points cover the upload → review → import flow:

- :func:`parse_statement` turns an uploaded file into a finished
  :class:`~statement_ingest.jobs.ParseJob` whose preview is shown for review;
- :func:`import_transactions` appends the reviewed transactions to an
  account through any :class:`~statement_ingest.repository.Repository`.

Hosts that keep long-lived state (a web process) pass their own ``JobStore``,
``EventLog`` and ``AccountLocks``; one-shot callers can rely on the defaults.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from .config import IngestSettings
from .events import EventLog
from .jobs import JobStore, ParseJob, run_parse
from .models import Account, ImportOptions, ImportResult, ParsedTransaction
from .normalizers import quantize_cents, to_decimal
from .reconcile import AccountLocks, ImportReconciler
from .repository import Repository

def parse_statement(
    data: bytes,
    filename: str,
    mime_type: str | None = None,
    *,
    settings: IngestSettings | None = None,
    jobs: JobStore | None = None,
    events: EventLog | None = None,
) -> ParseJob:
    """Parse an uploaded statement into a completed job.

    Raises
    ------
    EmptyFile, FileTooLarge, UnsupportedFormat
        The upload was rejected before parsing; no job was created.
    CorruptFile
        The file could not be decoded; the job is marked ``failed``.
    """

    return run_parse(
        data,
        filename,
        mime_type,
        settings=settings or IngestSettings.from_env(),
        jobs=jobs if jobs is not None else JobStore(),
        events=events,
    )


def import_transactions(
    repository: Repository,
    account_id: str,
    transactions: Iterable[ParsedTransaction | Mapping[str, Any]],
    *,
    update_account_balance: bool = False,
    locks: AccountLocks | None = None,
    events: EventLog | None = None,
) -> ImportResult:
    """Import reviewed transactions into ``account_id``.

    ``transactions`` may be :class:`ParsedTransaction` objects or their
    ``to_dict()`` payloads as returned by the review UI. See
    :meth:`ImportReconciler.import_transactions` for the failure modes.

    Imports into one account only serialize against callers sharing the same
    ``locks`` registry. A host serving concurrent requests keeps one
    :class:`AccountLocks` and passes it on every call; without it each call
    gets a private registry.
    """

    reconciler = ImportReconciler(
        repository,
        locks=locks,
        events=events,
    )
    return reconciler.import_transactions(
        account_id,
        transactions,
        ImportOptions(update_account_balance=update_account_balance),
    )


def create_account(
    repository: Repository,
    name: str,
    account_type: str,
    *,
    balance: Decimal | int | str = 0,
    masked_number: str | None = None,
    institution_name: str | None = None,
) -> Account:
    """Create an account whose opening balance equals its current balance."""

    if not name.strip():
        raise ValueError("account name must be non-empty")
    amount = quantize_cents(to_decimal(balance))
    account = Account(
        id=str(uuid.uuid4()),
        name=name.strip(),
        account_type=account_type,
        balance=amount,
        opening_balance=amount,
        masked_number=masked_number,
        institution_name=institution_name,
    )
    with repository.transaction():
        repository.put_account(account)
    return account


__all__ = ["parse_statement", "import_transactions", "create_account"]
