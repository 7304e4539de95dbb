"""Append reviewed transactions to an account, atomically and idempotently.

Import steps for one batch, all inside a single repository transaction and
while holding the account's lock:

1. verify the account exists;
2. load the fingerprints already stored for it;
3. drop duplicates (stored or repeated within the batch);
4. append the remaining rows with fresh ids and ``import_source="upload"``;
5. optionally move the account balance to the statement's latest snapshot.

Any storage error rolls the whole batch back and surfaces as
:class:`~statement_ingest.errors.ImportFailed`; retrying is safe because the
fingerprint check skips rows that did make it in on an earlier attempt.
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

from .duplicates import Candidate, partition_new
from .errors import AccountNotFound, ImportFailed, IngestError
from .events import EventLog
from .logging_setup import get_logger
from .models import ImportOptions, ImportResult, ParsedTransaction, Transaction
from .repository import Repository

_logger = get_logger("statement_ingest.reconcile")


class AccountLocks:
    """Registry of per-account locks.

    Imports into the same account serialize; different accounts proceed in
    parallel. An entry exists only while some caller holds or waits on it,
    so the registry stays as small as the number of accounts in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._guard = threading.Lock()

    def _checkout(self, account_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            self._users[account_id] = self._users.get(account_id, 0) + 1
            return lock

    def _checkin(self, account_id: str) -> None:
        with self._guard:
            remaining = self._users[account_id] - 1
            if remaining:
                self._users[account_id] = remaining
            else:
                del self._users[account_id]
                del self._locks[account_id]

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        lock = self._checkout(account_id)
        try:
            if not lock.acquire(blocking=False):
                _logger.debug("waiting for import lock on account %s", account_id)
                lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(account_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def latest_balance(candidates: Sequence[Candidate]) -> Decimal | None:
    """Balance snapshot of the latest-dated row; ties go to the last in file order."""

    with_balance = [c for c in candidates if c.transaction.balance is not None]
    if not with_balance:
        return None
    latest = max(with_balance, key=lambda c: (c.transaction.date, c.position))
    return latest.transaction.balance


def _to_record(account_id: str, candidate: Candidate) -> Transaction:
    tx = candidate.transaction
    return Transaction(
        id=str(uuid.uuid4()),
        account_id=account_id,
        date=tx.date,
        description=tx.description,
        amount=tx.amount,
        type=tx.type,
        fingerprint=candidate.fingerprint,
        import_source="upload",
        merchant=tx.merchant,
        balance=tx.balance,
        raw_lines=tx.raw_lines,
    )


class ImportReconciler:
    """Import batches of reviewed transactions through a :class:`Repository`."""

    def __init__(
        self,
        repository: Repository,
        *,
        locks: AccountLocks | None = None,
        events: EventLog | None = None,
    ) -> None:
        self.repository = repository
        self.locks = locks if locks is not None else AccountLocks()
        self.events = events

    def _record(self, kind: str, **details: Any) -> None:
        if self.events is not None:
            self.events.record(kind, **details)  # type: ignore[arg-type]

    def import_transactions(
        self,
        account_id: str,
        transactions: Iterable[ParsedTransaction | Mapping[str, Any]],
        options: ImportOptions | None = None,
    ) -> ImportResult:
        """Import ``transactions`` into ``account_id``.

        Raises
        ------
        AccountNotFound
            No account with ``account_id`` exists; nothing is written.
        ImportFailed
            Storage failed; the batch was rolled back (``__cause__`` holds the
            original error).
        """

        opts = options or ImportOptions()
        items = list(transactions)

        with self.locks.hold(account_id):
            try:
                with self.repository.transaction():
                    result = self._apply(account_id, items, opts)
            except IngestError as exc:
                self._record("import_failed", account_id=account_id, reason=str(exc))
                raise
            except Exception as exc:
                _logger.warning("import into %s rolled back: %s", account_id, exc)
                self._record("import_failed", account_id=account_id, reason=str(exc))
                raise ImportFailed(account_id, str(exc) or exc.__class__.__name__) from exc

        _logger.info(
            "imported into %s: %d added, %d duplicate, %d rejected",
            account_id,
            result.added,
            result.duplicates,
            len(result.errors),
        )
        self._record(
            "import_completed",
            account_id=account_id,
            added=result.added,
            duplicates=result.duplicates,
            errors=len(result.errors),
        )
        return result

    def _apply(
        self,
        account_id: str,
        items: Sequence[ParsedTransaction | Mapping[str, Any]],
        opts: ImportOptions,
    ) -> ImportResult:
        account = self.repository.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)

        existing = {t.fingerprint for t in self.repository.list_transactions(account_id)}
        dedup = partition_new(account_id, items, existing)

        records = [_to_record(account_id, c) for c in dedup.added]
        if records:
            self.repository.add_transactions(records)

        if opts.update_account_balance:
            snapshot = latest_balance(dedup.added)
            if snapshot is not None and snapshot != account.balance:
                _logger.debug("account %s balance %s -> %s", account_id, account.balance, snapshot)
                self.repository.put_account(dataclasses.replace(account, balance=snapshot))

        return ImportResult(
            added=len(records),
            duplicates=len(dedup.duplicates),
            errors=list(dedup.errors),
        )


__all__ = ["AccountLocks", "latest_balance", "ImportReconciler"]
