"""Storage interface used by the reconciler, plus an in-memory implementation.

The reconciler only needs five operations; anything satisfying
:class:`Repository` (the SQLAlchemy-backed store in
:mod:`statement_ingest.persistence`, the in-memory store here, or a test
double) can be plugged in.

``transaction()`` must give all-or-nothing semantics for the writes made
inside it: when the block raises, every write is undone before the exception
propagates. Other callers must not observe those writes before the block
commits.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .models import Account, Transaction


@runtime_checkable
class Repository(Protocol):
    def get_account(self, account_id: str) -> Account | None: ...

    def put_account(self, account: Account) -> None: ...

    def list_transactions(self, account_id: str) -> list[Transaction]: ...

    def add_transactions(self, items: Sequence[Transaction]) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


@dataclass(slots=True)
class _Stage:
    """Writes made by one open ``transaction()`` block."""

    accounts: dict[str, Account] = field(default_factory=dict)
    transactions: list[Transaction] = field(default_factory=list)

    def absorb(self, inner: _Stage) -> None:
        self.accounts.update(inner.accounts)
        self.transactions.extend(inner.transactions)


class InMemoryRepository:
    """Dict-backed repository for tests and single-process hosts.

    Writes inside :meth:`transaction` are staged per thread and published
    only when the outermost block exits cleanly. The writing thread reads its
    own staged rows; every other thread sees committed data only. A failing
    block discards its stage, and a nested block that succeeds folds its
    stage into the enclosing one.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, list[Transaction]] = {}
        self._mutex = threading.Lock()
        self._local = threading.local()

    # -- staging -------------------------------------------------------------

    def _stages(self) -> list[_Stage]:
        stages: list[_Stage] | None = getattr(self._local, "stages", None)
        if stages is None:
            stages = self._local.stages = []
        return stages

    @contextmanager
    def transaction(self) -> Iterator[None]:
        stages = self._stages()
        stage = _Stage()
        stages.append(stage)
        try:
            yield
        finally:
            stages.pop()
        if stages:
            stages[-1].absorb(stage)
        else:
            self._publish(stage)

    def _publish(self, stage: _Stage) -> None:
        with self._mutex:
            for account in stage.accounts.values():
                self._accounts[account.id] = account
                self._transactions.setdefault(account.id, [])
            for tx in stage.transactions:
                self._transactions.setdefault(tx.account_id, []).append(tx)

    # -- accounts ------------------------------------------------------------

    def get_account(self, account_id: str) -> Account | None:
        for stage in reversed(self._stages()):
            if account_id in stage.accounts:
                return stage.accounts[account_id]
        with self._mutex:
            return self._accounts.get(account_id)

    def put_account(self, account: Account) -> None:
        stages = self._stages()
        if stages:
            stages[-1].accounts[account.id] = account
            return
        self._publish(_Stage(accounts={account.id: account}))

    # -- transactions --------------------------------------------------------

    def list_transactions(self, account_id: str) -> list[Transaction]:
        with self._mutex:
            found = list(self._transactions.get(account_id, ()))
        for stage in self._stages():
            found.extend(tx for tx in stage.transactions if tx.account_id == account_id)
        return found

    def add_transactions(self, items: Sequence[Transaction]) -> None:
        batch = list(items)
        for tx in batch:
            if self.get_account(tx.account_id) is None:
                raise KeyError(f"account not found: {tx.account_id!r}")
        stages = self._stages()
        if stages:
            stages[-1].transactions.extend(batch)
            return
        self._publish(_Stage(transactions=batch))


__all__ = ["Repository", "InMemoryRepository"]
