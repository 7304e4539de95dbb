from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from decimal import Decimal

import pytest

from statement_ingest.api import import_transactions
from statement_ingest.errors import AccountNotFound, ImportFailed
from statement_ingest.events import EventLog
from statement_ingest.models import Account, ImportOptions, ParsedTransaction, Transaction
from statement_ingest.reconcile import AccountLocks, ImportReconciler
from statement_ingest.repository import InMemoryRepository, Repository


def _tx(date: str, amount: str, description: str, balance: str | None = None):
    value = Decimal(amount)
    return ParsedTransaction(
        date=date,
        description=description,
        amount=value,
        type="income" if value > 0 else "expense",
        balance=Decimal(balance) if balance is not None else None,
    )


@pytest.fixture
def repo() -> InMemoryRepository:
    r = InMemoryRepository()
    r.put_account(Account(id="acct", name="Checking", account_type="checking"))
    return r


BATCH = [
    _tx("2024-01-01", "-10.00", "Coffee", balance="100.00"),
    _tx("2024-01-03", "-10.00", "Lunch", balance="80.00"),
    _tx("2024-01-02", "-10.00", "Books", balance="90.00"),
]


def test_import_then_reimport_is_idempotent(repo: InMemoryRepository) -> None:
    reconciler = ImportReconciler(repo)

    first = reconciler.import_transactions("acct", BATCH)
    assert (first.added, first.duplicates, first.errors) == (3, 0, [])

    second = reconciler.import_transactions("acct", BATCH)
    assert (second.added, second.duplicates) == (0, 3)
    assert len(repo.list_transactions("acct")) == 3


def test_persisted_records(repo: InMemoryRepository) -> None:
    ImportReconciler(repo).import_transactions("acct", BATCH[:1])
    (stored,) = repo.list_transactions("acct")
    assert stored.account_id == "acct"
    assert stored.import_source == "upload"
    assert stored.amount == Decimal("-10.00")
    assert len(stored.id) == 36
    assert len(stored.fingerprint) == 64


def test_balance_follows_latest_dated_snapshot(repo: InMemoryRepository) -> None:
    ImportReconciler(repo).import_transactions(
        "acct", BATCH, ImportOptions(update_account_balance=True)
    )
    assert repo.get_account("acct").balance == Decimal("80.00")


def test_balance_ties_go_to_last_in_file_order(repo: InMemoryRepository) -> None:
    batch = [
        _tx("2024-01-05", "-1.00", "A", balance="50.00"),
        _tx("2024-01-05", "-2.00", "B", balance="48.00"),
    ]
    ImportReconciler(repo).import_transactions(
        "acct", batch, ImportOptions(update_account_balance=True)
    )
    assert repo.get_account("acct").balance == Decimal("48.00")


def test_balance_untouched_without_option_or_snapshots(repo: InMemoryRepository) -> None:
    reconciler = ImportReconciler(repo)
    reconciler.import_transactions("acct", BATCH)
    assert repo.get_account("acct").balance == Decimal("0.00")

    reconciler.import_transactions(
        "acct",
        [_tx("2024-02-01", "-5.00", "No balance")],
        ImportOptions(update_account_balance=True),
    )
    assert repo.get_account("acct").balance == Decimal("0.00")


def test_duplicates_do_not_contribute_balance(repo: InMemoryRepository) -> None:
    reconciler = ImportReconciler(repo)
    reconciler.import_transactions("acct", BATCH)
    # The latest-dated row is already stored; only the older one is new
    batch = [BATCH[1], _tx("2024-01-02", "-3.00", "Snack", balance="87.00")]
    result = reconciler.import_transactions(
        "acct", batch, ImportOptions(update_account_balance=True)
    )
    assert (result.added, result.duplicates) == (1, 1)
    assert repo.get_account("acct").balance == Decimal("87.00")


def test_unknown_account(repo: InMemoryRepository) -> None:
    events = EventLog()
    with pytest.raises(AccountNotFound) as info:
        ImportReconciler(repo, events=events).import_transactions("missing", BATCH)
    assert info.value.account_id == "missing"
    assert repo.list_transactions("missing") == []
    assert events.by_kind("import_failed")[0].details["account_id"] == "missing"


def test_invalid_payloads_are_reported_not_raised(repo: InMemoryRepository) -> None:
    payloads = [
        {"date": "2024-01-05", "description": "Bakery", "amount": -3.2},
        {"date": "Jan 5", "description": "Bad", "amount": -1},
    ]
    result = ImportReconciler(repo).import_transactions("acct", payloads)
    assert result.added == 1
    assert len(result.errors) == 1


class _FailingRepository(InMemoryRepository):
    """Fails the account write that follows the transaction append."""

    def put_account(self, account: Account) -> None:
        if self.list_transactions(account.id):
            raise RuntimeError("disk full")
        super().put_account(account)


def test_storage_failure_rolls_back_whole_batch() -> None:
    repo = _FailingRepository()
    repo.put_account(Account(id="acct", name="Checking", account_type="checking"))
    events = EventLog()

    with pytest.raises(ImportFailed) as info:
        ImportReconciler(repo, events=events).import_transactions(
            "acct", BATCH, ImportOptions(update_account_balance=True)
        )
    assert isinstance(info.value.__cause__, RuntimeError)
    assert repo.list_transactions("acct") == []
    assert repo.get_account("acct").balance == Decimal("0.00")
    assert len(events.by_kind("import_failed")) == 1

    # Retrying without the failing step succeeds and imports everything once
    result = ImportReconciler(repo).import_transactions("acct", BATCH)
    assert result.added == 3


class _SlowRepository(InMemoryRepository):
    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.max_active = 0
        self._counter = threading.Lock()

    def add_transactions(self, items: Sequence[Transaction]) -> None:
        with self._counter:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        super().add_transactions(items)
        with self._counter:
            self.active -= 1


def test_same_account_imports_serialize() -> None:
    repo = _SlowRepository()
    repo.put_account(Account(id="acct", name="Checking", account_type="checking"))
    reconciler = ImportReconciler(repo, locks=AccountLocks())
    results = []

    def run() -> None:
        results.append(reconciler.import_transactions("acct", BATCH))

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert repo.max_active == 1
    assert sorted(r.added for r in results) == [0, 0, 0, 3]
    assert len(repo.list_transactions("acct")) == 3


def test_different_accounts_do_not_block_each_other() -> None:
    locks = AccountLocks()
    held = threading.Event()
    release = threading.Event()
    other_done = threading.Event()

    def hold_a() -> None:
        with locks.hold("a"):
            held.set()
            release.wait(timeout=5)

    def hold_b() -> None:
        with locks.hold("b"):
            other_done.set()

    t = threading.Thread(target=hold_a)
    t.start()
    held.wait(timeout=5)
    try:
        b = threading.Thread(target=hold_b)
        b.start()
        assert other_done.wait(timeout=1)
        b.join()
        assert len(locks) == 1
    finally:
        release.set()
        t.join()


def test_lock_registry_forgets_idle_accounts() -> None:
    locks = AccountLocks()
    for n in range(50):
        with locks.hold(f"acct-{n}"):
            assert len(locks) == 1
    assert len(locks) == 0


def test_waiting_caller_keeps_lock_alive_until_it_is_done() -> None:
    locks = AccountLocks()
    order: list[str] = []
    first_in = threading.Event()

    def second() -> None:
        with locks.hold("acct"):
            order.append("second")

    with locks.hold("acct"):
        first_in.set()
        t = threading.Thread(target=second)
        t.start()
        time.sleep(0.05)
        order.append("first")
    t.join(timeout=5)

    assert order == ["first", "second"]
    assert len(locks) == 0


def test_api_import_without_registry_still_works(repo: InMemoryRepository) -> None:
    result = import_transactions(repo, "acct", BATCH)
    assert result.added == 3


def test_in_memory_repository_satisfies_protocol() -> None:
    assert isinstance(InMemoryRepository(), Repository)


def test_nested_rollback_only_undoes_own_writes(repo: InMemoryRepository) -> None:
    other = Account(id="other", name="Savings", account_type="savings")
    with pytest.raises(RuntimeError), repo.transaction():
        repo.put_account(other)
        raise RuntimeError("boom")
    assert repo.get_account("other") is None
    assert repo.get_account("acct") is not None


def test_oversized_payload_amount_is_reported(repo: InMemoryRepository) -> None:
    payloads = [
        {"date": "2024-01-05", "description": "Bakery", "amount": "-3.20"},
        {"date": "2024-01-06", "description": "Typo", "amount": 1e30},
    ]
    result = ImportReconciler(repo).import_transactions("acct", payloads)
    assert result.added == 1
    assert len(result.errors) == 1
    assert "out of range" in result.errors[0]


class _PeekingRepository(InMemoryRepository):
    """Checks what another thread sees while this one is mid-import, then fails."""

    def __init__(self) -> None:
        super().__init__()
        self.own_view = -1
        self.other_view = -1

    def put_account(self, account: Account) -> None:
        staged = self.list_transactions(account.id)
        if not staged:
            super().put_account(account)
            return
        self.own_view = len(staged)
        seen: list[int] = []
        reader = threading.Thread(target=lambda: seen.append(len(self.list_transactions("acct"))))
        reader.start()
        reader.join()
        self.other_view = seen[0]
        raise RuntimeError("disk full")


def test_uncommitted_rows_are_invisible_to_other_threads() -> None:
    repo = _PeekingRepository()
    repo.put_account(Account(id="acct", name="Checking", account_type="checking"))

    with pytest.raises(ImportFailed):
        ImportReconciler(repo).import_transactions(
            "acct", BATCH, ImportOptions(update_account_balance=True)
        )
    assert (repo.own_view, repo.other_view) == (3, 0)
    assert repo.list_transactions("acct") == []


def test_committed_rows_are_visible_to_other_threads(repo: InMemoryRepository) -> None:
    ImportReconciler(repo).import_transactions("acct", BATCH)
    seen: list[int] = []
    reader = threading.Thread(target=lambda: seen.append(len(repo.list_transactions("acct"))))
    reader.start()
    reader.join()
    assert seen == [3]


def test_nested_block_commits_with_its_parent(repo: InMemoryRepository) -> None:
    savings = Account(id="savings", name="Savings", account_type="savings")
    with pytest.raises(RuntimeError), repo.transaction():
        with repo.transaction():
            repo.put_account(savings)
        assert repo.get_account("savings") == savings
        raise RuntimeError("boom")
    assert repo.get_account("savings") is None

    with repo.transaction():
        with repo.transaction():
            repo.put_account(savings)
    assert repo.get_account("savings") == savings
