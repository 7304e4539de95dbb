"""Database-backed :class:`~statement_ingest.repository.Repository`.

Accounts and transactions live in the shared database owned by ``libs/db``
(``fa_accounts`` / ``fa_transactions``). Sessions come from ``db.client``.

Inside :meth:`SqlAlchemyRepository.transaction` every call on the same thread
shares one session, committed when the block exits cleanly and rolled back
otherwise. Calls made outside a transaction block run in their own
short-lived session.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from db.client import get_session
from db.models.finance import FaAccount, FaTransaction
from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import Account, Transaction

_logger = get_logger("statement_ingest.persistence")


def _account_from_row(row: FaAccount) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        account_type=row.account_type,
        balance=Decimal(row.balance),
        opening_balance=Decimal(row.opening_balance),
        masked_number=row.masked_number,
        institution_name=row.institution_name,
    )


def _transaction_from_row(row: FaTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        date=row.date.isoformat(),
        description=row.description,
        amount=Decimal(row.amount),
        type=row.type,  # type: ignore[arg-type]  # guarded by ck_fa_tx_type
        fingerprint=row.fingerprint_sha256,
        import_source=row.import_source,  # type: ignore[arg-type]
        merchant=row.merchant,
        category_id=row.category_id,
        balance=Decimal(row.balance) if row.balance is not None else None,
        raw_lines=tuple(row.raw_lines or ()),
    )


def _transaction_to_row(tx: Transaction) -> FaTransaction:
    return FaTransaction(
        id=tx.id,
        account_id=tx.account_id,
        date=date.fromisoformat(tx.date),
        description=tx.description,
        merchant=tx.merchant,
        amount=tx.amount,
        type=tx.type,
        category_id=tx.category_id,
        import_source=tx.import_source,
        balance=tx.balance,
        raw_lines=list(tx.raw_lines) or None,
        fingerprint_sha256=tx.fingerprint,
    )


class SqlAlchemyRepository:
    """Repository over the ``fa_accounts``/``fa_transactions`` tables.

    Parameters
    ----------
    database_url:
        Passed through to ``db.client``; defaults to ``DATABASE_URL``.
    session_factory:
        Alternative session source (e.g. a ``sessionmaker`` bound to a test
        engine). Takes precedence over ``database_url``.
    """

    def __init__(
        self,
        *,
        database_url: str | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self._session_factory = session_factory or (
            lambda: get_session(database_url=database_url)
        )
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        current: Session | None = getattr(self._local, "session", None)
        if current is not None:
            # Nested block joins the outer unit of work
            yield
            return
        session = self._session_factory()
        self._local.session = session
        try:
            yield
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        current: Session | None = getattr(self._local, "session", None)
        if current is not None:
            yield current
            return
        with self.transaction():
            yield self._local.session

    # -- accounts ------------------------------------------------------------

    def get_account(self, account_id: str) -> Account | None:
        with self._session() as s:
            row = s.get(FaAccount, account_id)
            return _account_from_row(row) if row is not None else None

    def put_account(self, account: Account) -> None:
        with self._session() as s:
            row = s.get(FaAccount, account.id)
            if row is None:
                row = FaAccount(id=account.id)
                s.add(row)
            row.name = account.name
            row.account_type = account.account_type
            row.balance = account.balance
            row.opening_balance = account.opening_balance
            row.masked_number = account.masked_number
            row.institution_name = account.institution_name
            s.flush()

    # -- transactions --------------------------------------------------------

    def list_transactions(self, account_id: str) -> list[Transaction]:
        with self._session() as s:
            stmt = (
                select(FaTransaction)
                .where(FaTransaction.account_id == account_id)
                .order_by(FaTransaction.date, FaTransaction.created_at, FaTransaction.id)
            )
            return [_transaction_from_row(row) for row in s.scalars(stmt)]

    def add_transactions(self, items: Sequence[Transaction]) -> None:
        if not items:
            return
        with self._session() as s:
            s.add_all([_transaction_to_row(tx) for tx in items])
            # Surface constraint violations inside the caller's transaction
            s.flush()
        _logger.debug("staged %d transaction row(s)", len(items))


__all__ = ["SqlAlchemyRepository"]
