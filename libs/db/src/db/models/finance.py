from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: fa_accounts
# ---------------------------


class FaAccount(Base):
    __tablename__ = "fa_accounts"

    # UUID text ids are generated by the application, not the database
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    account_type: Mapped[str] = mapped_column(String, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    masked_number: Mapped[str | None] = mapped_column(String, nullable=True)
    institution_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


# ---------------------------
# Core: fa_transactions
# ---------------------------


class FaTransaction(Base):
    __tablename__ = "fa_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("fa_accounts.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    category_id: Mapped[str | None] = mapped_column(String, nullable=True)
    import_source: Mapped[str] = mapped_column(String, nullable=False)
    # Statement running balance printed next to this row, when there was one
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    raw_lines: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    # Recomputable from (account_id, date, amount, normalized description).
    # Not unique: manual entries may legitimately repeat an imported row.
    fingerprint_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "type in ('income','expense','transfer')",
            name="ck_fa_tx_type",
        ),
        CheckConstraint(
            "import_source in ('manual','upload')",
            name="ck_fa_tx_import_source",
        ),
        CheckConstraint(
            "(type <> 'income' OR amount > 0) AND (type <> 'expense' OR amount <= 0)",
            name="ck_fa_tx_amount_sign",
        ),
        Index("ix_fa_tx_account_fingerprint", "account_id", "fingerprint_sha256"),
        Index("ix_fa_tx_account_date", "account_id", "date"),
    )


__all__ = [
    "Base",
    "FaAccount",
    "FaTransaction",
]
