"""Accounts and imported transactions.

Revision ID: 0001_ingest_core
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_ingest_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "fa_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("account_type", sa.String(), nullable=False),
        sa.Column("balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("opening_balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("masked_number", sa.String(), nullable=True),
        sa.Column("institution_name", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "fa_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(36),
            sa.ForeignKey("fa_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("category_id", sa.String(), nullable=True),
        sa.Column("import_source", sa.String(), nullable=False),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("raw_lines", sa.JSON(), nullable=True),
        sa.Column("fingerprint_sha256", sa.CHAR(64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("type in ('income','expense','transfer')", name="ck_fa_tx_type"),
        sa.CheckConstraint(
            "import_source in ('manual','upload')", name="ck_fa_tx_import_source"
        ),
        sa.CheckConstraint(
            "(type <> 'income' OR amount > 0) AND (type <> 'expense' OR amount <= 0)",
            name="ck_fa_tx_amount_sign",
        ),
    )
    op.create_index(
        "ix_fa_tx_account_fingerprint",
        "fa_transactions",
        ["account_id", "fingerprint_sha256"],
    )
    op.create_index("ix_fa_tx_account_date", "fa_transactions", ["account_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_fa_tx_account_date", table_name="fa_transactions")
    op.drop_index("ix_fa_tx_account_fingerprint", table_name="fa_transactions")
    op.drop_table("fa_transactions")
    op.drop_table("fa_accounts")
