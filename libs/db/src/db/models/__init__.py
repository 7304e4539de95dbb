"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the account/transaction tables written by
``statement_ingest``.
"""

from .finance import Base, FaAccount, FaTransaction

__all__ = [
    "Base",
    "FaAccount",
    "FaTransaction",
]
