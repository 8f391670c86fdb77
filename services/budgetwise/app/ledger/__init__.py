"""Wallet ledger: records, the storage contract and its in-memory backend.

The SQLAlchemy backend lives in :mod:`.sql` and is imported on demand, since
the ORM models themselves depend on the record enums defined here.
"""

from .memory import InMemoryLedgerStore
from .records import (
    ExternalReference,
    PaymentProvider,
    PaymentStatus,
    PostingResult,
    TransactionType,
)
from .store import LedgerStore

__all__ = [
    "ExternalReference",
    "InMemoryLedgerStore",
    "LedgerStore",
    "PaymentProvider",
    "PaymentStatus",
    "PostingResult",
    "TransactionType",
]
