from .pending import (
    InMemoryPendingPaymentStore,
    InvalidTransition,
    PendingPaymentStore,
    SqlPendingPaymentStore,
)

__all__ = [
    "InMemoryPendingPaymentStore",
    "InvalidTransition",
    "PendingPaymentStore",
    "SqlPendingPaymentStore",
]
