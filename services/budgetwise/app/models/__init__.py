from .user import User
from .wallet import Wallet
from .category import Category
from .transaction import Transaction
from .budget import Budget
from .pending_payment import PendingPayment

__all__ = [
    "User",
    "Wallet",
    "Category",
    "Transaction",
    "Budget",
    "PendingPayment",
]
