"""Immutable snapshots returned by the stores.

Both storage backends hand these out instead of live ORM rows or mutable
dicts, so callers always see the state as of the operation that produced it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"
    deposit = "deposit"


class BudgetPeriod(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class PaymentProvider(str, Enum):
    card = "card"
    mpesa = "mpesa"


class PaymentStatus(str, Enum):
    created = "created"
    awaiting_confirmation = "awaiting_confirmation"
    confirmed = "confirmed"
    failed = "failed"
    posted = "posted"


@dataclass(frozen=True)
class ExternalReference:
    """Idempotency key for postings driven by an external payment."""

    provider: PaymentProvider
    reference: str


@dataclass(frozen=True)
class UserRecord:
    id: int
    username: str
    email: str
    password_hash: str
    first_name: str | None
    last_name: str | None
    external_customer_id: str | None
    created_at: datetime

    @property
    def display_name(self) -> str:
        names = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(names) or self.username


@dataclass(frozen=True)
class WalletRecord:
    id: int
    user_id: int
    balance: Decimal
    currency: str
    last_sequence: int
    created_at: datetime


@dataclass(frozen=True)
class CategoryRecord:
    id: int
    name: str
    icon: str
    color: str
    is_default: bool
    created_at: datetime


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    user_id: int
    wallet_id: int
    category_id: int | None
    type: TransactionType
    amount: Decimal
    description: str | None
    date: datetime
    created_at: datetime
    sequence: int
    external_provider: PaymentProvider | None = None
    external_reference: str | None = None


@dataclass(frozen=True)
class BudgetRecord:
    id: int
    user_id: int
    category_id: int | None
    amount: Decimal
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class PostingResult:
    transaction: TransactionRecord
    wallet: WalletRecord
    replayed: bool = False


@dataclass(frozen=True)
class Reconciliation:
    wallet_id: int
    balance: Decimal
    ledger_sum: Decimal

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


@dataclass(frozen=True)
class PendingPaymentRecord:
    id: str
    provider: PaymentProvider
    user_id: int
    wallet_id: int
    amount: Decimal
    currency: str
    status: PaymentStatus
    external_reference: str | None
    phone_number: str | None
    transaction_id: int | None
    failure_detail: str | None
    created_at: datetime
    updated_at: datetime
