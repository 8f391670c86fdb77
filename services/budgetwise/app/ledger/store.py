"""Ledger storage contract and the posting rules shared by every backend."""

from __future__ import annotations

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import AsyncIterator

from ..errors import ValidationError
from .records import (
    BudgetPeriod,
    BudgetRecord,
    CategoryRecord,
    ExternalReference,
    PostingResult,
    Reconciliation,
    TransactionRecord,
    TransactionType,
    UserRecord,
    WalletRecord,
)

MONEY_QUANT = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999999999.99")

DEFAULT_CATEGORIES: tuple[dict[str, str], ...] = (
    {"name": "Food & Drinks", "icon": "restaurant", "color": "#ff9800"},
    {"name": "Shopping", "icon": "shopping_bag", "color": "#2196f3"},
    {"name": "Transportation", "icon": "directions_car", "color": "#3f51b5"},
    {"name": "Bills & Utilities", "icon": "receipt", "color": "#f44336"},
    {"name": "Entertainment", "icon": "movie", "color": "#9c27b0"},
    {"name": "Health", "icon": "favorite", "color": "#4caf50"},
    {"name": "Salary", "icon": "payments", "color": "#4caf50"},
)


def to_money(value: object) -> Decimal:
    """Quantize ``value`` to cents, rejecting anything that is not a positive amount."""
    try:
        amount = Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be positive")
    if amount > MAX_AMOUNT:
        raise ValidationError("Amount is too large")
    return amount


def balance_delta(kind: TransactionType, amount: Decimal) -> Decimal:
    """Signed effect of a transaction on its wallet balance.

    Transfers are recorded but carry no balance effect.
    """
    if kind in (TransactionType.income, TransactionType.deposit):
        return amount
    if kind == TransactionType.expense:
        return -amount
    return Decimal("0.00")


def normalize_date(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(tz=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def ledger_sum(transactions: list[TransactionRecord]) -> Decimal:
    total = Decimal("0.00")
    for tx in transactions:
        total += balance_delta(tx.type, tx.amount)
    return total


class WalletLocks:
    """One asyncio lock per wallet id; postings to a wallet run one at a time.

    A lock lives only while some posting holds or awaits it.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, wallet_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(wallet_id)
        if lock is None:
            lock = self._locks[wallet_id] = asyncio.Lock()
        async with lock:
            yield


class LedgerStore(ABC):
    """Users, wallets, categories, transactions and budgets.

    Implementations must make ``post_transaction`` atomic: the transaction row
    and the wallet balance change are written together or not at all, and
    postings for the same wallet never interleave.
    """

    # Users

    @abstractmethod
    async def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UserRecord:
        """Create a user and its wallet; ``ConflictError`` on duplicate username/email."""

    @abstractmethod
    async def get_user(self, user_id: int) -> UserRecord | None: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> UserRecord | None: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> UserRecord | None: ...

    @abstractmethod
    async def set_external_customer_id(self, user_id: int, customer_id: str) -> UserRecord: ...

    # Wallets

    @abstractmethod
    async def get_wallet(self, wallet_id: int) -> WalletRecord | None: ...

    @abstractmethod
    async def get_wallet_by_user(self, user_id: int) -> WalletRecord:
        """Return the user's wallet or raise ``NotFoundError``."""

    # Transactions

    @abstractmethod
    async def post_transaction(
        self,
        user_id: int,
        wallet_id: int,
        kind: TransactionType,
        amount: Decimal | int | float | str,
        *,
        category_id: int | None = None,
        description: str | None = None,
        date: datetime | None = None,
        external_reference: ExternalReference | None = None,
    ) -> PostingResult:
        """Append a transaction and apply its balance effect in one step.

        A repeated ``external_reference`` returns the original posting with
        ``replayed=True`` and leaves the wallet untouched.
        """

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> TransactionRecord | None: ...

    @abstractmethod
    async def find_transaction_by_reference(self, reference: ExternalReference) -> TransactionRecord | None: ...

    @abstractmethod
    async def list_transactions(self, user_id: int) -> list[TransactionRecord]:
        """Transactions of a user, newest ``date`` first (ties: latest posting first)."""

    @abstractmethod
    async def reconcile_wallet(self, wallet_id: int) -> Reconciliation: ...

    # Categories

    @abstractmethod
    async def list_categories(self) -> list[CategoryRecord]: ...

    @abstractmethod
    async def get_category(self, category_id: int) -> CategoryRecord | None: ...

    @abstractmethod
    async def create_category(self, name: str, icon: str, color: str, *, is_default: bool = False) -> CategoryRecord: ...

    async def seed_default_categories(self) -> int:
        """Create the default categories that are missing; returns how many were added."""
        existing = {category.name for category in await self.list_categories() if category.is_default}
        created = 0
        for spec in DEFAULT_CATEGORIES:
            if spec["name"] in existing:
                continue
            await self.create_category(spec["name"], spec["icon"], spec["color"], is_default=True)
            created += 1
        return created

    # Budgets

    @abstractmethod
    async def list_budgets(self, user_id: int) -> list[BudgetRecord]: ...

    @abstractmethod
    async def get_budget(self, budget_id: int) -> BudgetRecord | None: ...

    @abstractmethod
    async def create_budget(
        self,
        user_id: int,
        amount: Decimal | int | float | str,
        *,
        category_id: int | None = None,
        period: BudgetPeriod = BudgetPeriod.monthly,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> BudgetRecord: ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
