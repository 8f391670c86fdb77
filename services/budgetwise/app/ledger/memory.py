from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from loguru import logger

from ..errors import ConflictError, NotFoundError
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
from .store import DEFAULT_CATEGORIES, LedgerStore, WalletLocks, balance_delta, ledger_sum, normalize_date, to_money


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class InMemoryLedgerStore(LedgerStore):
    """Process-local ledger backed by dicts.

    Counters and collections belong to the instance; two stores never share
    ids or rows.
    """

    def __init__(self, *, default_currency: str = "USD", seed_categories: bool = True) -> None:
        self.default_currency = default_currency
        self._users: dict[int, UserRecord] = {}
        self._wallets: dict[int, WalletRecord] = {}
        self._categories: dict[int, CategoryRecord] = {}
        self._transactions: dict[int, TransactionRecord] = {}
        self._budgets: dict[int, BudgetRecord] = {}
        self._references: dict[ExternalReference, int] = {}

        self._user_ids = itertools.count(1)
        self._wallet_ids = itertools.count(1)
        self._category_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)
        self._budget_ids = itertools.count(1)

        self._registration_lock = asyncio.Lock()
        self._wallet_locks = WalletLocks()

        if seed_categories:
            for spec in DEFAULT_CATEGORIES:
                self._insert_category(spec["name"], spec["icon"], spec["color"], is_default=True)

    # Users

    async def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UserRecord:
        async with self._registration_lock:
            for existing in self._users.values():
                if existing.username == username:
                    raise ConflictError("Username already exists")
                if existing.email == email:
                    raise ConflictError("Email already exists")
            now = _now()
            user = UserRecord(
                id=next(self._user_ids),
                username=username,
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                external_customer_id=None,
                created_at=now,
            )
            wallet = WalletRecord(
                id=next(self._wallet_ids),
                user_id=user.id,
                balance=Decimal("0.00"),
                currency=self.default_currency,
                last_sequence=0,
                created_at=now,
            )
            # Both rows become visible together; nothing awaits in between.
            self._users[user.id] = user
            self._wallets[wallet.id] = wallet
        logger.info("ledger.user.created user_id={} wallet_id={}", user.id, wallet.id)
        return user

    async def get_user(self, user_id: int) -> UserRecord | None:
        return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> UserRecord | None:
        return next((u for u in self._users.values() if u.username == username), None)

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        return next((u for u in self._users.values() if u.email == email), None)

    async def set_external_customer_id(self, user_id: int, customer_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        updated = replace(user, external_customer_id=customer_id)
        self._users[user_id] = updated
        return updated

    # Wallets

    async def get_wallet(self, wallet_id: int) -> WalletRecord | None:
        return self._wallets.get(wallet_id)

    async def get_wallet_by_user(self, user_id: int) -> WalletRecord:
        wallet = next((w for w in self._wallets.values() if w.user_id == user_id), None)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        return wallet

    # Transactions

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
        kind = TransactionType(kind)
        value = to_money(amount)
        posted_on = normalize_date(date)

        async with self._wallet_locks.hold(wallet_id):
            wallet = self._wallets.get(wallet_id)
            if wallet is None or wallet.user_id != user_id:
                raise NotFoundError("Wallet not found")

            if external_reference is not None and external_reference in self._references:
                existing = self._transactions[self._references[external_reference]]
                logger.info(
                    "ledger.posting.replayed wallet_id={} provider={} reference={}",
                    wallet_id,
                    external_reference.provider.value,
                    external_reference.reference,
                )
                return PostingResult(transaction=existing, wallet=wallet, replayed=True)

            if category_id is not None and category_id not in self._categories:
                logger.warning("ledger.posting.unknown_category category_id={}", category_id)

            sequence = wallet.last_sequence + 1
            transaction = TransactionRecord(
                id=next(self._transaction_ids),
                user_id=user_id,
                wallet_id=wallet_id,
                category_id=category_id,
                type=kind,
                amount=value,
                description=description,
                date=posted_on,
                created_at=_now(),
                sequence=sequence,
                external_provider=external_reference.provider if external_reference else None,
                external_reference=external_reference.reference if external_reference else None,
            )
            updated_wallet = replace(
                wallet,
                balance=wallet.balance + balance_delta(kind, value),
                last_sequence=sequence,
            )
            self._transactions[transaction.id] = transaction
            self._wallets[wallet_id] = updated_wallet
            if external_reference is not None:
                self._references[external_reference] = transaction.id

        logger.info(
            "ledger.posting.applied wallet_id={} type={} amount={} sequence={}",
            wallet_id,
            kind.value,
            value,
            sequence,
        )
        return PostingResult(transaction=transaction, wallet=updated_wallet)

    async def get_transaction(self, transaction_id: int) -> TransactionRecord | None:
        return self._transactions.get(transaction_id)

    async def find_transaction_by_reference(self, reference: ExternalReference) -> TransactionRecord | None:
        transaction_id = self._references.get(reference)
        return self._transactions.get(transaction_id) if transaction_id is not None else None

    async def list_transactions(self, user_id: int) -> list[TransactionRecord]:
        owned = [tx for tx in self._transactions.values() if tx.user_id == user_id]
        return sorted(owned, key=lambda tx: (tx.date, tx.sequence), reverse=True)

    async def reconcile_wallet(self, wallet_id: int) -> Reconciliation:
        wallet = self._wallets.get(wallet_id)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        entries = [tx for tx in self._transactions.values() if tx.wallet_id == wallet_id]
        return Reconciliation(wallet_id=wallet_id, balance=wallet.balance, ledger_sum=ledger_sum(entries))

    # Categories

    def _insert_category(self, name: str, icon: str, color: str, *, is_default: bool) -> CategoryRecord:
        category = CategoryRecord(
            id=next(self._category_ids),
            name=name,
            icon=icon,
            color=color,
            is_default=is_default,
            created_at=_now(),
        )
        self._categories[category.id] = category
        return category

    async def list_categories(self) -> list[CategoryRecord]:
        return list(self._categories.values())

    async def get_category(self, category_id: int) -> CategoryRecord | None:
        return self._categories.get(category_id)

    async def create_category(self, name: str, icon: str, color: str, *, is_default: bool = False) -> CategoryRecord:
        return self._insert_category(name, icon, color, is_default=is_default)

    # Budgets

    async def list_budgets(self, user_id: int) -> list[BudgetRecord]:
        return [budget for budget in self._budgets.values() if budget.user_id == user_id]

    async def get_budget(self, budget_id: int) -> BudgetRecord | None:
        return self._budgets.get(budget_id)

    async def create_budget(
        self,
        user_id: int,
        amount: Decimal | int | float | str,
        *,
        category_id: int | None = None,
        period: BudgetPeriod = BudgetPeriod.monthly,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> BudgetRecord:
        if user_id not in self._users:
            raise NotFoundError("User not found")
        budget = BudgetRecord(
            id=next(self._budget_ids),
            user_id=user_id,
            category_id=category_id,
            amount=to_money(amount),
            period=BudgetPeriod(period),
            start_date=normalize_date(start_date),
            end_date=normalize_date(end_date) if end_date else None,
            created_at=_now(),
        )
        self._budgets[budget.id] = budget
        return budget
