from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..errors import ConflictError, NotFoundError
from ..models import Budget, Category, Transaction, User, Wallet
from .records import (
    BudgetPeriod,
    BudgetRecord,
    CategoryRecord,
    ExternalReference,
    PaymentProvider,
    PostingResult,
    Reconciliation,
    TransactionRecord,
    TransactionType,
    UserRecord,
    WalletRecord,
)
from .store import LedgerStore, WalletLocks, balance_delta, ledger_sum, normalize_date, to_money


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        external_customer_id=row.external_customer_id,
        created_at=row.created_at,
    )


def _wallet_record(row: Wallet) -> WalletRecord:
    return WalletRecord(
        id=row.id,
        user_id=row.user_id,
        balance=Decimal(row.balance),
        currency=row.currency,
        last_sequence=row.last_sequence,
        created_at=row.created_at,
    )


def _transaction_record(row: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        user_id=row.user_id,
        wallet_id=row.wallet_id,
        category_id=row.category_id,
        type=TransactionType(row.type),
        amount=Decimal(row.amount),
        description=row.description,
        date=row.date,
        created_at=row.created_at,
        sequence=row.sequence,
        external_provider=PaymentProvider(row.external_provider) if row.external_provider else None,
        external_reference=row.external_reference,
    )


def _category_record(row: Category) -> CategoryRecord:
    return CategoryRecord(
        id=row.id,
        name=row.name,
        icon=row.icon,
        color=row.color,
        is_default=row.is_default,
        created_at=row.created_at,
    )


def _budget_record(row: Budget) -> BudgetRecord:
    return BudgetRecord(
        id=row.id,
        user_id=row.user_id,
        category_id=row.category_id,
        amount=Decimal(row.amount),
        period=BudgetPeriod(row.period),
        start_date=row.start_date,
        end_date=row.end_date,
        created_at=row.created_at,
    )


class SqlLedgerStore(LedgerStore):
    """Ledger persisted through SQLAlchemy's async ORM.

    Each operation runs in its own session and transaction. Postings take the
    in-process wallet lock and then lock the wallet row (``FOR UPDATE``), so
    they are serialized both within this process and across processes on
    backends that support row locks.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        default_currency: str = "USD",
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self.default_currency = default_currency
        self._wallet_locks = WalletLocks()

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
        async with self._session_factory() as session:
            clash = await session.scalar(
                select(User).where(or_(User.username == username, User.email == email)).limit(1)
            )
            if clash is not None:
                raise ConflictError("Username already exists" if clash.username == username else "Email already exists")

            user = User(
                username=username,
                email=email,
                hashed_password=password_hash,
                first_name=first_name,
                last_name=last_name,
            )
            user.wallet = Wallet(currency=self.default_currency, balance=Decimal("0.00"), last_sequence=0)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError("Username or email already exists") from exc
            record = _user_record(user)
            logger.info("ledger.user.created user_id={} wallet_id={}", user.id, user.wallet.id)
            return record

    async def get_user(self, user_id: int) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return _user_record(row) if row else None

    async def get_user_by_username(self, username: str) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(User).where(User.username == username))
            return _user_record(row) if row else None

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(User).where(User.email == email))
            return _user_record(row) if row else None

    async def set_external_customer_id(self, user_id: int, customer_id: str) -> UserRecord:
        async with self._session_factory() as session, session.begin():
            row = await session.get(User, user_id)
            if row is None:
                raise NotFoundError("User not found")
            row.external_customer_id = customer_id
            return _user_record(row)

    # Wallets

    async def get_wallet(self, wallet_id: int) -> WalletRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Wallet, wallet_id)
            return _wallet_record(row) if row else None

    async def get_wallet_by_user(self, user_id: int) -> WalletRecord:
        async with self._session_factory() as session:
            row = await session.scalar(select(Wallet).where(Wallet.user_id == user_id))
            if row is None:
                raise NotFoundError("Wallet not found")
            return _wallet_record(row)

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
            try:
                return await self._apply_posting(
                    user_id, wallet_id, kind, value, category_id, description, posted_on, external_reference
                )
            except IntegrityError:
                # Another process posted the same external reference first.
                if external_reference is None:
                    raise
                existing = await self.find_transaction_by_reference(external_reference)
                wallet = await self.get_wallet(wallet_id)
                if existing is None or wallet is None:
                    raise
                return PostingResult(transaction=existing, wallet=wallet, replayed=True)

    async def _apply_posting(
        self,
        user_id: int,
        wallet_id: int,
        kind: TransactionType,
        value: Decimal,
        category_id: int | None,
        description: str | None,
        posted_on: datetime,
        external_reference: ExternalReference | None,
    ) -> PostingResult:
        async with self._session_factory() as session:
            async with session.begin():
                # Lock the wallet row to prevent races
                wallet = await session.scalar(
                    select(Wallet).where(Wallet.id == wallet_id, Wallet.user_id == user_id).with_for_update()
                )
                if wallet is None:
                    raise NotFoundError("Wallet not found")

                if external_reference is not None:
                    existing = await session.scalar(
                        select(Transaction).where(
                            Transaction.external_provider == external_reference.provider.value,
                            Transaction.external_reference == external_reference.reference,
                        )
                    )
                    if existing is not None:
                        logger.info(
                            "ledger.posting.replayed wallet_id={} provider={} reference={}",
                            wallet_id,
                            external_reference.provider.value,
                            external_reference.reference,
                        )
                        return PostingResult(
                            transaction=_transaction_record(existing),
                            wallet=_wallet_record(wallet),
                            replayed=True,
                        )

                if category_id is not None and await session.get(Category, category_id) is None:
                    logger.warning("ledger.posting.unknown_category category_id={}", category_id)

                wallet.balance = Decimal(wallet.balance) + balance_delta(kind, value)
                wallet.last_sequence = wallet.last_sequence + 1
                entry = Transaction(
                    user_id=user_id,
                    wallet_id=wallet.id,
                    category_id=category_id,
                    type=kind.value,
                    amount=value,
                    description=description,
                    date=posted_on,
                    sequence=wallet.last_sequence,
                    external_provider=external_reference.provider.value if external_reference else None,
                    external_reference=external_reference.reference if external_reference else None,
                )
                session.add(entry)
                await session.flush()
                result = PostingResult(transaction=_transaction_record(entry), wallet=_wallet_record(wallet))

        logger.info(
            "ledger.posting.applied wallet_id={} type={} amount={} sequence={}",
            wallet_id,
            kind.value,
            value,
            result.transaction.sequence,
        )
        return result

    async def get_transaction(self, transaction_id: int) -> TransactionRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Transaction, transaction_id)
            return _transaction_record(row) if row else None

    async def find_transaction_by_reference(self, reference: ExternalReference) -> TransactionRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(Transaction).where(
                    Transaction.external_provider == PaymentProvider(reference.provider).value,
                    Transaction.external_reference == reference.reference,
                )
            )
            return _transaction_record(row) if row else None

    async def list_transactions(self, user_id: int) -> list[TransactionRecord]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.date.desc(), Transaction.sequence.desc())
            )
            return [_transaction_record(row) for row in rows]

    async def reconcile_wallet(self, wallet_id: int) -> Reconciliation:
        async with self._session_factory() as session:
            wallet = await session.get(Wallet, wallet_id)
            if wallet is None:
                raise NotFoundError("Wallet not found")
            rows = await session.scalars(select(Transaction).where(Transaction.wallet_id == wallet_id))
            entries = [_transaction_record(row) for row in rows]
            return Reconciliation(wallet_id=wallet_id, balance=Decimal(wallet.balance), ledger_sum=ledger_sum(entries))

    # Categories

    async def list_categories(self) -> list[CategoryRecord]:
        async with self._session_factory() as session:
            rows = await session.scalars(select(Category).order_by(Category.id))
            return [_category_record(row) for row in rows]

    async def get_category(self, category_id: int) -> CategoryRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Category, category_id)
            return _category_record(row) if row else None

    async def create_category(self, name: str, icon: str, color: str, *, is_default: bool = False) -> CategoryRecord:
        async with self._session_factory() as session, session.begin():
            row = Category(name=name, icon=icon, color=color, is_default=is_default)
            session.add(row)
            await session.flush()
            return _category_record(row)

    # Budgets

    async def list_budgets(self, user_id: int) -> list[BudgetRecord]:
        async with self._session_factory() as session:
            rows = await session.scalars(select(Budget).where(Budget.user_id == user_id).order_by(Budget.id))
            return [_budget_record(row) for row in rows]

    async def get_budget(self, budget_id: int) -> BudgetRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Budget, budget_id)
            return _budget_record(row) if row else None

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
        value = to_money(amount)
        async with self._session_factory() as session, session.begin():
            if await session.get(User, user_id) is None:
                raise NotFoundError("User not found")
            row = Budget(
                user_id=user_id,
                category_id=category_id,
                amount=value,
                period=BudgetPeriod(period).value,
                start_date=normalize_date(start_date),
                end_date=normalize_date(end_date) if end_date else None,
            )
            session.add(row)
            await session.flush()
            return _budget_record(row)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
