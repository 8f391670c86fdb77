"""Deposit attempts awaiting confirmation from an external provider.

A pending payment has no effect on any wallet. It moves through
``created -> awaiting_confirmation -> confirmed -> posted`` or ends in
``failed``; a posted or failed attempt never moves again.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import ConflictError, NotFoundError
from ..ledger.records import PaymentProvider, PaymentStatus, PendingPaymentRecord
from ..models import PendingPayment

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.created: frozenset({PaymentStatus.awaiting_confirmation, PaymentStatus.failed}),
    PaymentStatus.awaiting_confirmation: frozenset(
        {PaymentStatus.confirmed, PaymentStatus.failed, PaymentStatus.posted}
    ),
    PaymentStatus.confirmed: frozenset({PaymentStatus.posted, PaymentStatus.failed}),
    PaymentStatus.failed: frozenset(),
    PaymentStatus.posted: frozenset(),
}

TERMINAL_STATUSES = frozenset({PaymentStatus.failed, PaymentStatus.posted})


class InvalidTransition(ConflictError):
    pass


def _check_transition(record: PendingPaymentRecord, target: PaymentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[record.status]:
        raise InvalidTransition(f"Payment {record.id} cannot move from {record.status.value} to {target.value}")


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class PendingPaymentStore(ABC):
    @abstractmethod
    async def create(
        self,
        provider: PaymentProvider,
        user_id: int,
        wallet_id: int,
        amount: Decimal,
        currency: str,
        *,
        phone_number: str | None = None,
    ) -> PendingPaymentRecord: ...

    @abstractmethod
    async def get(self, payment_id: str) -> PendingPaymentRecord | None: ...

    @abstractmethod
    async def get_by_reference(self, provider: PaymentProvider, reference: str) -> PendingPaymentRecord | None: ...

    @abstractmethod
    async def find_awaiting_by_phone(self, provider: PaymentProvider, phone_number: str) -> PendingPaymentRecord | None:
        """Most recent attempt for ``phone_number`` still waiting on the provider."""

    @abstractmethod
    async def attach_reference(self, payment_id: str, reference: str) -> PendingPaymentRecord:
        """Record the provider's id and move the attempt to ``awaiting_confirmation``."""

    @abstractmethod
    async def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        transaction_id: int | None = None,
        failure_detail: str | None = None,
    ) -> PendingPaymentRecord: ...


class InMemoryPendingPaymentStore(PendingPaymentStore):
    def __init__(self) -> None:
        self._payments: dict[str, PendingPaymentRecord] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        provider: PaymentProvider,
        user_id: int,
        wallet_id: int,
        amount: Decimal,
        currency: str,
        *,
        phone_number: str | None = None,
    ) -> PendingPaymentRecord:
        now = _now()
        record = PendingPaymentRecord(
            id=uuid4().hex,
            provider=PaymentProvider(provider),
            user_id=user_id,
            wallet_id=wallet_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.created,
            external_reference=None,
            phone_number=phone_number,
            transaction_id=None,
            failure_detail=None,
            created_at=now,
            updated_at=now,
        )
        self._payments[record.id] = record
        return record

    async def get(self, payment_id: str) -> PendingPaymentRecord | None:
        return self._payments.get(payment_id)

    async def get_by_reference(self, provider: PaymentProvider, reference: str) -> PendingPaymentRecord | None:
        return next(
            (p for p in self._payments.values() if p.provider == provider and p.external_reference == reference),
            None,
        )

    async def find_awaiting_by_phone(self, provider: PaymentProvider, phone_number: str) -> PendingPaymentRecord | None:
        candidates = [
            p
            for p in self._payments.values()
            if p.provider == provider
            and p.phone_number == phone_number
            and p.status == PaymentStatus.awaiting_confirmation
        ]
        # Latest first on equal timestamps
        return max(reversed(candidates), key=lambda p: p.created_at, default=None)

    async def attach_reference(self, payment_id: str, reference: str) -> PendingPaymentRecord:
        async with self._lock:
            record = self._require(payment_id)
            if await self.get_by_reference(record.provider, reference) is not None:
                raise ConflictError("Payment reference already registered")
            _check_transition(record, PaymentStatus.awaiting_confirmation)
            updated = replace(
                record,
                external_reference=reference,
                status=PaymentStatus.awaiting_confirmation,
                updated_at=_now(),
            )
            self._payments[payment_id] = updated
            return updated

    async def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        transaction_id: int | None = None,
        failure_detail: str | None = None,
    ) -> PendingPaymentRecord:
        async with self._lock:
            record = self._require(payment_id)
            _check_transition(record, status)
            updated = replace(
                record,
                status=status,
                transaction_id=transaction_id if transaction_id is not None else record.transaction_id,
                failure_detail=failure_detail if failure_detail is not None else record.failure_detail,
                updated_at=_now(),
            )
            self._payments[payment_id] = updated
            return updated

    def _require(self, payment_id: str) -> PendingPaymentRecord:
        record = self._payments.get(payment_id)
        if record is None:
            raise NotFoundError("Payment not found")
        return record


def _pending_record(row: PendingPayment) -> PendingPaymentRecord:
    return PendingPaymentRecord(
        id=row.id,
        provider=PaymentProvider(row.provider),
        user_id=row.user_id,
        wallet_id=row.wallet_id,
        amount=Decimal(row.amount),
        currency=row.currency,
        status=PaymentStatus(row.status),
        external_reference=row.external_reference,
        phone_number=row.phone_number,
        transaction_id=row.transaction_id,
        failure_detail=row.failure_detail,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlPendingPaymentStore(PendingPaymentStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        provider: PaymentProvider,
        user_id: int,
        wallet_id: int,
        amount: Decimal,
        currency: str,
        *,
        phone_number: str | None = None,
    ) -> PendingPaymentRecord:
        async with self._session_factory() as session, session.begin():
            row = PendingPayment(
                id=uuid4().hex,
                provider=PaymentProvider(provider).value,
                user_id=user_id,
                wallet_id=wallet_id,
                amount=amount,
                currency=currency,
                status=PaymentStatus.created.value,
                phone_number=phone_number,
            )
            session.add(row)
            await session.flush()
            return _pending_record(row)

    async def get(self, payment_id: str) -> PendingPaymentRecord | None:
        async with self._session_factory() as session:
            row = await session.get(PendingPayment, payment_id)
            return _pending_record(row) if row else None

    async def get_by_reference(self, provider: PaymentProvider, reference: str) -> PendingPaymentRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(PendingPayment).where(
                    PendingPayment.provider == PaymentProvider(provider).value,
                    PendingPayment.external_reference == reference,
                )
            )
            return _pending_record(row) if row else None

    async def find_awaiting_by_phone(self, provider: PaymentProvider, phone_number: str) -> PendingPaymentRecord | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(PendingPayment)
                .where(
                    PendingPayment.provider == PaymentProvider(provider).value,
                    PendingPayment.phone_number == phone_number,
                    PendingPayment.status == PaymentStatus.awaiting_confirmation.value,
                )
                .order_by(PendingPayment.created_at.desc())
                .limit(1)
            )
            return _pending_record(row) if row else None

    async def attach_reference(self, payment_id: str, reference: str) -> PendingPaymentRecord:
        try:
            async with self._session_factory() as session, session.begin():
                row = await self._locked(session, payment_id)
                _check_transition(_pending_record(row), PaymentStatus.awaiting_confirmation)
                row.external_reference = reference
                row.status = PaymentStatus.awaiting_confirmation.value
                await session.flush()
                return _pending_record(row)
        except IntegrityError as exc:
            logger.warning("payments.pending.duplicate_reference reference={}", reference)
            raise ConflictError("Payment reference already registered") from exc

    async def transition(
        self,
        payment_id: str,
        status: PaymentStatus,
        *,
        transaction_id: int | None = None,
        failure_detail: str | None = None,
    ) -> PendingPaymentRecord:
        async with self._session_factory() as session, session.begin():
            row = await self._locked(session, payment_id)
            _check_transition(_pending_record(row), status)
            row.status = status.value
            if transaction_id is not None:
                row.transaction_id = transaction_id
            if failure_detail is not None:
                row.failure_detail = failure_detail[:255]
            await session.flush()
            return _pending_record(row)

    @staticmethod
    async def _locked(session: AsyncSession, payment_id: str) -> PendingPayment:
        row = await session.scalar(select(PendingPayment).where(PendingPayment.id == payment_id).with_for_update())
        if row is None:
            raise NotFoundError("Payment not found")
        return row
