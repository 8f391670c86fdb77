from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from services.budgetwise.app.db.base import Base, utcnow
from services.budgetwise.app.ledger.records import PaymentStatus


class PendingPayment(Base):
    __tablename__ = "pending_payments"
    __table_args__ = (
        UniqueConstraint("provider", "external_reference", name="uq_pending_payment_reference"),
        Index("ix_pending_payment_phone_status", "phone_number", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    wallet_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default=PaymentStatus.created.value)
    external_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(16), nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failure_detail: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )
