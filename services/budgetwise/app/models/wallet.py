from __future__ import annotations

from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.budgetwise.app.db.base import BaseModel


class Wallet(BaseModel):
    __tablename__ = "wallets"

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    # Stored, authoritative balance; always equals the signed sum of its transactions
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    # Sequence number of the last posted transaction
    last_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    user = relationship("User", back_populates="wallet")
