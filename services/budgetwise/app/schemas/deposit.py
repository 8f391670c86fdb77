from __future__ import annotations

from decimal import Decimal

from pydantic import Field

from .base import CamelModel
from .wallet import TransactionResponse, WalletResponse


class PaymentIntentCreate(CamelModel):
    amount: Decimal = Field(..., gt=0)


class PaymentIntentResponse(CamelModel):
    client_secret: str
    payment_intent_id: str


class CardDepositRequest(CamelModel):
    # Optional so a missing reference is answered with "Payment confirmation required"
    payment_intent_id: str | None = None
    amount: Decimal | None = Field(None, gt=0)


class DepositResponse(CamelModel):
    message: str
    transaction: TransactionResponse
    wallet: WalletResponse
