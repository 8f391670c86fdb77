from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from ..ledger.records import TransactionType
from .base import CamelModel
from .catalog import CategoryResponse


class WalletResponse(CamelModel):
    id: int
    user_id: int
    balance: Decimal
    currency: str
    created_at: datetime


class TransactionCreate(CamelModel):
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category_id: int | None = None
    description: str | None = Field(None, max_length=500)
    date: datetime | None = None


class TransactionResponse(CamelModel):
    id: int
    user_id: int
    wallet_id: int
    category_id: int | None
    type: TransactionType
    amount: Decimal
    description: str | None
    date: datetime
    created_at: datetime
    external_provider: str | None = None
    external_reference: str | None = None
    category: CategoryResponse | None = None


class PostedTransactionResponse(CamelModel):
    transaction: TransactionResponse
    wallet: WalletResponse
