from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from ..ledger.records import BudgetPeriod
from .base import CamelModel


class CategoryResponse(CamelModel):
    id: int
    name: str
    icon: str
    color: str
    is_default: bool


class BudgetCreate(CamelModel):
    amount: Decimal = Field(..., gt=0)
    category_id: int | None = None
    period: BudgetPeriod = BudgetPeriod.monthly
    start_date: datetime | None = None
    end_date: datetime | None = None


class BudgetResponse(CamelModel):
    id: int
    user_id: int
    category_id: int | None
    amount: Decimal
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime | None
    created_at: datetime
    category: CategoryResponse | None = None
