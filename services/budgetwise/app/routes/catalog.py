from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_current_user_id, get_ledger_store
from ..errors import ValidationError
from ..ledger.store import LedgerStore, normalize_date
from ..schemas import BudgetCreate, BudgetResponse, CategoryResponse
from .serializers import budget_response, category_response

router = APIRouter()


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(ledger: LedgerStore = Depends(get_ledger_store)) -> list[CategoryResponse]:
    return [category_response(category) for category in await ledger.list_categories()]


@router.get("/budgets", response_model=list[BudgetResponse])
async def list_budgets(
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> list[BudgetResponse]:
    categories = {category.id: category for category in await ledger.list_categories()}
    budgets = await ledger.list_budgets(user_id)
    return [budget_response(budget, categories.get(budget.category_id)) for budget in budgets]


@router.post("/budgets", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
async def create_budget(
    payload: BudgetCreate,
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> BudgetResponse:
    if payload.end_date and payload.start_date and normalize_date(payload.end_date) < normalize_date(payload.start_date):
        raise ValidationError("Budget end date must not be before its start date")
    category = None
    if payload.category_id is not None:
        category = await ledger.get_category(payload.category_id)
        if category is None:
            raise ValidationError("Unknown category")
    budget = await ledger.create_budget(
        user_id,
        payload.amount,
        category_id=payload.category_id,
        period=payload.period,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    return budget_response(budget, category)
