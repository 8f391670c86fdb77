"""Map store records onto response schemas."""

from __future__ import annotations

from ..ledger.records import BudgetRecord, CategoryRecord, TransactionRecord, UserRecord, WalletRecord
from ..schemas import BudgetResponse, CategoryResponse, TransactionResponse, UserResponse, WalletResponse


def wallet_response(wallet: WalletRecord) -> WalletResponse:
    return WalletResponse(
        id=wallet.id,
        user_id=wallet.user_id,
        balance=wallet.balance,
        currency=wallet.currency,
        created_at=wallet.created_at,
    )


def category_response(category: CategoryRecord) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        icon=category.icon,
        color=category.color,
        is_default=category.is_default,
    )


def transaction_response(transaction: TransactionRecord, category: CategoryRecord | None = None) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        user_id=transaction.user_id,
        wallet_id=transaction.wallet_id,
        category_id=transaction.category_id,
        type=transaction.type,
        amount=transaction.amount,
        description=transaction.description,
        date=transaction.date,
        created_at=transaction.created_at,
        external_provider=transaction.external_provider.value if transaction.external_provider else None,
        external_reference=transaction.external_reference,
        category=category_response(category) if category else None,
    )


def budget_response(budget: BudgetRecord, category: CategoryRecord | None = None) -> BudgetResponse:
    return BudgetResponse(
        id=budget.id,
        user_id=budget.user_id,
        category_id=budget.category_id,
        amount=budget.amount,
        period=budget.period,
        start_date=budget.start_date,
        end_date=budget.end_date,
        created_at=budget.created_at,
        category=category_response(category) if category else None,
    )


def user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        created_at=user.created_at,
    )
