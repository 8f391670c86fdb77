from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_current_user_id, get_ledger_store
from ..ledger.store import LedgerStore
from ..metrics import record_posting
from ..schemas import PostedTransactionResponse, TransactionCreate, TransactionResponse, WalletResponse
from .serializers import transaction_response, wallet_response

router = APIRouter()


@router.get("/wallet", response_model=WalletResponse)
async def get_wallet(
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> WalletResponse:
    wallet = await ledger.get_wallet_by_user(user_id)
    return wallet_response(wallet)


@router.post("/transactions", response_model=PostedTransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> PostedTransactionResponse:
    wallet = await ledger.get_wallet_by_user(user_id)
    result = await ledger.post_transaction(
        user_id,
        wallet.id,
        payload.type,
        payload.amount,
        category_id=payload.category_id,
        description=payload.description,
        date=payload.date,
    )
    record_posting(result)
    category = await ledger.get_category(payload.category_id) if payload.category_id else None
    return PostedTransactionResponse(
        transaction=transaction_response(result.transaction, category),
        wallet=wallet_response(result.wallet),
    )


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> list[TransactionResponse]:
    categories = {category.id: category for category in await ledger.list_categories()}
    transactions = await ledger.list_transactions(user_id)
    return [transaction_response(tx, categories.get(tx.category_id)) for tx in transactions]
