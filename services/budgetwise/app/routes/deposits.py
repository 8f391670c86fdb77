from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user_id, get_deposit_orchestrator
from ..schemas import CardDepositRequest, DepositResponse, PaymentIntentCreate, PaymentIntentResponse
from ..services.deposits import DepositOrchestrator
from .serializers import transaction_response, wallet_response

router = APIRouter()


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    user_id: int = Depends(get_current_user_id),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> PaymentIntentResponse:
    started = await deposits.start_card_deposit(user_id, payload.amount)
    return PaymentIntentResponse(client_secret=started.client_secret, payment_intent_id=started.payment_intent_id)


@router.post("/deposit", response_model=DepositResponse)
async def confirm_deposit(
    payload: CardDepositRequest,
    user_id: int = Depends(get_current_user_id),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> DepositResponse:
    result = await deposits.confirm_card_deposit(user_id, payload.payment_intent_id, payload.amount)
    message = "Deposit already recorded" if result.replayed else "Deposit successful"
    return DepositResponse(
        message=message,
        transaction=transaction_response(result.transaction),
        wallet=wallet_response(result.wallet),
    )
