from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from loguru import logger

from ..dependencies import get_current_user_id, get_deposit_orchestrator
from ..schemas import CallbackAck, DepositResponse, MobileMoneyDepositCreate, StkPushCreate, StkPushResult
from ..services.deposits import DepositOrchestrator
from .serializers import transaction_response, wallet_response

router = APIRouter()


@router.post("/stk-push", response_model=StkPushResult)
async def stk_push(
    payload: StkPushCreate,
    user_id: int = Depends(get_current_user_id),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> StkPushResult:
    started = await deposits.start_mobile_money_deposit(user_id, payload.phone_number, payload.amount, payload.description)
    return StkPushResult(
        checkout_request_id=started.checkout_request_id,
        merchant_request_id=started.merchant_request_id,
        customer_message=started.customer_message,
    )


@router.post("/callback", response_model=CallbackAck)
async def callback(
    request: Request,
    token: str | None = Query(None),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> CallbackAck:
    # The provider retries on anything but 200, so every callback is acknowledged
    payload: Any
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("budgetwise.mpesa.callback_unparseable")
        payload = None
    outcome = await deposits.handle_mobile_money_callback(payload, token)
    logger.info("budgetwise.mpesa.callback_handled outcome={}", outcome.value)
    return CallbackAck()


@router.get("/transaction/{checkout_request_id}")
async def transaction_status(
    checkout_request_id: str,
    user_id: int = Depends(get_current_user_id),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> dict[str, Any]:
    return await deposits.query_mobile_money_deposit(user_id, checkout_request_id)


@router.post("/confirm-deposit", response_model=DepositResponse)
async def confirm_deposit(
    payload: MobileMoneyDepositCreate,
    user_id: int = Depends(get_current_user_id),
    deposits: DepositOrchestrator = Depends(get_deposit_orchestrator),
) -> DepositResponse:
    result = await deposits.record_unverified_mobile_money_deposit(
        user_id, payload.phone_number, payload.amount, payload.description
    )
    return DepositResponse(
        message="M-Pesa deposit recorded",
        transaction=transaction_response(result.transaction),
        wallet=wallet_response(result.wallet),
    )
