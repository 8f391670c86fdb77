from __future__ import annotations

from decimal import Decimal

from pydantic import Field

from .base import CamelModel


class StkPushCreate(CamelModel):
    phone_number: str = Field(..., min_length=9, max_length=20)
    amount: Decimal = Field(..., gt=0)
    description: str | None = Field(None, max_length=100)


class StkPushResult(CamelModel):
    checkout_request_id: str
    merchant_request_id: str
    customer_message: str | None = None


class MobileMoneyDepositCreate(StkPushCreate):
    pass


class CallbackAck(CamelModel):
    """Acknowledgement body the provider expects; keys are already PascalCase."""

    result_code: int = Field(0, alias="ResultCode")
    result_desc: str = Field("Accepted", alias="ResultDesc")
