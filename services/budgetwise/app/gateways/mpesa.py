"""M-Pesa (Daraja) STK push adapter.

Every request carries a password derived from the shortcode, the passkey and
a fresh ``YYYYMMDDHHMMSS`` timestamp in East Africa Time; the provider checks
the timestamp against its replay window, so it is never reused.
"""

from __future__ import annotations

import asyncio
import base64
import hmac
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable

import httpx
from loguru import logger

from ..errors import GatewayError, GatewayUnavailable, ValidationError
from ..metrics import TimedCall
from ..settings import BudgetwiseSettings

EAST_AFRICA_TIME = timezone(timedelta(hours=3), name="EAT")
TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)
KENYAN_PREFIX = re.compile(r"^(0|\+254)")
MSISDN = re.compile(r"^254\d{9}$")


def normalize_phone_number(phone_number: str) -> str:
    """Rewrite a leading ``0`` or ``+254`` to ``254`` (Kenyan MSISDN)."""
    cleaned = re.sub(r"[\s-]", "", phone_number or "")
    formatted = KENYAN_PREFIX.sub("254", cleaned, count=1)
    if not MSISDN.match(formatted):
        raise ValidationError("Phone number must be a Kenyan mobile number, e.g. 0712345678")
    return formatted


def round_shillings(amount: Decimal | int | float | str) -> int:
    """Amounts are sent in whole shillings, rounded half up."""
    try:
        value = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Amount must be a number") from exc
    if value < 1:
        raise ValidationError("Amount must be at least 1")
    return int(value)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(EAST_AFRICA_TIME).strftime("%Y%m%d%H%M%S")


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


@dataclass(frozen=True)
class StkPushRequest:
    phone_number: str
    amount: Decimal | int
    callback_url: str
    account_reference: str
    description: str


@dataclass(frozen=True)
class StkPushResponse:
    checkout_request_id: str
    merchant_request_id: str
    customer_message: str | None = None


@dataclass(frozen=True)
class StkCallback:
    """The parts of an STK callback the deposit flow relies on."""

    result_code: int
    result_description: str
    checkout_request_id: str | None
    merchant_request_id: str | None
    amount: Decimal | None
    phone_number: str | None
    receipt_number: str | None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


def parse_callback(payload: dict[str, Any]) -> StkCallback:
    """Flatten ``Body.stkCallback`` and its ``CallbackMetadata.Item`` list."""
    callback = payload["Body"]["stkCallback"]
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    metadata = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}

    amount = metadata.get("Amount")
    phone = metadata.get("PhoneNumber")
    receipt = metadata.get("MpesaReceiptNumber")
    return StkCallback(
        result_code=int(callback["ResultCode"]),
        result_description=str(callback.get("ResultDesc", "")),
        checkout_request_id=callback.get("CheckoutRequestID"),
        merchant_request_id=callback.get("MerchantRequestID"),
        amount=Decimal(str(amount)) if amount is not None else None,
        phone_number=str(phone) if phone is not None else None,
        receipt_number=str(receipt) if receipt is not None else None,
    )


class MpesaGateway:
    provider = "mpesa"

    def __init__(self, settings: BudgetwiseSettings, *, clock: Callable[[], datetime] | None = None) -> None:
        self._consumer_key = settings.mpesa_consumer_key
        self._consumer_secret = settings.mpesa_consumer_secret
        self._shortcode = settings.mpesa_shortcode
        self._passkey = settings.mpesa_passkey
        self._callback_token = settings.mpesa_callback_token
        self._api_base = settings.mpesa_api_base.rstrip("/")
        self._timeout = httpx.Timeout(settings.http_timeout_seconds, read=settings.http_read_timeout_seconds)
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._token: str | None = None
        self._token_expires_at: datetime | None = None
        self._token_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return all((self._consumer_key, self._consumer_secret, self._shortcode, self._passkey))

    def _require_configured(self) -> None:
        if not self.configured:
            raise GatewayUnavailable("M-Pesa payments are not configured")

    async def get_access_token(self) -> str:
        """Client-credentials token, reused until shortly before it expires."""
        self._require_configured()
        async with self._token_lock:
            now = self._clock()
            if self._token and self._token_expires_at and now < self._token_expires_at:
                return self._token

            auth = (self._consumer_key.get_secret_value(), self._consumer_secret.get_secret_value())
            try:
                with TimedCall(self.provider, "access_token"):
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        response = await client.get(f"{self._api_base}{TOKEN_PATH}", auth=auth)
            except httpx.HTTPError as exc:
                logger.warning("gateway.mpesa.token_transport_error error={}", exc.__class__.__name__)
                raise GatewayError("Failed to authenticate with M-Pesa") from exc
            if response.status_code >= 400:
                logger.warning("gateway.mpesa.token_rejected status={}", response.status_code)
                raise GatewayError("Failed to authenticate with M-Pesa", provider_status=response.status_code)

            body = _json_object(response) or {}
            token = body.get("access_token")
            expires_in = str(body.get("expires_in") or "0")
            if not token or not expires_in.isdigit():
                logger.warning("gateway.mpesa.token_unreadable status={}", response.status_code)
                raise GatewayError("Failed to authenticate with M-Pesa", provider_status=response.status_code)
            self._token = token
            self._token_expires_at = now + timedelta(seconds=int(expires_in)) - TOKEN_EXPIRY_MARGIN
            return token

    def _credentials(self) -> dict[str, str]:
        timestamp = format_timestamp(self._clock())
        return {
            "BusinessShortCode": self._shortcode,
            "Password": build_password(self._shortcode, self._passkey.get_secret_value(), timestamp),
            "Timestamp": timestamp,
        }

    async def initiate_push(self, request: StkPushRequest) -> StkPushResponse:
        self._require_configured()
        phone = normalize_phone_number(request.phone_number)
        payload = {
            **self._credentials(),
            "TransactionType": "CustomerPayBillOnline",
            "Amount": round_shillings(request.amount),
            "PartyA": phone,
            "PartyB": self._shortcode,
            "PhoneNumber": phone,
            "CallBackURL": request.callback_url,
            "AccountReference": request.account_reference,
            "TransactionDesc": request.description,
        }
        body = await self._post(STK_PUSH_PATH, payload, "stk_push", failure="Failed to initiate M-Pesa payment")
        if str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
            logger.warning(
                "gateway.mpesa.stk_push_declined response_code={} description={}",
                body.get("ResponseCode"),
                body.get("ResponseDescription"),
            )
            raise GatewayError("Failed to initiate M-Pesa payment")
        logger.info("gateway.mpesa.stk_push_sent checkout_request_id={}", body["CheckoutRequestID"])
        return StkPushResponse(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID", ""),
            customer_message=body.get("CustomerMessage"),
        )

    async def check_status(self, checkout_request_id: str) -> dict[str, Any]:
        self._require_configured()
        payload = {**self._credentials(), "CheckoutRequestID": checkout_request_id}
        return await self._post(STK_QUERY_PATH, payload, "stk_query", failure="Failed to check M-Pesa transaction status")

    def validate_callback(self, payload: Any, token: str | None) -> bool:
        """Accept a callback only when it presents our token and has the STK shape.

        The token is part of the callback URL handed to the provider, so only
        the provider (or someone who can read our configuration) knows it.
        """
        expected = self._callback_token.get_secret_value() if self._callback_token else ""
        if not expected:
            logger.warning("gateway.mpesa.callback_token_unset")
            return False
        if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            return False
        try:
            callback = payload["Body"]["stkCallback"]
            int(callback["ResultCode"])
        except (KeyError, TypeError, ValueError):
            return False
        checkout_request_id = callback.get("CheckoutRequestID")
        return checkout_request_id is None or isinstance(checkout_request_id, str)

    async def _post(self, path: str, payload: dict[str, Any], operation: str, *, failure: str) -> dict[str, Any]:
        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            with TimedCall(self.provider, operation):
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(f"{self._api_base}{path}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("gateway.mpesa.transport_error operation={} error={}", operation, exc.__class__.__name__)
            raise GatewayError(failure) from exc
        if response.status_code >= 400:
            error_code, error_message = _provider_error(response)
            logger.warning(
                "gateway.mpesa.rejected operation={} status={} error_code={} error_message={}",
                operation,
                response.status_code,
                error_code,
                error_message,
            )
            raise GatewayError(failure, provider_status=response.status_code)

        body = _json_object(response)
        if body is None:
            logger.warning("gateway.mpesa.unreadable_reply operation={} status={}", operation, response.status_code)
            raise GatewayError(failure, provider_status=response.status_code)
        return body


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _provider_error(response: httpx.Response) -> tuple[str | None, str | None]:
    body = _json_object(response)
    if body is None:
        return None, None
    return body.get("errorCode"), body.get("errorMessage")
