"""Card processor adapter (Stripe payment intents over its REST API)."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from loguru import logger

from ..errors import GatewayError, GatewayUnavailable
from ..metrics import TimedCall
from ..settings import BudgetwiseSettings

SUCCEEDED = "succeeded"
CANCELED = "canceled"


@dataclass(frozen=True)
class CardIntent:
    intent_id: str
    client_secret: str | None
    status: str
    amount: int
    amount_received: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


def to_minor_units(amount: Decimal) -> int:
    """Dollars to cents, rounded half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _intent_from_payload(payload: dict[str, Any]) -> CardIntent:
    return CardIntent(
        intent_id=payload["id"],
        client_secret=payload.get("client_secret"),
        status=payload.get("status", "unknown"),
        amount=int(payload.get("amount") or 0),
        amount_received=int(payload.get("amount_received") or 0),
        currency=payload.get("currency", ""),
        metadata=dict(payload.get("metadata") or {}),
    )


class CardIntentGateway:
    """Creates and retrieves payment intents at the card processor."""

    provider = "card"

    def __init__(self, settings: BudgetwiseSettings) -> None:
        self._secret_key = settings.stripe_secret_key
        self._api_base = settings.stripe_api_base.rstrip("/")
        self._timeout = httpx.Timeout(settings.http_timeout_seconds, read=settings.http_read_timeout_seconds)

    @property
    def configured(self) -> bool:
        return self._secret_key is not None and bool(self._secret_key.get_secret_value())

    def _auth(self) -> tuple[str, str]:
        if not self.configured:
            raise GatewayUnavailable("Card payments are not configured")
        return (self._secret_key.get_secret_value(), "")

    async def create_customer(self, email: str, name: str) -> str:
        payload = await self._request("POST", "/v1/customers", "create_customer", data={"email": email, "name": name})
        return payload["id"]

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        *,
        customer_id: str | None = None,
        metadata: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> CardIntent:
        data: dict[str, str] = {
            "amount": str(amount_minor),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        if customer_id:
            data["customer"] = customer_id
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = value
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        payload = await self._request("POST", "/v1/payment_intents", "create_intent", data=data, headers=headers)
        intent = _intent_from_payload(payload)
        logger.info("gateway.card.intent_created intent_id={} amount={} currency={}", intent.intent_id, amount_minor, currency)
        return intent

    async def retrieve_intent(self, intent_id: str) -> CardIntent:
        payload = await self._request("GET", f"/v1/payment_intents/{intent_id}", "retrieve_intent")
        return _intent_from_payload(payload)

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        auth = self._auth()
        url = f"{self._api_base}{path}"
        try:
            with TimedCall(self.provider, operation):
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    if method == "GET":
                        response = await client.get(url, auth=auth, headers=headers)
                    else:
                        response = await client.post(url, data=data, auth=auth, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("gateway.card.transport_error operation={} error={}", operation, exc.__class__.__name__)
            raise GatewayError("Card processor is unreachable") from exc

        if response.status_code >= 400:
            error = _provider_error(response)
            logger.warning(
                "gateway.card.rejected operation={} status={} type={} code={}",
                operation,
                response.status_code,
                error.get("type"),
                error.get("code"),
            )
            raise GatewayError("Card processor rejected the request", provider_status=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or not body.get("id"):
            logger.warning("gateway.card.unreadable_reply operation={} status={}", operation, response.status_code)
            raise GatewayError("Card processor sent an unexpected reply", provider_status=response.status_code)
        return body


def _provider_error(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    error = body.get("error") if isinstance(body, dict) else None
    return error if isinstance(error, dict) else {}
