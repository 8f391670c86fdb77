"""Helpers shared by the Budgetwise test modules."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from services.budgetwise.app import models  # noqa: F401
from services.budgetwise.app.db.base import Base
from services.budgetwise.app.settings import BudgetwiseSettings

FIXED_NOW = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)
CALLBACK_TOKEN = "cb-secret-token"

Handler = Callable[..., Awaitable[httpx.Response]]


class StubAsyncClient:
    """Stands in for ``httpx.AsyncClient``; every request goes to ``handler``."""

    def __init__(self, handler: Handler):
        self._handler = handler

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        return None

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._handler("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self._handler("POST", url, **kwargs)


def make_settings(**overrides) -> BudgetwiseSettings:
    values = {
        "storage_backend": "memory",
        "environment": "test",
        "otel_enabled": False,
        "secret_key": "test-secret",
        "stripe_secret_key": "sk_test_123",
        "stripe_api_base": "https://card.test",
        "mpesa_consumer_key": "consumer-key",
        "mpesa_consumer_secret": "consumer-secret",
        "mpesa_shortcode": "174379",
        "mpesa_passkey": "passkey",
        "mpesa_api_base": "https://mpesa.test",
        "mpesa_callback_base_url": "https://budgetwise.test",
        "mpesa_callback_token": CALLBACK_TOKEN,
    }
    values.update(overrides)
    return BudgetwiseSettings(**values)


def json_response(method: str, url: str, status: int, payload: dict) -> httpx.Response:
    return httpx.Response(status, json=payload, request=httpx.Request(method, url))


def asgi_client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://testserver")


def stub_httpx(monkeypatch, handler: Handler) -> None:
    # Both gateways reach httpx through the same module object
    monkeypatch.setattr(
        "services.budgetwise.app.gateways.card.httpx.AsyncClient",
        lambda *args, **kwargs: StubAsyncClient(handler),
    )


class FakeProviders:
    """In-process stand-in for the card processor and the M-Pesa API."""

    def __init__(self) -> None:
        self.intent_status = "succeeded"
        self.intents: dict[str, dict] = {}
        self.customers: list[dict] = []
        self.pushes: list[dict] = []
        self.query_result: dict = {"ResultCode": "0", "ResultDesc": "The service request is processed successfully."}
        self.push_status = 200
        self.fail_intent_lookup: int | None = None

    async def handler(self, method: str, url: str, **kwargs) -> httpx.Response:
        if "/v1/customers" in url:
            self.customers.append(kwargs["data"])
            return json_response(method, url, 200, {"id": f"cus_{len(self.customers)}"})
        if url.endswith("/v1/payment_intents") and method == "POST":
            intent_id = f"pi_{len(self.intents) + 1}"
            amount = int(kwargs["data"]["amount"])
            self.intents[intent_id] = {"id": intent_id, "amount": amount, "currency": kwargs["data"]["currency"]}
            return json_response(
                method,
                url,
                200,
                {"id": intent_id, "client_secret": f"{intent_id}_secret", "status": "requires_payment_method", "amount": amount},
            )
        if "/v1/payment_intents/" in url:
            if self.fail_intent_lookup:
                return json_response(method, url, self.fail_intent_lookup, {"error": {"type": "invalid_request_error"}})
            intent = self.intents[url.rsplit("/", 1)[1]]
            received = intent["amount"] if self.intent_status == "succeeded" else 0
            return json_response(method, url, 200, {**intent, "status": self.intent_status, "amount_received": received})
        if "/oauth/v1/generate" in url:
            return json_response(method, url, 200, {"access_token": "token-1", "expires_in": "3599"})
        if url.endswith("/mpesa/stkpush/v1/processrequest"):
            self.pushes.append(kwargs["json"])
            checkout_id = f"ws_CO_{len(self.pushes)}"
            return json_response(
                method,
                url,
                self.push_status,
                {
                    "MerchantRequestID": f"mr-{len(self.pushes)}",
                    "CheckoutRequestID": checkout_id,
                    "ResponseCode": "0",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )
        if url.endswith("/mpesa/stkpushquery/v1/query"):
            return json_response(method, url, 200, {**self.query_result, "CheckoutRequestID": kwargs["json"]["CheckoutRequestID"]})
        raise RuntimeError(f"Unhandled URL {url}")


def stk_callback(checkout_id: str, result_code: int = 0, amount=1000, phone=254712345678, receipt: str = "QWE123") -> dict:
    callback = {
        "MerchantRequestID": "mr-1",
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20261019120501},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": callback}}


async def register(client: AsyncClient, username: str = "alice", password: str = "s3cret!") -> dict[str, str]:
    """Register a user and return bearer headers for it."""
    response = await client.post(
        "/api/register",
        json={"username": username, "email": f"{username}@x.com", "password": password, "firstName": username.title()},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']['accessToken']}"}


async def sqlite_engine(path) -> AsyncEngine:
    """File-backed SQLite engine with every ledger table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine
