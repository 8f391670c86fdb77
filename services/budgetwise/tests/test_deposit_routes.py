from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from services.budgetwise.app.main import create_app
from services.budgetwise.tests.support import (
    CALLBACK_TOKEN,
    FakeProviders,
    asgi_client,
    make_settings,
    register,
    stk_callback,
    stub_httpx,
)

ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@pytest.fixture()
def providers(monkeypatch) -> FakeProviders:
    fake = FakeProviders()
    stub_httpx(monkeypatch, fake.handler)
    return fake


@pytest_asyncio.fixture()
async def client(providers):
    app = create_app(make_settings())
    async with asgi_client(app) as client:
        yield client


async def _balance(client, headers) -> Decimal:
    response = await client.get("/api/wallet", headers=headers)
    return Decimal(response.json()["balance"])


@pytest.mark.asyncio
async def test_card_deposit_round_trip(client, providers):
    headers = await register(client)

    intent = await client.post("/api/create-payment-intent", json={"amount": 25}, headers=headers)
    assert intent.status_code == 200
    intent_id = intent.json()["paymentIntentId"]
    assert intent.json()["clientSecret"] == f"{intent_id}_secret"

    deposit = await client.post("/api/deposit", json={"amount": 25, "paymentIntentId": intent_id}, headers=headers)
    assert deposit.status_code == 200
    body = deposit.json()
    assert body["message"] == "Deposit successful"
    assert body["transaction"]["type"] == "deposit"
    assert Decimal(body["wallet"]["balance"]) == Decimal("25.00")

    replay = await client.post("/api/deposit", json={"amount": 25, "paymentIntentId": intent_id}, headers=headers)
    assert replay.status_code == 200
    assert replay.json()["transaction"]["id"] == body["transaction"]["id"]
    assert await _balance(client, headers) == Decimal("25.00")


@pytest.mark.asyncio
async def test_incomplete_card_payment_is_rejected(client, providers):
    headers = await register(client)
    intent = await client.post("/api/create-payment-intent", json={"amount": 25}, headers=headers)
    providers.intent_status = "requires_payment_method"

    response = await client.post(
        "/api/deposit", json={"amount": 25, "paymentIntentId": intent.json()["paymentIntentId"]}, headers=headers
    )

    assert response.status_code == 400
    assert "requires_payment_method" in response.json()["error"]
    assert await _balance(client, headers) == Decimal("0.00")
    transactions = await client.get("/api/transactions", headers=headers)
    assert transactions.json() == []


@pytest.mark.asyncio
async def test_deposit_requires_payment_reference(client):
    headers = await register(client)
    response = await client.post("/api/deposit", json={"amount": 25}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Payment confirmation required"


@pytest.mark.asyncio
async def test_unconfigured_card_processor_is_a_server_error(providers):
    app = create_app(make_settings(stripe_secret_key=None))
    async with asgi_client(app) as client:
        headers = await register(client)
        response = await client.post("/api/create-payment-intent", json={"amount": 25}, headers=headers)
    assert response.status_code == 500
    assert response.json()["error"] == "Card payments are not configured"


@pytest.mark.asyncio
async def test_stk_push_and_callback_credit_wallet(client, providers):
    headers = await register(client)

    push = await client.post("/api/mpesa/stk-push", json={"phoneNumber": "0712345678", "amount": 1000}, headers=headers)
    assert push.status_code == 200
    checkout_id = push.json()["checkoutRequestId"]
    assert push.json()["merchantRequestId"]
    assert providers.pushes[0]["PhoneNumber"] == "254712345678"

    callback = await client.post(f"/api/mpesa/callback?token={CALLBACK_TOKEN}", json=stk_callback(checkout_id))
    assert callback.status_code == 200
    assert callback.json() == ACK

    duplicate = await client.post(f"/api/mpesa/callback?token={CALLBACK_TOKEN}", json=stk_callback(checkout_id))
    assert duplicate.json() == ACK

    assert await _balance(client, headers) == Decimal("1000.00")
    transactions = (await client.get("/api/transactions", headers=headers)).json()
    assert len(transactions) == 1
    assert transactions[0]["type"] == "deposit"
    assert transactions[0]["externalReference"] == checkout_id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url,payload",
    [
        ("/api/mpesa/callback", stk_callback("ws_CO_1")),
        ("/api/mpesa/callback?token=forged", stk_callback("ws_CO_1")),
        (f"/api/mpesa/callback?token={CALLBACK_TOKEN}", {"unexpected": True}),
        (f"/api/mpesa/callback?token={CALLBACK_TOKEN}", stk_callback("ws_CO_unknown")),
    ],
)
async def test_callback_is_always_acknowledged(client, url, payload):
    headers = await register(client)
    await client.post("/api/mpesa/stk-push", json={"phoneNumber": "0712345678", "amount": 1000}, headers=headers)
    response = await client.post(url, json=payload)

    assert response.status_code == 200
    assert response.json() == ACK
    assert await _balance(client, headers) == Decimal("0.00")


@pytest.mark.asyncio
async def test_callback_with_unparseable_body_is_acknowledged(client):
    response = await client.post(
        f"/api/mpesa/callback?token={CALLBACK_TOKEN}",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == ACK


@pytest.mark.asyncio
async def test_transaction_status_is_proxied_and_posts_success(client):
    headers = await register(client)
    push = await client.post("/api/mpesa/stk-push", json={"phoneNumber": "0712345678", "amount": 1000}, headers=headers)
    checkout_id = push.json()["checkoutRequestId"]

    status = await client.get(f"/api/mpesa/transaction/{checkout_id}", headers=headers)

    assert status.status_code == 200
    assert status.json()["ResultCode"] == "0"
    assert await _balance(client, headers) == Decimal("1000.00")


@pytest.mark.asyncio
async def test_invalid_phone_number_is_rejected(client, providers):
    headers = await register(client)
    response = await client.post("/api/mpesa/stk-push", json={"phoneNumber": "12345678901", "amount": 10}, headers=headers)
    assert response.status_code == 400
    assert providers.pushes == []


@pytest.mark.asyncio
async def test_unverified_confirmation_credits_wallet(client):
    headers = await register(client)
    response = await client.post(
        "/api/mpesa/confirm-deposit", json={"phoneNumber": "0712345678", "amount": 300}, headers=headers
    )
    assert response.status_code == 200
    assert "unverified" in response.json()["transaction"]["description"]
    assert await _balance(client, headers) == Decimal("300.00")


@pytest.mark.asyncio
async def test_unverified_confirmation_is_forbidden_in_production(providers):
    app = create_app(make_settings(environment="production"))
    async with asgi_client(app) as client:
        headers = await register(client)
        response = await client.post(
            "/api/mpesa/confirm-deposit", json={"phoneNumber": "0712345678", "amount": 300}, headers=headers
        )
        assert response.status_code == 403
        assert await _balance(client, headers) == Decimal("0.00")
