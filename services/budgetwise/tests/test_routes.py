from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio

from services.budgetwise.app.main import create_app
from services.budgetwise.tests.support import asgi_client, make_settings, register


@pytest_asyncio.fixture()
async def client():
    app = create_app(make_settings())
    async with asgi_client(app) as client:
        yield client


@pytest.mark.asyncio
async def test_register_login_and_me(client):
    response = await client.post(
        "/api/register",
        json={"username": "alice", "email": "alice@x.com", "password": "s3cret!", "firstName": "Alice", "lastName": "Doe"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["user"]["username"] == "alice"
    assert body["user"]["firstName"] == "Alice"
    assert body["token"]["tokenType"] == "bearer"

    login = await client.post("/api/login", json={"username": "alice", "password": "s3cret!"})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['accessToken']}"}

    me = await client.get("/api/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "alice@x.com"
    assert me.json()["lastName"] == "Doe"


@pytest.mark.asyncio
async def test_duplicate_registration_conflicts(client):
    await register(client)
    response = await client.post(
        "/api/register", json={"username": "alice", "email": "another@x.com", "password": "s3cret!"}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "Username already exists"


@pytest.mark.asyncio
async def test_registration_validates_input(client):
    response = await client.post("/api/register", json={"username": "al", "email": "not-an-email", "password": "123"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert "username" in body["detail"]


@pytest.mark.asyncio
async def test_wrong_password_is_unauthorized(client):
    await register(client)
    response = await client.post("/api/login", json={"username": "alice", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_protected_routes_require_bearer_token(client):
    response = await client.get("/api/wallet")
    assert response.status_code == 401
    assert response.json()["error"] == "Missing bearer token"
    assert response.json()["request_id"]

    invalid = await client.get("/api/wallet", headers={"Authorization": "Bearer garbage"})
    assert invalid.status_code == 401


@pytest.mark.asyncio
async def test_wallet_starts_empty_and_tracks_postings(client):
    headers = await register(client)

    wallet = await client.get("/api/wallet", headers=headers)
    assert wallet.status_code == 200
    assert Decimal(wallet.json()["balance"]) == Decimal("0.00")
    assert wallet.json()["currency"] == "USD"

    income = await client.post("/api/transactions", json={"type": "income", "amount": 500}, headers=headers)
    assert income.status_code == 201
    assert Decimal(income.json()["wallet"]["balance"]) == Decimal("500.00")

    expense = await client.post(
        "/api/transactions",
        json={"type": "expense", "amount": "120", "categoryId": 1, "description": "Groceries"},
        headers=headers,
    )
    assert expense.status_code == 201
    body = expense.json()
    assert Decimal(body["wallet"]["balance"]) == Decimal("380.00")
    assert body["transaction"]["categoryId"] == 1
    assert body["transaction"]["category"]["name"] == "Food & Drinks"

    listed = await client.get("/api/transactions", headers=headers)
    assert listed.status_code == 200
    assert len(listed.json()) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"type": "income", "amount": 0},
        {"type": "income", "amount": -10},
        {"type": "refund", "amount": 10},
        {"type": "income"},
    ],
)
async def test_invalid_transactions_are_rejected(client, payload):
    headers = await register(client)
    response = await client.post("/api/transactions", json=payload, headers=headers)
    assert response.status_code == 400
    wallet = await client.get("/api/wallet", headers=headers)
    assert Decimal(wallet.json()["balance"]) == Decimal("0.00")


@pytest.mark.asyncio
async def test_categories_and_budgets(client):
    headers = await register(client)

    categories = await client.get("/api/categories")
    assert categories.status_code == 200
    assert len(categories.json()) == 7
    assert categories.json()[0]["isDefault"] is True

    created = await client.post(
        "/api/budgets", json={"amount": "300", "categoryId": 2, "period": "weekly"}, headers=headers
    )
    assert created.status_code == 201
    assert created.json()["category"]["name"] == "Shopping"

    budgets = await client.get("/api/budgets", headers=headers)
    assert [b["id"] for b in budgets.json()] == [created.json()["id"]]
    assert Decimal(budgets.json()[0]["amount"]) == Decimal("300.00")

    unknown = await client.post("/api/budgets", json={"amount": "10", "categoryId": 999}, headers=headers)
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_budget_dates_with_and_without_offset_are_compared(client):
    headers = await register(client)

    created = await client.post(
        "/api/budgets",
        json={"amount": "10", "startDate": "2026-01-01T00:00:00Z", "endDate": "2026-02-01T00:00:00"},
        headers=headers,
    )
    assert created.status_code == 201

    reversed_range = await client.post(
        "/api/budgets",
        json={"amount": "10", "startDate": "2026-02-01T00:00:00", "endDate": "2026-01-01T00:00:00Z"},
        headers=headers,
    )
    assert reversed_range.status_code == 400
    assert reversed_range.json()["error"] == "Budget end date must not be before its start date"


@pytest.mark.asyncio
async def test_health_metrics_and_request_id(client):
    health = await client.get("/api/healthz", headers={"x-request-id": "req-123"})
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.headers["x-request-id"] == "req-123"

    metrics = await client.get("/api/metrics")
    assert metrics.status_code == 200
    assert "budgetwise_ledger_posting" in metrics.text
