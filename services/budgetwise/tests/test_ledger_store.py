from __future__ import annotations

import asyncio
import gc
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from services.budgetwise.app.db.session import build_session_factory
from services.budgetwise.app.errors import ConflictError, NotFoundError, ValidationError
from services.budgetwise.app.ledger import ExternalReference, PaymentProvider, TransactionType
from services.budgetwise.app.ledger.records import BudgetPeriod
from services.budgetwise.app.ledger.sql import SqlLedgerStore
from services.budgetwise.app.models import Transaction
from services.budgetwise.tests.support import sqlite_engine


async def _alice(ledger):
    user = await ledger.create_user("alice", "alice@x.com", "hashed", first_name="Alice")
    wallet = await ledger.get_wallet_by_user(user.id)
    return user, wallet


@pytest.mark.asyncio
async def test_new_user_gets_empty_wallet_and_income_is_credited(ledger):
    user, wallet = await _alice(ledger)
    assert wallet.balance == Decimal("0.00")
    assert wallet.currency == "USD"

    result = await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 500)
    assert result.replayed is False
    assert result.wallet.balance == Decimal("500.00")

    transactions = await ledger.list_transactions(user.id)
    assert len(transactions) == 1
    assert transactions[0].type == TransactionType.income
    assert transactions[0].amount == Decimal("500.00")


@pytest.mark.asyncio
async def test_expense_reduces_balance(ledger):
    user, wallet = await _alice(ledger)
    await ledger.post_transaction(user.id, wallet.id, TransactionType.income, "500")
    result = await ledger.post_transaction(user.id, wallet.id, TransactionType.expense, "120")
    assert result.wallet.balance == Decimal("380.00")
    assert (await ledger.get_wallet(wallet.id)).balance == Decimal("380.00")


@pytest.mark.asyncio
async def test_transfer_is_recorded_without_balance_effect(ledger):
    user, wallet = await _alice(ledger)
    await ledger.post_transaction(user.id, wallet.id, TransactionType.deposit, "40")
    result = await ledger.post_transaction(user.id, wallet.id, TransactionType.transfer, "15")
    assert result.wallet.balance == Decimal("40.00")
    assert len(await ledger.list_transactions(user.id)) == 2


@pytest.mark.asyncio
async def test_posted_transaction_is_listed_with_same_fields(ledger):
    user, wallet = await _alice(ledger)
    categories = await ledger.list_categories()
    food = next(c for c in categories if c.name == "Food & Drinks")

    result = await ledger.post_transaction(
        user.id,
        wallet.id,
        TransactionType.expense,
        Decimal("12.345"),
        category_id=food.id,
        description="Lunch",
    )
    listed = await ledger.list_transactions(user.id)
    assert [tx.id for tx in listed] == [result.transaction.id]
    fetched = listed[0]
    assert fetched.amount == Decimal("12.35")
    assert fetched.category_id == food.id
    assert fetched.description == "Lunch"
    assert fetched.wallet_id == wallet.id
    assert fetched.sequence == 1
    assert (await ledger.get_transaction(result.transaction.id)).amount == Decimal("12.35")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, "-0.01", "0.004", "abc"])
async def test_non_positive_or_invalid_amount_is_rejected(ledger, amount):
    user, wallet = await _alice(ledger)
    with pytest.raises(ValidationError):
        await ledger.post_transaction(user.id, wallet.id, TransactionType.income, amount)
    assert (await ledger.get_wallet(wallet.id)).balance == Decimal("0.00")
    assert await ledger.list_transactions(user.id) == []


@pytest.mark.asyncio
async def test_unknown_or_foreign_wallet_is_not_found(ledger):
    alice, _ = await _alice(ledger)
    bob = await ledger.create_user("bob", "bob@x.com", "hashed")
    bob_wallet = await ledger.get_wallet_by_user(bob.id)

    with pytest.raises(NotFoundError):
        await ledger.post_transaction(alice.id, 999, TransactionType.income, 10)
    with pytest.raises(NotFoundError):
        await ledger.post_transaction(alice.id, bob_wallet.id, TransactionType.income, 10)
    with pytest.raises(NotFoundError):
        await ledger.get_wallet_by_user(12345)
    assert (await ledger.get_wallet(bob_wallet.id)).balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_duplicate_username_or_email_conflicts(ledger):
    await _alice(ledger)
    with pytest.raises(ConflictError):
        await ledger.create_user("alice", "other@x.com", "hashed")
    with pytest.raises(ConflictError):
        await ledger.create_user("alice2", "alice@x.com", "hashed")


@pytest.mark.asyncio
async def test_repeated_external_reference_is_replayed(ledger):
    user, wallet = await _alice(ledger)
    reference = ExternalReference(PaymentProvider.card, "pi_123")

    first = await ledger.post_transaction(
        user.id, wallet.id, TransactionType.deposit, "25.00", external_reference=reference
    )
    second = await ledger.post_transaction(
        user.id, wallet.id, TransactionType.deposit, "25.00", external_reference=reference
    )

    assert first.replayed is False
    assert second.replayed is True
    assert second.transaction.id == first.transaction.id
    assert second.wallet.balance == Decimal("25.00")
    assert len(await ledger.list_transactions(user.id)) == 1
    found = await ledger.find_transaction_by_reference(reference)
    assert found is not None and found.external_reference == "pi_123"


@pytest.mark.asyncio
async def test_same_reference_id_from_different_providers_is_distinct(ledger):
    user, wallet = await _alice(ledger)
    await ledger.post_transaction(
        user.id, wallet.id, TransactionType.deposit, 10, external_reference=ExternalReference(PaymentProvider.card, "ref-1")
    )
    result = await ledger.post_transaction(
        user.id, wallet.id, TransactionType.deposit, 10, external_reference=ExternalReference(PaymentProvider.mpesa, "ref-1")
    )
    assert result.replayed is False
    assert result.wallet.balance == Decimal("20.00")


@pytest.mark.asyncio
async def test_concurrent_postings_keep_balance_equal_to_ledger_sum(ledger):
    user, wallet = await _alice(ledger)
    await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 1000)

    kinds = [TransactionType.income, TransactionType.expense, TransactionType.deposit, TransactionType.transfer]
    await asyncio.gather(
        *(
            ledger.post_transaction(user.id, wallet.id, kinds[i % len(kinds)], Decimal("3.33"))
            for i in range(20)
        )
    )

    reconciliation = await ledger.reconcile_wallet(wallet.id)
    assert reconciliation.consistent
    # 1000 + 5 * (income + deposit - expense) * 3.33
    assert reconciliation.balance == Decimal("1016.65")
    sequences = sorted(tx.sequence for tx in await ledger.list_transactions(user.id))
    assert sequences == list(range(1, 22))


@pytest.mark.asyncio
async def test_concurrent_confirmations_post_once(ledger):
    user, wallet = await _alice(ledger)
    reference = ExternalReference(PaymentProvider.mpesa, "ws_CO_1")
    results = await asyncio.gather(
        *(
            ledger.post_transaction(user.id, wallet.id, TransactionType.deposit, 1000, external_reference=reference)
            for _ in range(5)
        )
    )
    assert sum(1 for r in results if not r.replayed) == 1
    assert (await ledger.get_wallet(wallet.id)).balance == Decimal("1000.00")


@pytest.mark.asyncio
async def test_transactions_are_listed_newest_date_first(ledger):
    user, wallet = await _alice(ledger)
    now = datetime.now(tz=timezone.utc)
    older = await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 1, date=now - timedelta(days=2))
    newest = await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 2, date=now)
    same_day_a = await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 3, date=now - timedelta(days=1))
    same_day_b = await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 4, date=now - timedelta(days=1))

    listed = [tx.id for tx in await ledger.list_transactions(user.id)]
    assert listed == [newest.transaction.id, same_day_b.transaction.id, same_day_a.transaction.id, older.transaction.id]


@pytest.mark.asyncio
async def test_unknown_category_is_accepted(ledger):
    user, wallet = await _alice(ledger)
    result = await ledger.post_transaction(user.id, wallet.id, TransactionType.expense, 5, category_id=9999)
    assert result.transaction.category_id == 9999


@pytest.mark.asyncio
async def test_default_categories_are_seeded_once(ledger):
    names = {c.name for c in await ledger.list_categories()}
    assert {"Food & Drinks", "Shopping", "Transportation", "Bills & Utilities", "Entertainment", "Health", "Salary"} <= names
    assert await ledger.seed_default_categories() == 0
    assert len(await ledger.list_categories()) == 7


@pytest.mark.asyncio
async def test_budgets_belong_to_their_user(ledger):
    user, _ = await _alice(ledger)
    bob = await ledger.create_user("bob", "bob@x.com", "hashed")
    salary = next(c for c in await ledger.list_categories() if c.name == "Salary")

    budget = await ledger.create_budget(user.id, "250.5", category_id=salary.id, period=BudgetPeriod.weekly)
    assert budget.amount == Decimal("250.50")
    assert budget.period == BudgetPeriod.weekly
    assert [b.id for b in await ledger.list_budgets(user.id)] == [budget.id]
    assert await ledger.list_budgets(bob.id) == []
    assert (await ledger.get_budget(budget.id)).category_id == salary.id


@pytest.mark.asyncio
async def test_external_customer_id_is_stored(ledger):
    user, _ = await _alice(ledger)
    updated = await ledger.set_external_customer_id(user.id, "cus_123")
    assert updated.external_customer_id == "cus_123"
    assert (await ledger.get_user(user.id)).external_customer_id == "cus_123"
    assert (await ledger.get_user_by_username("alice")).id == user.id
    assert (await ledger.get_user_by_email("alice@x.com")).id == user.id


@pytest.mark.asyncio
async def test_database_rejects_non_positive_transaction_rows(tmp_path):
    engine = await sqlite_engine(tmp_path / "constraints.db")
    session_factory = build_session_factory(engine)
    store = SqlLedgerStore(session_factory, engine=engine)
    user, wallet = await _alice(store)

    async with session_factory() as session:
        session.add(
            Transaction(
                user_id=user.id,
                wallet_id=wallet.id,
                type=TransactionType.income.value,
                amount=Decimal("0.00"),
                date=datetime.now(tz=timezone.utc),
                sequence=99,
            )
        )
        with pytest.raises(IntegrityError):
            await session.commit()
    await store.close()


@pytest.mark.asyncio
async def test_wallet_locks_are_released_after_postings(ledger):
    user, wallet = await _alice(ledger)
    await ledger.post_transaction(user.id, wallet.id, TransactionType.income, 10)
    for missing_wallet_id in (999, 1000, 1001):
        with pytest.raises(NotFoundError):
            await ledger.post_transaction(user.id, missing_wallet_id, TransactionType.income, 10)

    gc.collect()
    assert len(ledger._wallet_locks) == 0
