from __future__ import annotations

import pytest
import pytest_asyncio

from services.budgetwise.app.db.session import build_session_factory
from services.budgetwise.app.ledger import InMemoryLedgerStore
from services.budgetwise.app.ledger.sql import SqlLedgerStore
from services.budgetwise.app.payments import InMemoryPendingPaymentStore, SqlPendingPaymentStore
from services.budgetwise.app.settings import BudgetwiseSettings
from services.budgetwise.tests.support import make_settings, sqlite_engine


@pytest.fixture()
def settings() -> BudgetwiseSettings:
    return make_settings()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def ledger(request, tmp_path):
    if request.param == "memory":
        yield InMemoryLedgerStore()
        return

    engine = await sqlite_engine(tmp_path / "ledger.db")
    store = SqlLedgerStore(build_session_factory(engine), engine=engine)
    await store.seed_default_categories()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def pending_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryPendingPaymentStore()
        return

    engine = await sqlite_engine(tmp_path / "payments.db")
    yield SqlPendingPaymentStore(build_session_factory(engine))
    await engine.dispose()
