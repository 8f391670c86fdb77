from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from shared import RequestIDMiddleware
from shared.errors import http_exception_handler, unhandled_exception_handler, validation_exception_handler

from .errors import BudgetwiseError, budgetwise_exception_handler
from .gateways import CardIntentGateway, MpesaGateway
from .ledger import InMemoryLedgerStore, LedgerStore
from .payments import InMemoryPendingPaymentStore, PendingPaymentStore, SqlPendingPaymentStore
from .routes import register_routes
from .services import DepositOrchestrator
from .settings import BudgetwiseSettings, budgetwise_settings
from .startup import init_service_startup, setup_instrumentation, setup_logging, shutdown_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_service_startup(app)
    yield
    await shutdown_service(app)


def _build_stores(settings: BudgetwiseSettings) -> tuple[LedgerStore, PendingPaymentStore]:
    if settings.storage_backend == "memory":
        return InMemoryLedgerStore(default_currency=settings.default_currency), InMemoryPendingPaymentStore()

    from .db.session import build_engine, build_session_factory
    from .ledger.sql import SqlLedgerStore

    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    ledger = SqlLedgerStore(session_factory, engine=engine, default_currency=settings.default_currency)
    return ledger, SqlPendingPaymentStore(session_factory)


def create_app(
    settings: BudgetwiseSettings | None = None,
    *,
    ledger: LedgerStore | None = None,
    pending_payments: PendingPaymentStore | None = None,
    card: CardIntentGateway | None = None,
    mpesa: MpesaGateway | None = None,
) -> FastAPI:
    settings = settings or budgetwise_settings()
    setup_logging(settings)
    app = FastAPI(title="Budgetwise", version="0.1.0", lifespan=lifespan)

    if ledger is None or pending_payments is None:
        default_ledger, default_payments = _build_stores(settings)
        ledger = ledger or default_ledger
        pending_payments = pending_payments or default_payments
    card = card or CardIntentGateway(settings)
    mpesa = mpesa or MpesaGateway(settings)

    app.state.settings = settings
    app.state.ledger = ledger
    app.state.deposits = DepositOrchestrator(ledger, pending_payments, card, mpesa, settings)

    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(BudgetwiseError, budgetwise_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    setup_instrumentation(app, settings)
    register_routes(app)
    return app
