from fastapi import APIRouter, FastAPI

from . import auth, catalog, deposits, mpesa, system, wallet


def register_routes(app: FastAPI) -> None:
    router = APIRouter(prefix="/api")
    router.include_router(auth.router, tags=["auth"])
    router.include_router(wallet.router, tags=["wallet"])
    router.include_router(catalog.router, tags=["catalog"])
    router.include_router(deposits.router, tags=["deposits"])
    router.include_router(mpesa.router, prefix="/mpesa", tags=["mpesa"])
    router.include_router(system.router, tags=["system"])
    app.include_router(router)
