from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from loguru import logger

from .core.security import ACCESS_SCOPE, decode_access_token
from .ledger.store import LedgerStore
from .services.deposits import DepositOrchestrator
from .settings import BudgetwiseSettings


def get_settings(request: Request) -> BudgetwiseSettings:
    return request.app.state.settings


def get_ledger_store(request: Request) -> LedgerStore:
    return request.app.state.ledger


def get_deposit_orchestrator(request: Request) -> DepositOrchestrator:
    return request.app.state.deposits


def get_current_user_id(request: Request, settings: BudgetwiseSettings = Depends(get_settings)) -> int:
    """Extract and validate the current user's numeric ID from a JWT bearer token."""
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    try:
        decoded = decode_access_token(token, settings)
    except JWTError as exc:
        logger.warning("budgetwise.auth.jwt_decode_failed error={}", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    scope = decoded.get("scope")
    if scope != ACCESS_SCOPE:
        logger.info("budgetwise.auth.scope_rejected scope={}", scope)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token scope")

    sub = decoded.get("sub")
    if sub is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject")

    if isinstance(sub, str) and sub.isdigit():
        return int(sub)

    logger.info("budgetwise.auth.unsupported_subject_format subject={}", sub)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unsupported subject format (expected numeric)")
