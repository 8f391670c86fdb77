from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from ..core.security import create_access_token, hash_password, verify_password
from ..dependencies import get_current_user_id, get_ledger_store, get_settings
from ..ledger.store import LedgerStore
from ..schemas import LoginRequest, RegisterRequest, RegisterResponse, Token, UserResponse
from ..settings import BudgetwiseSettings
from .serializers import user_response

router = APIRouter()


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: RegisterRequest,
    ledger: LedgerStore = Depends(get_ledger_store),
    settings: BudgetwiseSettings = Depends(get_settings),
) -> RegisterResponse:
    user = await ledger.create_user(
        payload.username,
        payload.email,
        hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    access_token, expires_in = create_access_token(str(user.id), settings)
    logger.info("budgetwise.auth.registered user_id={}", user.id)
    return RegisterResponse(user=user_response(user), token=Token(access_token=access_token, expires_in=expires_in))


@router.post("/login", response_model=Token)
async def login(
    payload: LoginRequest,
    ledger: LedgerStore = Depends(get_ledger_store),
    settings: BudgetwiseSettings = Depends(get_settings),
) -> Token:
    user = await ledger.get_user_by_username(payload.username)
    # Same answer for unknown user and wrong password
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    access_token, expires_in = create_access_token(str(user.id), settings)
    return Token(access_token=access_token, expires_in=expires_in)


@router.get("/me", response_model=UserResponse)
async def me(
    user_id: int = Depends(get_current_user_id),
    ledger: LedgerStore = Depends(get_ledger_store),
) -> UserResponse:
    user = await ledger.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_response(user)
