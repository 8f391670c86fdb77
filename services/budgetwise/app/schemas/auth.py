from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field

from .base import CamelModel


class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)


class LoginRequest(CamelModel):
    username: str
    password: str


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserResponse(CamelModel):
    id: int
    username: str
    email: EmailStr
    first_name: str | None
    last_name: str | None
    created_at: datetime


class RegisterResponse(CamelModel):
    user: UserResponse
    token: Token
