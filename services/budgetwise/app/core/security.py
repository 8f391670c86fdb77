from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt
from passlib.context import CryptContext

from ..settings import BudgetwiseSettings

ACCESS_SCOPE = "access"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def create_access_token(subject: str, settings: BudgetwiseSettings) -> tuple[str, int]:
    """Signed HS256 access token for ``subject`` and its lifetime in seconds."""
    now = datetime.now(tz=timezone.utc)
    expires_delta = timedelta(minutes=settings.access_token_expires_minutes)
    payload: dict[str, Any] = {
        "sub": subject,
        "scope": ACCESS_SCOPE,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "typ": "access",
    }
    token = jwt.encode(payload, settings.secret_key.get_secret_value(), algorithm="HS256")
    return token, int(expires_delta.total_seconds())


def decode_access_token(token: str, settings: BudgetwiseSettings) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.secret_key.get_secret_value(),
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)
