"""
Credential check and bearer tokens.

Tokens are HS256 JWTs carrying the user id (`sub`) and the role at issue
time. The role claim is informational only: every request re-reads the role
from the identity store, so a demotion takes effect before the token expires.
"""

import os
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext

from src.domain.entities import RoleType
from src.domain.errors import AuthenticationError

SECRET_KEY = os.environ.get("MANGA_SECRET_KEY", "dev-secret-unsafe")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Pass/fail; a malformed or foreign hash counts as a failure."""
    try:
        result: bool = pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False
    return result


def get_password_hash(password: str) -> str:
    result: str = pwd_context.hash(password)
    return result


def issue_token(
    user_id: UUID,
    role: RoleType = "user",
    ttl_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES,
    now_utc: datetime | None = None,
) -> str:
    issued_at = now_utc if now_utc is not None else datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=ttl_minutes),
    }
    token: str = jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)
    return token


def token_subject(token: str) -> UUID:
    """
    User id from a bearer token.

    Raises AuthenticationError for a bad signature, an expired token or a
    payload without a usable `sub`.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid token") from None

    subject = payload.get("sub")
    if not isinstance(subject, str):
        raise AuthenticationError("Invalid token payload")
    try:
        return UUID(subject)
    except ValueError:
        raise AuthenticationError("Invalid token payload") from None
