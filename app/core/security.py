"""Password hashing, access tokens and the internal-service credential."""

import hmac
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Header carrying the shared secret on service-to-service calls
INTERNAL_SERVICE_HEADER = "X-Internal-Service"

TOKEN_TYPE = "access"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_account_token(
    account: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Issue the access token of an account.

    The claims are everything another service needs to authorize a request
    without a lookup: ``sub`` (the global user id), email, role, name and
    surname.

    Args:
        account: Account row (or any mapping with those keys)
        expires_delta: Lifetime; defaults to ``ACCESS_TOKEN_EXPIRE_MINUTES``

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": str(account["id"]),
        "email": account["email"],
        "role": account["role"],
        "name": account["name"],
        "surname": account["surname"],
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate an access token.

    Returns:
        The claims, or None when the token is malformed, expired, signed with
        another key or not an access token
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if claims.get("type") != TOKEN_TYPE:
        return None
    return claims


def is_internal_call(header_value: str | None) -> bool:
    """Check the shared internal-service credential."""
    if not header_value:
        return False
    return hmac.compare_digest(header_value, settings.internal_service_token)
