"""
Bearer token checks.

Tokens come from the identity provider. This service only verifies them and
reads the opaque owner id from the ``sub`` claim; ``create_access_token`` mints
compatible tokens for tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from .config import settings

# Width of jobs.owner_id.
OWNER_ID_MAX_LENGTH = 64


def create_access_token(owner_id: str, expires_delta: timedelta | None = None, **claims: Any) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    payload = {
        **claims,
        "sub": owner_id,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, token_type: str = "access") -> dict[str, Any] | None:
    """Decoded claims, or None if the token is invalid, expired or of another type."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def owner_from_token(token: str) -> str | None:
    payload = verify_token(token)
    if payload is None:
        return None
    owner_id = payload.get("sub")
    if not isinstance(owner_id, str) or not owner_id.strip() or len(owner_id) > OWNER_ID_MAX_LENGTH:
        return None
    return owner_id
