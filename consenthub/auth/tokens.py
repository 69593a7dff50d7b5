"""Access token issuing and validation (HS256 JWT via PyJWT).

Tokens are short-lived, signed and audience-bound. Required claims:

    sub   - user id (UUID string)
    role  - admin | csr | customer
    aud   - Settings.jwt_audience
    exp   - expiry, always enforced
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import jwt
import structlog
from jwt.exceptions import InvalidTokenError

from consenthub.config import Settings
from consenthub.models.user import UserRole

log = structlog.get_logger(__name__)

_REQUIRED_CLAIMS = ("sub", "role", "exp")


class TokenValidationError(Exception):
    """Raised when a JWT cannot be validated."""


def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a JWT and return its claims.

    Raises TokenValidationError if the token is invalid, expired, or
    has an incorrect audience.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"require": list(_REQUIRED_CLAIMS), "verify_exp": True, "verify_aud": True},
        )
    except InvalidTokenError as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


def _assert_required_claims(claims: dict[str, Any]) -> None:
    """Raise TokenValidationError if required claims are missing or malformed."""
    missing = [c for c in _REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")
    try:
        uuid.UUID(str(claims["sub"]))
    except ValueError:
        raise TokenValidationError("'sub' claim is not a user id") from None
    if claims["role"] not in UserRole._value2member_map_:
        raise TokenValidationError(f"Unknown role claim: {claims['role']!r}")


def create_access_token(
    *,
    user_id: uuid.UUID | str,
    role: UserRole | str,
    settings: Settings,
    email: str = "",
    expires_in: int | None = None,
) -> str:
    """Issue a signed access token for user_id."""
    now = int(datetime.now(UTC).timestamp())
    ttl = expires_in if expires_in is not None else settings.access_token_ttl_seconds
    payload = {
        "sub": str(user_id),
        "role": str(role),
        "email": email,
        "aud": settings.jwt_audience,
        "iss": settings.jwt_issuer,
        "iat": now,
        "exp": now + ttl,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(
        payload,
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )
