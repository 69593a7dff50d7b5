"""FastAPI dependencies for authentication and authorization.

These dependencies are injected into route handlers via Depends().

Key dependencies:
- get_current_user: Resolve JWT claims -> User ORM object

Users are never provisioned from a token: the `sub` claim must name an
existing, active user or the request is rejected with 401.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.auth.tokens import TokenValidationError, validate_token
from consenthub.config import Settings, get_settings
from consenthub.core.policy import Actor
from consenthub.database import get_db_session
from consenthub.models.user import User, UserRole
from consenthub.telemetry.logging import bind_user_context

log = structlog.get_logger(__name__)


class AuthenticatedUser:
    """Lightweight container passed to route handlers.

    Combines the ORM User object with the raw JWT claims so that routes
    can access both the database record and any custom claims without
    needing extra queries.
    """

    def __init__(self, user: User, claims: dict) -> None:
        self.user = user
        self.claims = claims

    @property
    def id(self) -> uuid.UUID:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def email(self) -> str:
        return self.user.email

    @property
    def actor(self) -> Actor:
        return Actor(id=self.user.id, role=self.user.role)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_and_validate_token(request: Request, settings: Settings) -> dict:
    """Extract Bearer token and validate it.

    Returns validated claims dict. Raises HTTP 401 on any failure.
    """
    # Check if middleware already validated the token
    claims = getattr(request.state, "auth_claims", None)
    if claims is not None:
        return claims

    # Fallback: validate here (for apps mounted without the middleware)
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise _unauthorized("Missing or invalid Authorization header")

    token = auth_header.removeprefix("Bearer ").strip()
    try:
        return validate_token(token, settings)
    except TokenValidationError as exc:
        raise _unauthorized("Invalid or expired authentication token") from exc


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Resolve authentication to a User ORM object.

    Raises HTTP 401 if the token is missing or invalid, or if its subject
    is unknown or deactivated.
    """
    claims = _extract_and_validate_token(request, settings)

    try:
        user_id = uuid.UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise _unauthorized("Invalid subject in token") from None

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        log.warning("auth.unknown_or_inactive_user", sub=str(user_id))
        raise _unauthorized("Unknown or inactive user")

    bind_user_context(user.id, role=user.role)
    return AuthenticatedUser(user=user, claims=claims)

