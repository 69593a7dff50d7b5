"""JWT validation middleware.

This Starlette middleware runs before any route handler. It:
1. Extracts the Bearer token from the Authorization header
2. Validates the token via consenthub.auth.tokens
3. Injects the validated claims into request.state

Routes that need authentication use the FastAPI dependencies in
dependencies.py (get_current_user). This middleware simply makes the
raw claims available.

Missing or invalid tokens never produce a 401 here; health and docs are
public, and the FastAPI dependencies enforce authentication per route.
"""

from __future__ import annotations

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from consenthub.auth.tokens import TokenValidationError, validate_token
from consenthub.config import Settings, get_settings

log = structlog.get_logger(__name__)

# Routes that are always public - skip token extraction entirely
_PUBLIC_PREFIXES = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)


class AuthMiddleware(BaseHTTPMiddleware):
    """Validate a Bearer JWT and inject its claims into request.state.

    On success: request.state.auth_claims is the claims dict.
    On failure or missing token: request.state.auth_claims is None.
    """

    def __init__(self, app: ASGIApp, *, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = self._settings or get_settings()
        request.state.auth_claims = None

        if any(request.url.path.startswith(prefix) for prefix in _PUBLIC_PREFIXES):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return await call_next(request)

        token = auth_header.removeprefix("Bearer ").strip()
        try:
            claims = validate_token(token, settings)
            request.state.auth_claims = claims
            log.debug("auth.token_validated", sub=claims.get("sub"), role=claims.get("role"))
        except TokenValidationError as exc:
            log.warning("auth.token_invalid", error=str(exc))

        return await call_next(request)
