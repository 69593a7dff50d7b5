"""Security middleware.

Key protections:
- Security headers on every response
- Request size limiting, checked against Content-Length
"""

from __future__ import annotations

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

log = structlog.get_logger(__name__)

# Request body size limit (1 MB default; the API only takes small JSON bodies)
DEFAULT_MAX_REQUEST_SIZE = 1024 * 1024


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses.

    - X-Content-Type-Options: prevents MIME type sniffing
    - X-Frame-Options / CSP frame-ancestors: prevents clickjacking
    - Strict-Transport-Security: enforces HTTPS in production
    - Cache-Control: API responses carry personal data and must not be cached
    """

    def __init__(self, app: ASGIApp, *, is_production: bool = False) -> None:
        super().__init__(app)
        self._is_production = is_production

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if self._is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared body size exceeds max_size (413)."""

    def __init__(self, app: ASGIApp, *, max_size: int = DEFAULT_MAX_REQUEST_SIZE) -> None:
        super().__init__(app)
        self._max_size = max_size

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self._max_size:
            log.warning(
                "security.request_too_large",
                content_length=content_length,
                max_size=self._max_size,
                path=request.url.path,
                method=request.method,
            )
            return JSONResponse(
                status_code=413,
                content={
                    "success": False,
                    "error": "payload_too_large",
                    "message": f"Request body too large. Maximum allowed: {self._max_size} bytes",
                },
            )
        return await call_next(request)
