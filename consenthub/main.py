"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Initialize database engine and session factory
4. Start the background worker pool (DSAR automated processing)
5. Register middleware (auth, request id, security, CORS)
6. Include all routers

Shutdown order:
1. Drain and stop the worker pool
2. Close DB connection pool
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from consenthub import __version__
from consenthub.api.router import api_router, api_v1_router, public_router
from consenthub.auth.middleware import AuthMiddleware
from consenthub.compliance.processing import DSARProcessor
from consenthub.config import Settings, get_settings
from consenthub.core.errors import ConsentHubError
from consenthub.core.security import RequestSizeLimitMiddleware, SecurityHeadersMiddleware
from consenthub.database import close_db, get_session_factory, init_db
from consenthub.infra.background_worker import BackgroundWorkerPool, Task, TaskType
from consenthub.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)

_HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "auth_failure",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "invalid_state",
    413: "payload_too_large",
    422: "validation_error",
    503: "unavailable",
}


def build_worker_pool(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    processor: DSARProcessor | None = None,
) -> BackgroundWorkerPool:
    """Worker pool with the DSAR automated-processing handler registered."""
    processor = processor or DSARProcessor(session_factory, settings)

    async def _handle_auto_process(task: Task) -> str | None:
        return await processor.process(uuid.UUID(task.payload["dsar_id"]))

    pool = BackgroundWorkerPool(max_workers=settings.background_worker_concurrency)
    pool.register_handler(TaskType.DSAR_AUTO_PROCESS, _handle_auto_process)
    return pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        db_url=settings.database_url.split("@")[-1],
    )

    init_db(settings)

    worker_pool = build_worker_pool(settings, get_session_factory())
    await worker_pool.start()
    # Store worker pool in app state for access in endpoints
    app.state.worker_pool = worker_pool

    log.info("app.ready")
    yield

    await worker_pool.shutdown(drain=True)
    await close_db()
    log.info("app.shutdown")


def _error_body(error: str, message: str) -> dict:
    return {"success": False, "error": error, "message": message}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConsentHubError)
    async def consenthub_error_handler(request: Request, exc: ConsentHubError) -> JSONResponse:
        log.info(
            "app.request_failed",
            path=request.url.path,
            method=request.method,
            error=exc.error_code,
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.error_code, exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(
                _HTTP_ERROR_CODES.get(exc.status_code, "error"),
                str(exc.detail),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = [
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=_error_body("validation_error", "; ".join(problems) or "Invalid request"),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("internal_error", "Internal server error"),
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()

    app = FastAPI(
        title="ConsentHub",
        description=(
            "Consent records, privacy notices, communication preferences and "
            "data subject access requests, with TMF632/TMF669/TMF641 interfaces."
        ),
        version=__version__,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ------------------------------------------------------------------ #
    # Middleware (added in reverse order - last added = first executed)
    # ------------------------------------------------------------------ #

    # CORS: any origin in dev, configured origins elsewhere
    cors_origins = ["*"] if settings.is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Security headers (CSP, HSTS in prod)
    app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_prod)

    # Request size limit (1 MB; bodies are small JSON documents)
    app.add_middleware(RequestSizeLimitMiddleware)

    # Unique request ID for log correlation and audit trails
    app.add_middleware(RequestIdMiddleware)

    # JWT extraction and validation
    app.add_middleware(AuthMiddleware, settings=settings)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(public_router)
    app.include_router(api_v1_router)
    app.include_router(api_router)

    # ------------------------------------------------------------------ #
    # Global exception handlers
    # ------------------------------------------------------------------ #
    register_exception_handlers(app)

    return app


# Module-level app instance for uvicorn
app = create_app()
