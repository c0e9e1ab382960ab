"""FastAPI application entry point."""

import asyncio
import logging
import uuid as _uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from structlog.contextvars import bound_contextvars

from billpay.api.v1.router import api_router
from billpay.config import get_settings
from billpay.dependencies import (
    create_catalog,
    create_engine,
    create_gateway,
    create_locks,
    create_redis,
    create_session_factory,
)
from billpay.exceptions import (
    BillpayError,
    GatewayNotConfigured,
    GatewayRejected,
    GatewayUnreachable,
    InvalidTransition,
    NoGatewayReference,
    NotFound,
    TooLarge,
    TransactionBusy,
    UnsupportedMediaType,
    ValidationError,
)
from billpay.rate_limit import limiter
from billpay.storage.proof_storage import URL_PREFIX, LocalProofStorage
from billpay.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager; owns all shared resources."""
    settings = get_settings()
    # Startup
    logger.info("Starting billpay storefront...")
    logger.info("Environment: %s", settings.environment)
    logger.info("Debug mode: %s", settings.debug)

    try:
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
    except Exception:
        logger.exception("Failed to initialise database engine")
        raise

    try:
        app.state.redis = create_redis(settings)
    except Exception:
        logger.exception("Failed to initialise Redis client")
        await engine.dispose()
        raise

    app.state.gateway = create_gateway(settings)
    app.state.locks = create_locks(settings, app.state.redis)
    app.state.catalog = create_catalog(settings, app.state.gateway, app.state.redis)
    app.state.proof_storage.ensure_dir()

    yield

    # Shutdown: the engine is disposed even if closing a client fails
    logger.info("Shutting down billpay storefront...")
    try:
        if app.state.gateway is not None:
            await app.state.gateway.aclose()
        await app.state.redis.aclose()
    except Exception:
        logger.exception("Error closing gateway/Redis connections")
    finally:
        await engine.dispose()
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# Request ID middleware (pure ASGI)
# ---------------------------------------------------------------------------


class RequestIDMiddleware:
    """Tag every request and its log lines with an ``X-Request-ID``."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(_uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-request-id", request_id.encode()),
                ]
            await send(message)

        with bound_contextvars(request_id=request_id):
            await self.app(scope, receive, send_with_request_id)


# ---------------------------------------------------------------------------
# Security headers middleware (pure ASGI)
# ---------------------------------------------------------------------------

_SECURITY_HEADERS: list[tuple[bytes, bytes]] = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"strict-origin-when-cross-origin"),
    (b"permissions-policy", b"geolocation=(), camera=(), microphone=()"),
]

# API responses never embed content; uploaded proofs are rendered as images
_API_CSP = (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'")


class SecurityHeadersMiddleware:
    """Add standard security headers to every response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        is_api = scope.get("path", "").startswith("/api/")

        async def send_with_security_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                response_headers = [*message.get("headers", []), *_SECURITY_HEADERS]
                if is_api:
                    response_headers.append(_API_CSP)
                if get_settings().is_production:
                    response_headers.append(
                        (b"strict-transport-security", b"max-age=63072000; includeSubDomains")
                    )
                message["headers"] = response_headers
            await send(message)

        await self.app(scope, receive, send_with_security_headers)


# ---------------------------------------------------------------------------
# Exception handlers: domain errors to HTTP status codes
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[BillpayError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    NoGatewayReference: status.HTTP_409_CONFLICT,
    TransactionBusy: status.HTTP_409_CONFLICT,
    TooLarge: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    UnsupportedMediaType: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    GatewayRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    GatewayUnreachable: status.HTTP_502_BAD_GATEWAY,
    GatewayNotConfigured: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_status(exc: BillpayError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BillpayError)
    async def _domain_exception_handler(request: Request, exc: BillpayError):
        status_code = _error_status(exc)
        content: dict = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, ValidationError) and exc.errors:
            content["errors"] = jsonable_encoder(exc.errors)
        logger.info(
            "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
        )
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        # Cancellation must propagate for graceful shutdown
        if isinstance(exc, asyncio.CancelledError):
            raise
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_application() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    # Setup logging first
    setup_logging(settings.log_level, settings.log_format, settings.environment)

    app = FastAPI(
        title="Billpay Storefront API",
        description="Prepaid and postpaid purchases settled through the Indotel gateway.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]  # slowapi typing mismatch
    app.add_middleware(SlowAPIMiddleware)

    # Request ID and security headers (outermost = runs first)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-Operator"],
    )

    _register_exception_handlers(app)

    app.include_router(api_router, prefix="/api/v1")

    # Proof storage is created here rather than in lifespan: the static
    # mount needs the directory at import time
    proof_storage = LocalProofStorage(settings.upload_dir)
    app.state.proof_storage = proof_storage
    app.mount(
        URL_PREFIX,
        StaticFiles(directory=proof_storage.upload_dir, check_dir=False),
        name="uploads",
    )

    # ------------------------------------------------------------------
    # Health check endpoints (no prefix)
    # ------------------------------------------------------------------

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Liveness check: is the process running?"""
        return {
            "status": "healthy",
            "service": "billpay-storefront",
            "version": "1.0.0",
        }

    @app.get("/ready", tags=["Health"])
    async def readiness_check(request: Request):
        """Readiness check: can the service handle traffic?"""
        checks: dict[str, str] = {}

        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            logger.warning("Readiness: database unavailable", exc_info=True)
            checks["database"] = "unavailable"

        try:
            await request.app.state.redis.ping()
            checks["redis"] = "ok"
        except Exception:
            logger.warning("Readiness: redis unavailable", exc_info=True)
            checks["redis"] = "unavailable"

        checks["gateway"] = "configured" if request.app.state.gateway else "not_configured"

        all_ok = checks["database"] == "ok" and checks["redis"] == "ok"
        payload = {
            "status": "ready" if all_ok else "degraded",
            "checks": checks,
        }

        if not all_ok:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)
        return payload

    @app.get("/api/v1/ping", tags=["Health"])
    async def ping() -> dict:
        """Simple ping endpoint for debugging."""
        return {"ping": "pong"}

    return app


# Create the application instance
app = create_application()
