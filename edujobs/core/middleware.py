"""Middleware configuration for the FastAPI application."""

import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from edujobs import __version__
from edujobs.config import Settings
from edujobs.routers import metrics

logger = structlog.get_logger(__name__)


def setup_rate_limiter(app: FastAPI, settings: Settings) -> Limiter:
    """Set up rate limiter and attach to app."""
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_requests_per_minute}/minute"],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    # mypy: slowapi handler signature differs from FastAPI expected type
    app.add_exception_handler(
        RateLimitExceeded, _rate_limit_exceeded_handler  # type: ignore[arg-type]
    )
    return limiter


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Configure CORS middleware."""
    cors_origins_str = settings.cors_origins
    if cors_origins_str == "*":
        cors_origins = ["*"]
        logger.warning("cors_allow_all", reason="CORS_ORIGINS not set")
    else:
        cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]
        logger.info("cors_configured", origins=cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # HSTS only behind TLS
    if request.headers.get("X-Forwarded-Proto") == "https":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


def _error(status_code: int, detail: str, retryable: bool, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "retryable": retryable},
        headers={"X-Request-ID": request_id, "X-API-Version": __version__},
    )


def create_request_middleware(settings: Settings):
    """Create request middleware with settings closure."""

    # The webhook authenticates with signatures, not the API key
    public_paths = {
        "/health",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/",
        settings.webhook_path,
    }

    async def request_middleware(request: Request, call_next):
        """Add request ID, timing, size limits, and API key validation to all requests."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        if settings.api_key and request.url.path not in public_paths:
            provided_key = request.headers.get(settings.api_key_header_name)
            if not provided_key:
                logger.warning("api_key_missing", path=request.url.path)
                return _error(
                    401,
                    f"API key required. Provide key in {settings.api_key_header_name} header",
                    False,
                    request_id,
                )
            if provided_key != settings.api_key:
                logger.warning("api_key_invalid", path=request.url.path)
                return _error(403, "Invalid API key", False, request_id)

        content_length = request.headers.get("content-length")
        if (
            content_length
            and content_length.isdigit()
            and int(content_length) > settings.max_request_body_size
        ):
            logger.warning(
                "request_body_too_large",
                content_length=int(content_length),
                max_size=settings.max_request_body_size,
            )
            return _error(
                413,
                f"Request body too large. Maximum size is {settings.max_request_body_size // (1024 * 1024)}MB",  # noqa: E501
                False,
                request_id,
            )

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception("request_failed", error=str(e))
            return _error(500, "Internal server error", True, request_id)

        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        response.headers["X-API-Version"] = __version__

        # Skip /metrics to avoid recursion
        if request.url.path != "/metrics":
            # Route template keeps run ids out of label values
            route = request.scope.get("route")
            metrics.record_request(
                method=request.method,
                endpoint=getattr(route, "path", "unmatched"),
                status_code=response.status_code,
                duration=duration_ms / 1000,
            )

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        return response

    return request_middleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Set up all middleware for the application."""
    setup_rate_limiter(app, settings)

    setup_cors(app, settings)

    # Security headers (added first, runs last in middleware stack)
    app.middleware("http")(security_headers_middleware)

    # Request middleware (request ID, timing, auth, size limits)
    app.middleware("http")(create_request_middleware(settings))
