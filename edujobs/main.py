"""EduJobs - FastAPI application."""

import logging
from typing import Optional

import structlog
from fastapi import FastAPI

from edujobs import __version__
from edujobs.config import Settings, get_settings
from edujobs.core.lifespan import lifespan
from edujobs.core.middleware import setup_middleware
from edujobs.core.sentry import init_sentry
from edujobs.functions import JobServices
from edujobs.routers import health, metrics, runs, webhook


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for JSON output."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None, services: Optional[JobServices] = None
) -> FastAPI:
    """Build the application.

    Passing ``settings`` overrides the cached settings for every route;
    passing ``services`` skips building repositories and external clients.
    """
    explicit = settings is not None
    settings = settings or get_settings()

    configure_logging(settings.log_level)
    init_sentry(settings)

    app = FastAPI(
        title="EduJobs",
        description="Durable event-driven background jobs for the education platform",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services
    if explicit:
        app.dependency_overrides[get_settings] = lambda: settings

    if not settings.docs_enabled:
        logger.info("api_docs_disabled")

    setup_middleware(app, settings)

    app.include_router(health.router, tags=["Health"])
    app.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)
    app.include_router(webhook.router, prefix=settings.webhook_path)
    app.include_router(runs.router)

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "EduJobs",
            "version": __version__,
            "docs": "/docs" if settings.docs_enabled else None,
            "health": "/health",
            "webhook": settings.webhook_path,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "edujobs.main:app",
        host=_settings.service_host,
        port=_settings.service_port,
    )
