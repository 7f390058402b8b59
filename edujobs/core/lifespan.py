"""Application lifespan management - startup and shutdown logic."""

import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import asyncpg
import structlog
from fastapi import FastAPI

from edujobs import __version__
from edujobs.config import Settings
from edujobs.engine import HttpEventBus, InMemoryRunStore, JobEngine, RunStore
from edujobs.engine.worker import ResumeWorker
from edujobs.functions import JobServices, build_registry
from edujobs.repositories import (
    AccountsRepository,
    ExercisesRepository,
    GradingRepository,
    ImportsRepository,
    LogisticsRepository,
    NotificationsRepository,
    PostgresRunStore,
)
from edujobs.routers import metrics
from edujobs.services.documents import HttpDocumentStore
from edujobs.services.email import ResendTransport
from edujobs.services.identity import IdentityToolkitProvider, NullIdentityProvider
from edujobs.services.llm_factory import LLMStartupError, get_llm, get_llm_status

logger = structlog.get_logger(__name__)


async def _init_database(settings: Settings) -> Optional[asyncpg.Pool]:
    """Initialize the asyncpg connection pool. None runs the engine in memory."""
    if not settings.database_url:
        logger.warning(
            "database_not_configured",
            detail="Runs are kept in memory and jobs cannot reach application data",
        )
        return None

    try:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            ssl="require" if settings.db_ssl else None,
            timeout=10,  # Short connection timeout to avoid blocking startup
            command_timeout=30,
            statement_cache_size=0,  # Disable for pgbouncer transaction mode
        )
    except Exception as e:
        logger.error(
            "database_pool_failed",
            error=str(e),
            traceback=traceback.format_exc(),
        )
        raise

    logger.info(
        "database_pool_initialized",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    metrics.set_db_pool_metrics(pool.get_size(), pool.get_idle_size())
    return pool


def _init_llm():
    """Resolve the LLM provider. An explicit provider without a key stops startup."""
    try:
        llm = get_llm()
    except LLMStartupError as e:
        logger.error("llm_startup_failed", error=str(e))
        raise
    llm_status = get_llm_status()
    logger.info(
        "llm_configuration",
        provider_config=llm_status.provider_config,
        provider_resolved=llm_status.provider_resolved,
        model=llm_status.model,
        llm_enabled=llm_status.enabled,
    )
    return llm


def build_services(settings: Settings, pool: Optional[asyncpg.Pool]) -> JobServices:
    """Wire repositories and external clients for the concrete jobs."""
    email = None
    if settings.resend_api_key:
        email = ResendTransport(settings.resend_api_key, settings.email_from)
    else:
        logger.info("email_disabled", reason="RESEND_API_KEY not set")

    if settings.identity_api_key:
        identity = IdentityToolkitProvider(
            settings.identity_api_key, project_id=settings.identity_project_id
        )
    else:
        identity = NullIdentityProvider()

    documents = None
    if settings.storage_base_url:
        documents = HttpDocumentStore(settings.storage_base_url, token=settings.storage_token)

    repos = {}
    if pool is not None:
        repos = {
            "accounts": AccountsRepository(pool),
            "imports": ImportsRepository(pool),
            "logistics": LogisticsRepository(pool),
            "notifications": NotificationsRepository(pool),
            "exercises": ExercisesRepository(pool),
            "grading": GradingRepository(pool),
        }

    return JobServices(
        **repos,
        email=email,
        identity=identity,
        documents=documents,
        llm=_init_llm(),
        settings=settings,
    )


async def _close_services(services: JobServices) -> None:
    for client in (services.email, services.identity, services.documents):
        close = getattr(client, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            logger.warning("client_close_failed", client=type(client).__name__, error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the engine and its collaborators, start the resume worker if self-hosted."""
    settings: Settings = app.state.settings
    logger.info(
        "service_starting",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
        engine_mode=settings.engine_mode,
        webhook_path=settings.webhook_path,
    )

    pool = await _init_database(settings)
    store: RunStore = PostgresRunStore(pool) if pool is not None else InMemoryRunStore()

    registry = build_registry()
    services = getattr(app.state, "services", None) or build_services(settings, pool)

    bus = None
    if settings.broker_event_url:
        bus = HttpEventBus(
            settings.broker_event_url,
            signing_key=settings.signing_key,
            timeout=settings.event_send_timeout_s,
        )

    engine = JobEngine(
        store,
        registry,
        services,
        bus,
        lock_timeout_s=settings.run_lock_timeout_s,
        throttle_retry_s=settings.throttle_retry_s,
    )

    app.state.db_pool = pool
    app.state.store = store
    app.state.registry = registry
    app.state.services = services
    app.state.engine = engine
    app.state.bus = engine.bus

    worker: Optional[ResumeWorker] = None
    if settings.engine_mode == "self_hosted":
        worker = ResumeWorker(
            engine,
            poll_interval_s=settings.worker_poll_interval_s,
            parallelism=settings.worker_parallelism,
            batch_size=settings.worker_batch_size,
        )
        worker.start_background()
    else:
        logger.info("resume_worker_disabled", reason="broker drives step callbacks")
    app.state.worker = worker

    logger.info("service_started", functions=len(registry), store=type(store).__name__)

    yield

    logger.info("service_stopping")

    if worker is not None:
        await worker.stop()

    await engine.bus.close()
    await _close_services(services)

    if pool is not None:
        await pool.close()
        logger.info("database_pool_closed")
