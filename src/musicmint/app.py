"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from musicmint.api.routes import mint_jobs, reconciliation
from musicmint.core import timezone  # noqa: F401
from musicmint.core.config import Settings, configure_logging
from musicmint.core.database import setup_db_session
from musicmint.services.ledger.client import ledger_factory_from_settings
from musicmint.uow import create_uow_factory
from musicmint.workers.mint_worker import run_mint_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, session_factory, settings, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_mint_worker)
        session_factory: Database session factory
        settings: Application settings
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker loops never return on their own
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(session_factory, settings))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(session_factory, settings))
    task.add_done_callback(on_worker_done)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create the session and UoW factories,
      optionally start the in-process mint worker
    - Shutdown: Stop the worker

    The mint worker normally runs as its own process
    (python -m musicmint.cli.mint_worker); RUN_WORKER_IN_APP embeds it here
    for single-process deployments.
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger_factory = (
        ledger_factory_from_settings(settings) if settings.platform_wallet_seed else None
    )

    shutdown_event = asyncio.Event()
    worker_task = None
    if settings.run_worker_in_app:
        worker_task = create_resilient_worker(
            run_mint_worker, session_factory, settings, "mint", shutdown_event
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        worker_in_app=settings.run_worker_in_app,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if worker_task is not None:
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Optional settings (loaded from the environment if omitted)

    Returns:
        Configured FastAPI application instance
    """
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars

    app = FastAPI(
        title="musicmint API",
        description="Music NFT batch minting and inventory reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(mint_jobs.router)
    app.include_router(reconciliation.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app
