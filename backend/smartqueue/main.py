"""
SmartQueue API - Main FastAPI application.

Virtual waiting lines with adaptive wait-time estimates.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smartqueue.config import Settings, get_settings
from smartqueue.exceptions import (
    InvalidState,
    NotFound,
    SmartQueueError,
    UpstreamUnavailable,
    ValidationError,
)
from smartqueue.repositories import Repository, build_repository
from smartqueue.services.notifier import Notifier
from smartqueue.services.queue_orchestrator import QueueOrchestrator
from smartqueue.utils.timezone import utc_now

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UpstreamUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


async def handle_queue_error(request: Request, exc: SmartQueueError) -> JSONResponse:
    """Map the engine's error taxonomy onto HTTP status codes."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message, "id": exc.identifier},
    )


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[Repository] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Build the application.

    The repository is chosen once here (from settings unless one is passed
    in) and injected into the orchestrator.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.
        Runs on startup and shutdown.
        """
        logger.info("Starting %s in %s mode...", settings.app_name, settings.app_env)

        repo = repository or build_repository(settings)
        await repo.start()
        app.state.orchestrator = QueueOrchestrator.from_settings(
            repo, settings, notifier=notifier, clock=clock
        )
        logger.info("Storage ready (%s).", type(repo).__name__)

        yield

        logger.info("Shutting down...")
        await app.state.orchestrator.close()
        await repo.close()

    app = FastAPI(
        title=settings.app_name,
        description="Virtual queues with adaptive wait-time estimates",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.add_exception_handler(SmartQueueError, handle_queue_error)

    @app.get("/")
    async def root():
        """Root endpoint - basic health check."""
        return {
            "app": settings.app_name,
            "version": "0.1.0",
            "status": "running",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy"}

    # Routers
    from smartqueue.routers import admin, queue, stats

    app.include_router(queue.router, prefix="/api/queues", tags=["Queue"])
    app.include_router(stats.router, prefix="/api/stats", tags=["Stats"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    return app


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging(get_settings())
app = create_app()
