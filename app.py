"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn. It wires the
repository, the event notifier and the allocation service, registers the
router, and runs schema initialization before the first request.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from allocation_engine.controllers.allocation_controller import router as allocation_router
from allocation_engine.repository.allocation_repository import AllocationRepository
from allocation_engine.services.allocation_service import AllocationService
from allocation_engine.services.notification_service import AllocationEventNotifier, log_event
from allocation_engine.utils.config import Settings, get_settings
from allocation_engine.utils.logger import get_logger, log_fields


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is created here and exposed through app.state so the
    controllers resolve the same instances the startup sequence prepared.
    """
    settings = settings or get_settings()

    repository = AllocationRepository(settings)
    notifier = AllocationEventNotifier(settings=settings, handlers=[log_event])
    allocation_service = AllocationService(
        repository=repository,
        settings=settings,
        notifier=notifier,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Prepare storage and the notifier worker; drain the worker on shutdown."""
        _startup(app)
        try:
            yield
        finally:
            app.state.notifier.stop()
            logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(allocation_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.notifier = notifier
    app.state.allocation_service = allocation_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the demo roster is seeded; the seed is skipped
    when the Employees table already holds rows.
    """
    settings: Settings = app.state.settings
    repository: AllocationRepository = app.state.repository
    notifier: AllocationEventNotifier = app.state.notifier

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo roster")
        repository.seed_demo_data()

    notifier.start()
    logger.info(
        "Startup complete | %s",
        log_fields(
            database=repository.database_path,
            comfortable=settings.capacity_comfortable_threshold,
            warning=settings.capacity_warning_threshold,
            critical=settings.capacity_critical_threshold,
        ),
    )


# Module-level app object for uvicorn
app = create_app()
