"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires storage, collaborators and the assignment service, registers the
router, and starts the background queue processor.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from room_engine.controllers.assignment_controller import router as assignment_router
from room_engine.repository.data_repository import (
    InMemoryAssignmentRepository,
    InMemoryConfigurationRepository,
    InMemoryReservationLedger,
    SqliteDataRepository,
)
from room_engine.services.assignment_service import RoomAssignmentService
from room_engine.services.config_service import ConfigurationStore
from room_engine.services.inventory_provider import HttpInventoryProvider, InMemoryInventoryProvider
from room_engine.services.notification_dispatcher import (
    HttpNotificationDispatcher,
    LoggingNotificationDispatcher,
)
from room_engine.services.queue_service import AssignmentQueueProcessor
from room_engine.utils.config import Settings, get_settings
from room_engine.utils.logger import get_logger


logger = get_logger(__name__)

QUEUE_STOP_TIMEOUT_SECONDS = 10.0


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function.
    """
    settings = settings or get_settings()

    # --- Storage (SQLite file or process memory) ---
    sqlite_repository: Optional[SqliteDataRepository] = None
    if settings.storage_backend == "sqlite":
        sqlite_repository = SqliteDataRepository(settings)
        config_repository = sqlite_repository
        assignment_repository = sqlite_repository
        reservation_ledger = sqlite_repository
    elif settings.storage_backend == "memory":
        config_repository = InMemoryConfigurationRepository()
        assignment_repository = InMemoryAssignmentRepository()
        reservation_ledger = InMemoryReservationLedger()
    else:
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")

    # --- External collaborators ---
    if settings.inventory_service_url:
        inventory_provider = HttpInventoryProvider(settings.inventory_service_url, settings=settings)
    else:
        inventory_provider = InMemoryInventoryProvider(settings)
    if settings.notification_service_url:
        dispatcher = HttpNotificationDispatcher(settings.notification_service_url, settings=settings)
    else:
        dispatcher = LoggingNotificationDispatcher()

    # --- Services ---
    config_store = ConfigurationStore(config_repository, settings=settings)
    assignment_service = RoomAssignmentService(
        config_store=config_store,
        inventory_provider=inventory_provider,
        notification_dispatcher=dispatcher,
        assignment_repository=assignment_repository,
        reservation_ledger=reservation_ledger,
        settings=settings,
    )
    queue_processor = AssignmentQueueProcessor(
        assignment_service,
        interval_seconds=settings.queue_drain_interval_seconds,
        batch_size=settings.queue_batch_size,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(assignment_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.sqlite_repository = sqlite_repository
    app.state.inventory_provider = inventory_provider
    app.state.notification_dispatcher = dispatcher
    app.state.config_store = config_store
    app.state.assignment_service = assignment_service
    app.state.queue_processor = queue_processor

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before any request touches storage.
      2. Demo inventory is seeded only for the in-memory provider.
      3. The queue processor starts last, once storage is ready.
    """
    settings: Settings = app.state.settings
    sqlite_repository: Optional[SqliteDataRepository] = app.state.sqlite_repository

    if sqlite_repository is not None:
        logger.info("Startup: initializing database schema")
        sqlite_repository.initialize_database()

    inventory_provider = app.state.inventory_provider
    if isinstance(inventory_provider, InMemoryInventoryProvider):
        logger.info("Startup: seeding demo inventory (skipped if rooms already exist)")
        inventory_provider.seed_demo_inventory(settings.default_property_id)

    if settings.queue_autostart:
        logger.info("Startup: starting assignment queue processor")
        app.state.queue_processor.start()

    logger.info("Startup complete | system ready")


def _shutdown(app: FastAPI) -> None:
    logger.info("Shutdown: stopping assignment queue processor")
    app.state.queue_processor.stop(timeout=QUEUE_STOP_TIMEOUT_SECONDS)


# Module-level app object for uvicorn
app = create_app()
