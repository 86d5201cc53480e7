"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from crowdsource_service.clients.identity_client import IdentityClient
from crowdsource_service.config import get_settings
from crowdsource_service.core.state import init_app_state
from crowdsource_service.logging import get_logger, setup_logging
from crowdsource_service.services.assignment_manager import AssignmentManager
from crowdsource_service.services.task_manager import TaskManager
from crowdsource_service.services.task_store import TaskStore
from crowdsource_service.services.thumbnailer import Thumbnailer
from crowdsource_service.task_types.registry import TaskTypeRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    upload_directory = settings.uploads.directory
    Path(upload_directory).mkdir(parents=True, exist_ok=True)

    # Initialize the task-type registry from configured plugin paths
    registry = TaskTypeRegistry()
    loaded = registry.load(settings.task_types.plugins)
    state.registry = registry

    # Initialize IdentityClient (HTTP client for token verification)
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_token_path=settings.identity.verify_token_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    # Initialize managers (all business logic)
    store = TaskStore(db_path=settings.database.path)
    thumbnailer = Thumbnailer(output_directory=str(Path(upload_directory) / "thumbnails"))
    task_manager = TaskManager(
        store=store,
        registry=registry,
        thumbnailer=thumbnailer,
        upload_directory=upload_directory,
        thumbnail_size=(settings.uploads.thumbnail_width, settings.uploads.thumbnail_height),
        default_limit=settings.listing.default_limit,
        max_limit=settings.listing.max_limit,
    )
    state.task_manager = task_manager
    state.assignment_manager = AssignmentManager(
        store=store,
        registry=registry,
        upload_directory=upload_directory,
        default_limit=settings.listing.default_limit,
        max_limit=settings.listing.max_limit,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "upload_directory": upload_directory,
            "identity_base_url": settings.identity.base_url,
            "task_types": loaded,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await state.aclose()
