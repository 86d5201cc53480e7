"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from crowdsource_service.config import get_settings
from crowdsource_service.core.exceptions import register_exception_handlers
from crowdsource_service.core.lifespan import lifespan
from crowdsource_service.core.middleware import RequestValidationMiddleware
from crowdsource_service.routers import assignments, health, task_types, tasks


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(task_types.router, tags=["Task Types"])
    app.include_router(assignments.router, tags=["Assignments"])

    app.mount(
        "/uploads",
        StaticFiles(directory=settings.uploads.directory, check_dir=False),
        name="uploads",
    )

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
