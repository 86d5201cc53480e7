"""API routers."""

from crowdsource_service.routers import assignments, health, task_types, tasks

__all__ = ["assignments", "health", "task_types", "tasks"]
