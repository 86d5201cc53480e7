"""Task-type plugin contract and registry."""

from crowdsource_service.task_types.base import (
    HookContext,
    HookRequest,
    TaskType,
    TaskTypeMeta,
    UploadedFile,
)
from crowdsource_service.task_types.registry import RegisteredTaskType, TaskTypeRegistry

__all__ = [
    "HookContext",
    "HookRequest",
    "RegisteredTaskType",
    "TaskType",
    "TaskTypeMeta",
    "TaskTypeRegistry",
    "UploadedFile",
]
