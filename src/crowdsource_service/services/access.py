"""Role and ownership checks shared by the lifecycle managers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from crowdsource_service.core.exceptions import InvalidStateError, PermissionDeniedError
from crowdsource_service.models import Principal, Role

if TYPE_CHECKING:
    from crowdsource_service.models import Task
    from crowdsource_service.task_types.base import TaskType
    from crowdsource_service.task_types.registry import TaskTypeRegistry


def require_role(principal: Principal | None, role: Role, message: str) -> Principal:
    """Return the principal if it holds ``role``; raise PermissionDenied otherwise."""
    if principal is None or not principal.has_role(role):
        raise PermissionDeniedError(message)
    return principal


def require_any_role(principal: Principal | None, role: Role, message: str) -> Principal:
    """Return the principal if it holds any bit of ``role``."""
    if principal is None or not principal.has_any_role(role):
        raise PermissionDeniedError(message)
    return principal


def is_task_owner(principal: Principal | None, task: Task) -> bool:
    """The publisher of record, still holding the publisher role."""
    return (
        principal is not None
        and principal.uid == task.publisher
        and principal.has_role(Role.PUBLISHER)
    )


def is_task_admin(principal: Principal | None) -> bool:
    return principal is not None and principal.has_role(Role.TASK_ADMIN)


def require_enabled_plugin(registry: TaskTypeRegistry, type_id: str | None) -> TaskType:
    """Resolve the enabled plugin bound to an entity's type."""
    if type_id is None:
        raise InvalidStateError("Task has no type")
    plugin = registry.get_enabled(type_id)
    if plugin is None:
        raise InvalidStateError(f"Task type is not enabled: {type_id}")
    return plugin
