"""Task lifecycle management: creation, editing, review and publication."""

from __future__ import annotations

import uuid
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from crowdsource_service.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SchemaError,
)
from crowdsource_service.logging import get_logger
from crowdsource_service.models import Role, Task, TaskStatus, has_role, now_iso, to_iso
from crowdsource_service.schemas import (
    TaskCreateRequest,
    TaskPatchRequest,
    TaskQuery,
    TaskTypePatchRequest,
    parse_model,
)
from crowdsource_service.services.access import (
    is_task_admin,
    is_task_owner,
    require_any_role,
    require_enabled_plugin,
    require_role,
)
from crowdsource_service.services.file_ledger import FileLedger
from crowdsource_service.services.task_store import (
    AssignmentFilters,
    TaskFilters,
    UnknownCursorError,
)
from crowdsource_service.task_types.base import HookContext

if TYPE_CHECKING:
    from collections.abc import Mapping

    from crowdsource_service.models import Principal
    from crowdsource_service.services.task_store import TaskStore
    from crowdsource_service.services.thumbnailer import Thumbnailer
    from crowdsource_service.task_types.base import HookRequest, UploadedFile
    from crowdsource_service.task_types.registry import TaskTypeRegistry

UPLOADS_URL_PREFIX = "/uploads/"

# (current, requested) -> role the acting principal must hold.
# PUBLISHER additionally means "the publisher of record".
_TASK_TRANSITIONS: dict[tuple[TaskStatus, TaskStatus], Role] = {
    (TaskStatus.ADMITTED, TaskStatus.EDITING): Role.PUBLISHER,
    (TaskStatus.SUBMITTED, TaskStatus.EDITING): Role.TASK_ADMIN,
    (TaskStatus.EDITING, TaskStatus.SUBMITTED): Role.PUBLISHER,
    (TaskStatus.SUBMITTED, TaskStatus.ADMITTED): Role.TASK_ADMIN,
    (TaskStatus.ADMITTED, TaskStatus.PUBLISHED): Role.PUBLISHER,
}

_INFO_FIELDS = frozenset({"name", "description", "excerption", "tags", "deadline", "type"})
_NON_NULL_FIELDS = ("name", "description", "excerption", "tags", "type", "status")


class TaskManager:
    """
    Manages the task lifecycle and the task-type administration surface.

    Generic fields are owned here; ``data``, ``valid`` and the progress
    counters are delegated to the plugin resolved from the task's type.
    """

    def __init__(
        self,
        store: TaskStore,
        registry: TaskTypeRegistry,
        thumbnailer: Thumbnailer,
        upload_directory: str,
        thumbnail_size: tuple[int, int],
        default_limit: int,
        max_limit: int,
    ) -> None:
        self._store = store
        self._registry = registry
        self._thumbnailer = thumbnailer
        self._upload_directory = Path(upload_directory)
        self._thumbnail_size = thumbnail_size
        self._default_limit = default_limit
        self._max_limit = max_limit
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _context(self, ledger: FileLedger) -> HookContext:
        return HookContext(
            store=self._store,
            upload_directory=self._upload_directory,
            ledger=ledger,
        )

    def _load_task(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def _require_available_type(self, type_id: str) -> None:
        if self._registry.get_enabled(type_id) is None:
            raise SchemaError.for_field(
                "Unknown task type",
                "type",
                f"Task type is not available: {type_id}",
                "enum",
            )

    def _upload_path(self, url: str) -> Path:
        return self._upload_directory / url.removeprefix(UPLOADS_URL_PREFIX)

    def _store_picture(self, picture: UploadedFile, ledger: FileLedger) -> tuple[str, str]:
        """Write the picture and its thumbnail; return both public URLs."""
        if not picture.content_type.startswith("image/"):
            raise SchemaError.for_field(
                "Invalid task picture",
                "picture",
                "File is not an image",
                "image",
            )
        suffix = PurePosixPath(picture.filename).suffix.lower()
        if not suffix[1:].isalnum() or len(suffix) > 9:
            suffix = ""
        pictures = self._upload_directory / "pictures"
        pictures.mkdir(parents=True, exist_ok=True)
        name = f"{uuid.uuid4().hex}{suffix}"
        source = ledger.track(pictures / name)
        source.write_bytes(picture.content)

        thumbnail = self._thumbnailer.resize(source, self._thumbnail_size)
        ledger.track(self._thumbnailer.output_directory / thumbnail)

        thumbnail_directory = self._thumbnailer.output_directory.name
        return (
            f"{UPLOADS_URL_PREFIX}pictures/{name}",
            f"{UPLOADS_URL_PREFIX}{thumbnail_directory}/{thumbnail}",
        )

    def _check_transition(
        self,
        task: Task,
        requested: TaskStatus,
        *,
        owner: bool,
        admin: bool,
    ) -> None:
        actor = _TASK_TRANSITIONS.get((task.status, requested))
        allowed = (actor == Role.PUBLISHER and owner) or (actor == Role.TASK_ADMIN and admin)
        if not allowed:
            msg = f"Cannot change task status from {task.status.name} to {requested.name}"
            raise InvalidStateError(msg)
        if requested == TaskStatus.SUBMITTED and not task.valid:
            raise InvalidStateError("Task data must be valid before submission")

    def serialize_task(
        self,
        task: Task,
        principal: Principal | None,
        *,
        include_data: bool = False,
    ) -> dict[str, Any]:
        """Convert a task to its response dict, optionally with the plugin projection."""
        result: dict[str, Any] = {
            "id": task.id,
            "publisher": task.publisher,
            "name": task.name,
            "description": task.description,
            "excerption": task.excerption,
            "tags": list(task.tags),
            "type": task.type,
            "status": task.status.name,
            "valid": task.valid,
            "total": task.total,
            "remain": task.remain,
            "completed": task.completed,
            "deadline": task.deadline,
            "picture": task.picture,
            "thumbnail": task.thumbnail,
            "created_at": task.created_at,
            "updated_at": task.updated_at,
        }
        if include_data:
            plugin = self._registry.get_enabled(task.type)
            result["data"] = (
                {} if plugin is None else plugin.task_data_to_plain_object(task, principal)
            )
        return result

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        principal: Principal | None,
        body: Any,
        picture: UploadedFile | None = None,
    ) -> dict[str, Any]:
        """Create a task in EDITING owned by the calling publisher."""
        principal = require_role(principal, Role.PUBLISHER, "Only publishers can create tasks")
        payload: TaskCreateRequest = parse_model(TaskCreateRequest, body, "Invalid task")
        if payload.type is not None:
            self._require_available_type(payload.type)

        now = now_iso()
        task = Task(
            id=f"t-{uuid.uuid4()}",
            publisher=principal.uid,
            name=payload.name,
            description=payload.description,
            excerption=payload.excerption,
            created_at=now,
            updated_at=now,
            tags=list(payload.tags),
            type=payload.type,
            deadline=None if payload.deadline is None else to_iso(payload.deadline),
        )
        with FileLedger() as ledger:
            if picture is not None:
                task.picture, task.thumbnail = self._store_picture(picture, ledger)
            self._store.insert_task(task)

        self._logger.info(
            "Task created",
            extra={"task_id": task.id, "publisher": task.publisher, "type": task.type},
        )
        return self.serialize_task(task, principal)

    def get_task(
        self,
        principal: Principal | None,
        task_id: str,
        *,
        include_data: bool = False,
    ) -> dict[str, Any]:
        """Published tasks are public; others are visible to their publisher and task admins."""
        task = self._load_task(task_id)
        if task.status != TaskStatus.PUBLISHED and not (
            is_task_owner(principal, task) or is_task_admin(principal)
        ):
            raise PermissionDeniedError("Not allowed to read this task")
        return self.serialize_task(task, principal, include_data=include_data)

    def find_tasks(self, principal: Principal | None, query: Mapping[str, str]) -> dict[str, Any]:
        """
        List tasks newest first with cursor pagination.

        Task admins see everything, publishers see their own tasks and
        everyone else sees published tasks only.
        """
        params: TaskQuery = parse_model(TaskQuery, dict(query), "Invalid task query")
        limit = params.limit if params.limit is not None else self._default_limit
        if limit > self._max_limit:
            raise SchemaError.for_field(
                "Invalid task query",
                "limit",
                f"limit must be <= {self._max_limit}",
                "less_than_equal",
            )

        filters = TaskFilters(
            search_terms=params.search.split() if params.search else [],
            name=params.name,
            publisher=params.publisher,
            tag=params.tag,
            type=params.type,
            status=None if params.status is None else TaskStatus[params.status],
            completed=params.completed,
            deadline_from=None if params.deadline_from is None else to_iso(params.deadline_from),
            deadline_to=None if params.deadline_to is None else to_iso(params.deadline_to),
        )
        if is_task_admin(principal):
            pass
        elif principal is not None and has_role(principal, Role.PUBLISHER):
            if filters.publisher not in (None, principal.uid):
                raise SchemaError.for_field(
                    "Invalid task query",
                    "publisher",
                    "Publishers may only list their own tasks",
                    "scope",
                )
            filters.publisher = principal.uid
        else:
            if filters.status not in (None, TaskStatus.PUBLISHED):
                raise SchemaError.for_field(
                    "Invalid task query",
                    "status",
                    "Only published tasks can be listed",
                    "scope",
                )
            filters.status = TaskStatus.PUBLISHED

        try:
            tasks = self._store.list_tasks(filters, limit=limit, last_id=params.last_id)
        except UnknownCursorError as exc:
            raise SchemaError.for_field(
                "Invalid task query",
                "last_id",
                str(exc),
                "cursor",
            ) from exc

        result: dict[str, Any] = {
            "tasks": [
                self.serialize_task(task, principal) if params.populate else task.id
                for task in tasks
            ],
            "last_id": tasks[-1].id if tasks else None,
        }
        if params.count:
            result["total"] = self._store.count_tasks_matching(filters)
        return result

    def patch_task(
        self,
        principal: Principal | None,
        task_id: str,
        body: Any,
        picture: UploadedFile | None = None,
    ) -> dict[str, Any]:
        """
        Edit task info and/or change its status.

        Error precedence:
        1. NOT_FOUND: task absent or deleted
        2. PERMISSION_DENIED: neither publisher nor task admin role
        3. SCHEMA_ERROR: malformed body
        4. INVALID_STATE: type already set
        5. PERMISSION_DENIED: not the owner or a task admin
        6. PERMISSION_DENIED / INVALID_STATE: info edit by non-owner or outside EDITING
        7. INVALID_STATE: transition not in the table or task not valid
        """
        task = self._load_task(task_id)
        principal = require_any_role(
            principal,
            Role.PUBLISHER | Role.TASK_ADMIN,
            "Only publishers or task admins can modify tasks",
        )
        payload: TaskPatchRequest = parse_model(TaskPatchRequest, body, "Invalid task patch")
        fields = payload.model_fields_set
        null_fields = [
            name for name in _NON_NULL_FIELDS if name in fields and getattr(payload, name) is None
        ]
        if null_fields:
            raise SchemaError(
                "Invalid task patch",
                [
                    {"loc": name, "msg": "Field may not be null", "type": "none_forbidden"}
                    for name in null_fields
                ],
            )
        if not fields and picture is None:
            raise SchemaError.for_field(
                "Invalid task patch",
                "",
                "At least one field is required",
                "missing",
            )

        if "type" in fields and task.type is not None:
            raise InvalidStateError("Task type is already set")

        owner = is_task_owner(principal, task)
        admin = is_task_admin(principal)
        if not owner and not admin:
            raise PermissionDeniedError("Not allowed to modify this task")

        updates: dict[str, Any] = {}
        if fields & _INFO_FIELDS or picture is not None:
            if not owner:
                raise PermissionDeniedError("Only the publisher can edit task info")
            if task.status != TaskStatus.EDITING:
                raise InvalidStateError("Task info can only be edited while EDITING")
            if payload.type is not None:
                self._require_available_type(payload.type)
            for name in ("name", "description", "excerption", "type"):
                if name in fields:
                    updates[name] = getattr(payload, name)
            if payload.tags is not None:
                updates["tags"] = list(payload.tags)
            if "deadline" in fields:
                updates["deadline"] = None if payload.deadline is None else to_iso(payload.deadline)

        if payload.status is not None:
            requested = TaskStatus[payload.status]
            self._check_transition(task, requested, owner=owner, admin=admin)
            updates["status"] = requested

        with FileLedger() as ledger:
            if picture is not None:
                updates["picture"], updates["thumbnail"] = self._store_picture(picture, ledger)
                for old in (task.picture, task.thumbnail):
                    if old:
                        ledger.supersede(self._upload_path(old))
            changed = self._store.update_task(task.id, updates, expected_status=task.status)
            if changed == 0:
                raise InvalidStateError("Task was modified concurrently")

        if "status" in updates:
            self._logger.info(
                "Task status changed",
                extra={
                    "task_id": task.id,
                    "from_status": task.status.name,
                    "to_status": updates["status"].name,
                    "actor": principal.uid,
                },
            )
        return self.serialize_task(self._load_task(task.id), principal)

    def delete_task(self, principal: Principal | None, task_id: str) -> None:
        """Soft-delete a task. Allowed for its publisher and task admins."""
        task = self._load_task(task_id)
        if not (is_task_owner(principal, task) or is_task_admin(principal)):
            raise PermissionDeniedError("Not allowed to delete this task")
        self._store.soft_delete_task(task.id)
        self._logger.info("Task deleted", extra={"task_id": task.id})

    # ------------------------------------------------------------------
    # Task data
    # ------------------------------------------------------------------

    def post_task_data(
        self,
        principal: Principal | None,
        task_id: str,
        request: HookRequest,
    ) -> dict[str, Any]:
        """Hand the plugin payload to the task's type while the task is EDITING."""
        task = self._load_task(task_id)
        if not is_task_owner(principal, task):
            raise PermissionDeniedError("Only the publisher can post task data")
        if task.status != TaskStatus.EDITING:
            raise InvalidStateError("Task data can only be posted while EDITING")
        plugin = require_enabled_plugin(self._registry, task.type)

        with FileLedger() as ledger:
            ctx = self._context(ledger)
            plugin.before_post_task_data(task, request, ctx)
            with self._store.transaction():
                response = plugin.post_task_data(task, request, ctx)

        self._logger.info(
            "Task data posted",
            extra={"task_id": task.id, "type": task.type, "valid": task.valid},
        )
        if response is not None:
            return response
        return self.serialize_task(
            self._load_task(task.id),
            principal,
            include_data=request.query_flag("data"),
        )

    def get_task_data(
        self,
        principal: Principal | None,
        task_id: str,
        request: HookRequest,
    ) -> dict[str, Any]:
        """Plugin view of the task for its publisher or, once published, for subscribers."""
        task = self._load_task(task_id)
        if not is_task_owner(principal, task) and not (
            has_role(principal, Role.SUBSCRIBER) and task.status == TaskStatus.PUBLISHED
        ):
            raise PermissionDeniedError("Not allowed to read task data")
        plugin = require_enabled_plugin(self._registry, task.type)

        with FileLedger() as ledger:
            response = plugin.get_task_data(task, request, self._context(ledger))
        if response is not None:
            return response
        return {"data": plugin.task_data_to_plain_object(task, principal)}

    # ------------------------------------------------------------------
    # Task types
    # ------------------------------------------------------------------

    def get_task_types(self) -> dict[str, Any]:
        """Metadata of every registered task type."""
        return {"task_types": [meta.model_dump() for meta in self._registry.list()]}

    def patch_task_type(
        self,
        principal: Principal | None,
        type_id: str,
        body: Any,
    ) -> dict[str, Any]:
        """Enable or disable a task type."""
        require_role(principal, Role.SITE_ADMIN, "Only site admins can manage task types")
        payload: TaskTypePatchRequest = parse_model(
            TaskTypePatchRequest, body, "Invalid task type patch"
        )
        return self._registry.set_enabled(type_id, payload.enabled).model_dump()

    def delete_task_type(self, principal: Principal | None, type_id: str) -> None:
        """Unregister a task type. Tasks bound to it keep their data."""
        require_role(principal, Role.SITE_ADMIN, "Only site admins can manage task types")
        self._registry.unregister(type_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Counts reported by the health endpoint."""
        tasks_by_status = self._store.count_tasks_by_status()
        return {
            "total_tasks": sum(tasks_by_status.values()),
            "tasks_by_status": tasks_by_status,
            "total_assignments": self._store.count_assignments_matching(AssignmentFilters()),
            "task_types": len(self._registry.list()),
        }

    def close(self) -> None:
        """Close the underlying store."""
        self._store.close()
