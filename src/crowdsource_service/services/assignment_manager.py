"""Assignment lifecycle management: creation, submission and review."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from crowdsource_service.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    SchemaError,
)
from crowdsource_service.logging import get_logger
from crowdsource_service.models import (
    Assignment,
    AssignmentStatus,
    Role,
    TaskStatus,
    has_role,
    now_iso,
)
from crowdsource_service.schemas import (
    AssignmentCreateRequest,
    AssignmentPatchRequest,
    AssignmentQuery,
    parse_model,
)
from crowdsource_service.services.access import (
    is_task_admin,
    require_enabled_plugin,
    require_role,
)
from crowdsource_service.services.file_ledger import FileLedger
from crowdsource_service.services.task_store import AssignmentFilters, UnknownCursorError
from crowdsource_service.task_types.base import HookContext, HookRequest

if TYPE_CHECKING:
    from collections.abc import Mapping

    from crowdsource_service.models import Principal
    from crowdsource_service.services.task_store import TaskStore
    from crowdsource_service.task_types.registry import TaskTypeRegistry


def _is_participant(principal: Principal | None, assignment: Assignment) -> bool:
    return principal is not None and principal.uid in (assignment.publisher, assignment.subscriber)


class AssignmentManager:
    """
    Manages the assignment lifecycle.

    Every status change is proposed to the task type first; the plugin may
    veto it or rewrite the target status, and only then is the new status
    written with a compare-and-swap on the previous one.
    """

    def __init__(
        self,
        store: TaskStore,
        registry: TaskTypeRegistry,
        upload_directory: str,
        default_limit: int,
        max_limit: int,
    ) -> None:
        self._store = store
        self._registry = registry
        self._upload_directory = Path(upload_directory)
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

    def _load_assignment(self, assignment_id: str) -> Assignment:
        assignment = self._store.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment not found: {assignment_id}")
        return assignment

    def _check_transition(
        self,
        assignment: Assignment,
        requested: AssignmentStatus,
        principal: Principal,
    ) -> None:
        current = assignment.status
        if current == AssignmentStatus.EDITING and requested == AssignmentStatus.SUBMITTED:
            if principal.uid != assignment.subscriber or not has_role(principal, Role.SUBSCRIBER):
                raise InvalidStateError("Only the subscriber can submit an assignment")
            if not assignment.valid:
                raise InvalidStateError("Assignment is not ready to be submitted")
            return
        if current == AssignmentStatus.SUBMITTED and requested in (
            AssignmentStatus.ADMITTED,
            AssignmentStatus.REJECTED,
        ):
            if principal.uid != assignment.publisher or not has_role(principal, Role.PUBLISHER):
                raise InvalidStateError("Only the publisher can review an assignment")
            return
        msg = f"Cannot change assignment status from {current.name} to {requested.name}"
        raise InvalidStateError(msg)

    def serialize_assignment(
        self,
        assignment: Assignment,
        principal: Principal | None,
        *,
        include_data: bool = False,
    ) -> dict[str, Any]:
        """Convert an assignment to its response dict."""
        result: dict[str, Any] = {
            "id": assignment.id,
            "task": assignment.task,
            "publisher": assignment.publisher,
            "subscriber": assignment.subscriber,
            "type": assignment.type,
            "status": assignment.status.name,
            "valid": assignment.valid,
            "summary": assignment.summary,
            "created_at": assignment.created_at,
            "updated_at": assignment.updated_at,
        }
        if include_data:
            plugin = self._registry.get_enabled(assignment.type)
            result["data"] = (
                {}
                if plugin is None
                else plugin.assignment_data_to_plain_object(assignment, principal)
            )
        return result

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def create_assignment(
        self,
        principal: Principal | None,
        body: Any,
        query: Mapping[str, str],
    ) -> dict[str, Any]:
        """
        Create an assignment against a published task.

        The task type populates the skeleton (or persists it itself and
        returns its own response). Hook and insert share one transaction.
        """
        principal = require_role(
            principal, Role.SUBSCRIBER, "Only subscribers can create assignments"
        )
        payload: AssignmentCreateRequest = parse_model(
            AssignmentCreateRequest, body, "Invalid assignment"
        )
        task = self._store.get_task(payload.task)
        if task is None:
            raise InvalidStateError(f"Task not found: {payload.task}")
        if task.status != TaskStatus.PUBLISHED:
            raise InvalidStateError("Task is not published")
        plugin = require_enabled_plugin(self._registry, task.type)

        now = now_iso()
        assignment = Assignment(
            id=f"a-{uuid.uuid4()}",
            task=task.id,
            publisher=task.publisher,
            subscriber=principal.uid,
            type=cast("str", task.type),
            created_at=now,
            updated_at=now,
        )
        request = HookRequest(principal=principal, body=payload.data, query=query)

        with FileLedger() as ledger, self._store.transaction():
            response = plugin.create_assignment(task, assignment, request, self._context(ledger))
            if response is None:
                self._store.insert_assignment(assignment)

        self._logger.info(
            "Assignment created",
            extra={
                "assignment_id": assignment.id,
                "task_id": task.id,
                "subscriber": assignment.subscriber,
                "status": assignment.status.name,
            },
        )
        if response is not None:
            return response
        return self.serialize_assignment(
            assignment, principal, include_data=request.query_flag("data")
        )

    def get_assignment(
        self,
        principal: Principal | None,
        assignment_id: str,
        *,
        include_data: bool = False,
    ) -> dict[str, Any]:
        """Visible to the task's publisher and the assignment's subscriber."""
        assignment = self._load_assignment(assignment_id)
        if not _is_participant(principal, assignment):
            raise PermissionDeniedError("Not allowed to read this assignment")
        return self.serialize_assignment(assignment, principal, include_data=include_data)

    def find_assignments(
        self,
        principal: Principal | None,
        query: Mapping[str, str],
    ) -> dict[str, Any]:
        """List assignments newest first. Non-admins only see their own."""
        if principal is None:
            raise PermissionDeniedError("Not allowed to list assignments")
        params: AssignmentQuery = parse_model(
            AssignmentQuery, dict(query), "Invalid assignment query"
        )
        limit = params.limit if params.limit is not None else self._default_limit
        if limit > self._max_limit:
            raise SchemaError.for_field(
                "Invalid assignment query",
                "limit",
                f"limit must be <= {self._max_limit}",
                "less_than_equal",
            )

        filters = AssignmentFilters(
            task=params.task,
            publisher=params.publisher,
            subscriber=params.subscriber,
            status=None if params.status is None else AssignmentStatus[params.status],
        )
        if not is_task_admin(principal):
            filters.participant = principal.uid

        try:
            assignments = self._store.list_assignments(
                filters, limit=limit, last_id=params.last_id
            )
        except UnknownCursorError as exc:
            raise SchemaError.for_field(
                "Invalid assignment query",
                "last_id",
                str(exc),
                "cursor",
            ) from exc

        result: dict[str, Any] = {
            "assignments": [
                self.serialize_assignment(assignment, principal)
                if params.populate
                else assignment.id
                for assignment in assignments
            ],
            "last_id": assignments[-1].id if assignments else None,
        }
        if params.count:
            result["total"] = self._store.count_assignments_matching(filters)
        return result

    def patch_assignment(
        self,
        principal: Principal | None,
        assignment_id: str,
        body: Any,
        query: Mapping[str, str],
    ) -> dict[str, Any]:
        """
        Change an assignment's status.

        Error precedence:
        1. NOT_FOUND: assignment absent or deleted
        2. PERMISSION_DENIED: caller is neither publisher nor subscriber of record
        3. SCHEMA_ERROR: malformed body
        4. INVALID_STATE: transition not allowed for this actor, or not valid
        5. INVALID_STATE: task type disabled, or vetoed by the task type
        """
        assignment = self._load_assignment(assignment_id)
        if principal is None or not _is_participant(principal, assignment):
            raise PermissionDeniedError("Not allowed to modify this assignment")
        payload: AssignmentPatchRequest = parse_model(
            AssignmentPatchRequest, body, "Invalid assignment patch"
        )
        requested = AssignmentStatus[payload.status]
        self._check_transition(assignment, requested, principal)
        plugin = require_enabled_plugin(self._registry, assignment.type)

        previous = assignment.status
        assignment.status = requested
        request = HookRequest(principal=principal, body=body, query=query)

        with FileLedger() as ledger, self._store.transaction():
            plugin.assignment_status_changed(assignment, request, self._context(ledger))
            changed = self._store.update_assignment(
                assignment.id,
                {
                    "status": assignment.status,
                    "valid": assignment.valid,
                    "summary": assignment.summary,
                    "data": assignment.data,
                },
                expected_status=previous,
            )
            if changed == 0:
                raise InvalidStateError("Assignment was modified concurrently")

        self._logger.info(
            "Assignment status changed",
            extra={
                "assignment_id": assignment.id,
                "task_id": assignment.task,
                "from_status": previous.name,
                "to_status": assignment.status.name,
                "actor": principal.uid,
            },
        )
        return self.serialize_assignment(
            self._load_assignment(assignment.id),
            principal,
            include_data=request.query_flag("data"),
        )

    def delete_assignment(self, principal: Principal | None, assignment_id: str) -> None:
        """Soft-delete an assignment. Allowed for its publisher and subscriber."""
        assignment = self._load_assignment(assignment_id)
        if not _is_participant(principal, assignment):
            raise PermissionDeniedError("Not allowed to delete this assignment")
        self._store.soft_delete_assignment(assignment.id)
        self._logger.info("Assignment deleted", extra={"assignment_id": assignment.id})

    # ------------------------------------------------------------------
    # Assignment data
    # ------------------------------------------------------------------

    def post_assignment_data(
        self,
        principal: Principal | None,
        assignment_id: str,
        request: HookRequest,
    ) -> dict[str, Any]:
        """Hand the subscriber's submission to the task type while EDITING."""
        assignment = self._load_assignment(assignment_id)
        if principal is None or principal.uid != assignment.subscriber:
            raise PermissionDeniedError("Only the subscriber can post assignment data")
        if assignment.status != AssignmentStatus.EDITING:
            raise InvalidStateError("Assignment data can only be posted while EDITING")
        plugin = require_enabled_plugin(self._registry, assignment.type)

        with FileLedger() as ledger:
            ctx = self._context(ledger)
            plugin.before_post_assignment_data(assignment, request, ctx)
            with self._store.transaction():
                response = plugin.post_assignment_data(assignment, request, ctx)

        self._logger.info(
            "Assignment data posted",
            extra={"assignment_id": assignment.id, "valid": assignment.valid},
        )
        if response is not None:
            return response
        return self.serialize_assignment(
            self._load_assignment(assignment.id),
            principal,
            include_data=request.query_flag("data"),
        )

    def get_assignment_data(
        self,
        principal: Principal | None,
        assignment_id: str,
        request: HookRequest,
    ) -> dict[str, Any]:
        """Plugin view of the assignment for either participant."""
        assignment = self._load_assignment(assignment_id)
        if not _is_participant(principal, assignment):
            raise PermissionDeniedError("Not allowed to read assignment data")
        plugin = require_enabled_plugin(self._registry, assignment.type)

        with FileLedger() as ledger:
            response = plugin.get_assignment_data(assignment, request, self._context(ledger))
        if response is not None:
            return response
        return {"data": plugin.assignment_data_to_plain_object(assignment, principal)}
