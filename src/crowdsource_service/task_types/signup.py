"""Signup sub-flow shared by task types that gate work behind registration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from crowdsource_service.core.exceptions import InvalidStateError
from crowdsource_service.models import AssignmentStatus, Role, TaskStatus, has_role
from crowdsource_service.schemas import parse_model
from crowdsource_service.services.task_store import AssignmentFilters
from crowdsource_service.task_types.base import TaskType

if TYPE_CHECKING:
    from crowdsource_service.models import Assignment, Principal, Task
    from crowdsource_service.task_types.base import HookContext, HookRequest

SIGNED_USERS = "signedUsers"
BLOCKED_USERS = "blockedUsers"

_OPTION_KEYS = ("submitMultipleTimes", "signupMultipleTimes", "noSignup", "submitAutoPass")


class SignupOptions(BaseModel):
    """Participation options accepted in task data by signup-aware task types."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, strict=True)
    submit_multiple_times: bool = Field(default=False, alias="submitMultipleTimes")
    signup_multiple_times: bool = Field(default=False, alias="signupMultipleTimes")
    no_signup: bool = Field(default=False, alias="noSignup")
    submit_auto_pass: bool = Field(default=False, alias="submitAutoPass")

    def to_task_data(self) -> dict[str, Any]:
        """Option flags plus the signup lists they require."""
        data: dict[str, Any] = self.model_dump(
            by_alias=True, include=set(SignupOptions.model_fields)
        )
        if not self.no_signup:
            data[SIGNED_USERS] = []
            if not self.signup_multiple_times:
                data[BLOCKED_USERS] = []
        return data


class CreateAssignmentPayload(BaseModel):
    """Optional payload of a create-assignment request."""

    model_config = ConfigDict(extra="forbid", strict=True)
    signup: bool = False


def _option(task: Task, key: str) -> bool:
    return bool((task.data or {}).get(key, False))


def is_signup(assignment: Assignment) -> bool:
    return bool((assignment.data or {}).get("signup", False))


class SignupTaskType(TaskType):
    """
    Task type with an optional signup step before work assignments.

    A signup assignment is created already SUBMITTED; the publisher admits
    it (the subscriber joins ``signedUsers``) or rejects it (the subscriber
    joins ``blockedUsers`` unless re-signup is allowed). Work assignments
    are gated on capacity, deadline, signup and duplicate checks.
    Subclasses implement ``start_work_assignment`` and the data hooks.
    """

    signup_summary = "Signup"

    # ------------------------------------------------------------------
    # Task data helpers
    # ------------------------------------------------------------------

    def options_to_plain_object(self, task: Task, principal: Principal | None) -> dict[str, Any]:
        data = task.data or {}
        result = {key: data[key] for key in _OPTION_KEYS if key in data}
        if principal is not None and principal.uid == task.publisher:
            for key in (SIGNED_USERS, BLOCKED_USERS):
                if key in data:
                    result[key] = list(data[key])
        return result

    def user_status(self, task: Task, principal: Principal, ctx: HookContext) -> dict[str, bool]:
        """Describe where the subscriber stands in the signup flow of ``task``."""
        data = task.data or {}
        status: dict[str, bool] = {}
        if data.get("noSignup", False):
            status["signed"] = True
            status["blocked"] = False
        else:
            status["signed"] = principal.uid in data.get(SIGNED_USERS, [])
            if not status["signed"]:
                status["signing"] = self._has_pending_signup(task, principal.uid, ctx)
            status["blocked"] = not data.get("signupMultipleTimes", False) and (
                principal.uid in data.get(BLOCKED_USERS, [])
            )
        if status["signed"] and not data.get("submitMultipleTimes", False):
            status["created"] = self._has_work_assignment(task, principal.uid, ctx)
        return status

    def get_task_data(
        self,
        task: Task,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        principal = request.principal
        if (
            principal is None
            or not has_role(principal, Role.SUBSCRIBER)
            or task.status != TaskStatus.PUBLISHED
        ):
            return None
        return {
            "data": {
                "userStatus": self.user_status(task, principal, ctx),
                **self.task_data_to_plain_object(task, principal),
            }
        }

    # ------------------------------------------------------------------
    # Assignment creation
    # ------------------------------------------------------------------

    def _has_pending_signup(self, task: Task, uid: str, ctx: HookContext) -> bool:
        filters = AssignmentFilters(
            task=task.id,
            subscriber=uid,
            status=AssignmentStatus.SUBMITTED,
            data_flags={"signup": True},
        )
        return ctx.store.count_assignments_matching(filters) > 0

    def _has_work_assignment(self, task: Task, uid: str, ctx: HookContext) -> bool:
        filters = AssignmentFilters(task=task.id, subscriber=uid, data_flags={"signup": False})
        return ctx.store.count_assignments_matching(filters) > 0

    def create_assignment(
        self,
        task: Task,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        payload = CreateAssignmentPayload()
        if request.body is not None:
            payload = parse_model(
                CreateAssignmentPayload, request.body, "Invalid assignment payload"
            )
        if payload.signup:
            self._create_signup(task, assignment, ctx)
        else:
            self._check_work_allowed(task, assignment, ctx)
            self.start_work_assignment(task, assignment, request, ctx)
        return None

    def _create_signup(self, task: Task, assignment: Assignment, ctx: HookContext) -> None:
        data = task.data or {}
        uid = assignment.subscriber
        if data.get("noSignup", False):
            raise InvalidStateError("Task requires no signup")
        if uid in data.get(SIGNED_USERS, []):
            raise InvalidStateError("User has already signed up")
        if not data.get("signupMultipleTimes", False) and uid in data.get(BLOCKED_USERS, []):
            raise InvalidStateError("User has been blocked")
        if self._has_pending_signup(task, uid, ctx):
            raise InvalidStateError("User has already created a signup request")
        assignment.valid = True
        assignment.summary = self.signup_summary
        assignment.status = AssignmentStatus.SUBMITTED
        assignment.data = {"signup": True}

    def _check_work_allowed(self, task: Task, assignment: Assignment, ctx: HookContext) -> None:
        data = task.data or {}
        uid = assignment.subscriber
        if not task.has_capacity or task.deadline_passed():
            raise InvalidStateError("Task has completed")
        if not data.get("noSignup", False) and uid not in data.get(SIGNED_USERS, []):
            raise InvalidStateError("User has not signed up")
        if not data.get("submitMultipleTimes", False) and self._has_work_assignment(
            task, uid, ctx
        ):
            raise InvalidStateError("User has already created an assignment")

    def start_work_assignment(
        self,
        task: Task,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        """Fill in ``data`` and ``summary`` of a new work assignment."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def assignment_status_changed(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        task = ctx.store.get_task(assignment.task)
        if task is None:
            raise InvalidStateError("Task deleted")

        if is_signup(assignment):
            if assignment.status == AssignmentStatus.ADMITTED:
                ctx.store.append_to_data_list(task.id, SIGNED_USERS, assignment.subscriber)
            elif assignment.status == AssignmentStatus.REJECTED and not _option(
                task, "signupMultipleTimes"
            ):
                ctx.store.append_to_data_list(task.id, BLOCKED_USERS, assignment.subscriber)
            return

        if _option(task, "submitAutoPass") and assignment.status == AssignmentStatus.SUBMITTED:
            assignment.status = AssignmentStatus.ADMITTED
        if (
            task.total is not None
            and task.total > 0
            and assignment.status == AssignmentStatus.ADMITTED
            and not ctx.store.decrement_remain(task.id)
        ):
            raise InvalidStateError("Task has no remaining capacity")
