"""Task-type plugin contract and the values passed to its hooks."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from crowdsource_service.models import Assignment, Principal, Task
    from crowdsource_service.services.file_ledger import FileLedger
    from crowdsource_service.services.task_store import TaskStore


class TaskTypeMeta(BaseModel):
    """Descriptive metadata every task type declares."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    id: str = Field(pattern=r"^[-_a-zA-Z\d]+$")
    name: str = Field(min_length=1)
    description: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class UploadedFile:
    """A file received in a multipart request."""

    field_name: str
    filename: str
    content_type: str
    content: bytes


@dataclass
class HookRequest:
    """The caller, payload and query of the operation that invoked a hook."""

    principal: Principal | None
    body: dict[str, Any] | None
    query: Mapping[str, str] = field(default_factory=dict)
    files: list[UploadedFile] = field(default_factory=list)
    prepared: dict[str, Any] = field(default_factory=dict)

    def query_flag(self, name: str) -> bool:
        """True when the query parameter is the string ``true``."""
        return self.query.get(name) == "true"

    def files_for(self, field_name: str) -> list[UploadedFile]:
        return [upload for upload in self.files if upload.field_name == field_name]


@dataclass
class HookContext:
    """Collaborators available to hooks during one operation."""

    store: TaskStore
    upload_directory: Path
    ledger: FileLedger

    def make_work_directory(self) -> str:
        """Create a fresh directory under the upload directory and return its name."""
        name = uuid.uuid4().hex
        path = self.upload_directory / name
        path.mkdir(parents=True, exist_ok=False)
        self.ledger.track(path)
        return name

    def retire_work_directory(self, name: str | None) -> None:
        """Schedule a previous work directory for removal after success."""
        if name:
            self.ledger.supersede(self.upload_directory / name)


class TaskType:
    """
    Base class for task-type plugins.

    Subclasses declare ``meta`` (validated into TaskTypeMeta on registration)
    and override any subset of the hooks below. Every hook runs inside the
    owning operation's transaction; raising aborts the operation with
    nothing persisted. Hooks returning a dict produce the response body
    verbatim; returning None lets the engine build the default response.
    """

    meta: ClassVar[Mapping[str, Any]] = {}

    def task_data_to_plain_object(self, task: Task, principal: Principal | None) -> dict[str, Any]:
        """Project ``task.data`` for the given viewer."""
        return {}

    def before_post_task_data(self, task: Task, request: HookRequest, ctx: HookContext) -> None:
        """Pre-hook run before ``post_task_data``, outside the transaction."""

    def post_task_data(
        self,
        task: Task,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        """Validate and persist ``task.data``, ``valid``, ``total`` and ``remain``."""
        return None

    def get_task_data(
        self,
        task: Task,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        return None

    def assignment_data_to_plain_object(
        self,
        assignment: Assignment,
        principal: Principal | None,
    ) -> dict[str, Any]:
        """Project ``assignment.data`` for the given viewer."""
        return {}

    def create_assignment(
        self,
        task: Task,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        """Populate the skeleton in place, or persist it and return a response."""
        return None

    def assignment_status_changed(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        """Apply cross-entity effects of a proposed status; may rewrite ``assignment.status``."""

    def before_post_assignment_data(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> None:
        """Pre-hook run before ``post_assignment_data``, outside the transaction."""

    def post_assignment_data(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        return None

    def get_assignment_data(
        self,
        assignment: Assignment,
        request: HookRequest,
        ctx: HookContext,
    ) -> dict[str, Any] | None:
        return None
