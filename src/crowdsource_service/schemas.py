"""Pydantic request/response models for the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crowdsource_service.core.exceptions import SchemaError

TaskStatusName = Literal["EDITING", "SUBMITTED", "ADMITTED", "PUBLISHED"]
AssignmentStatusName = Literal["EDITING", "SUBMITTED", "ADMITTED", "REJECTED"]


def parse_model(model: type[BaseModel], data: Any, message: str) -> Any:
    """Validate ``data`` against ``model``, raising SchemaError on failure."""
    if not isinstance(data, dict):
        raise SchemaError(message, [{"loc": "", "msg": "Expected an object", "type": "dict_type"}])
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise SchemaError.from_validation_error(message, exc) from exc


def _unique_tags(tags: list[str] | None) -> list[str] | None:
    if tags is not None and len(set(tags)) != len(tags):
        msg = "tags must be unique"
        raise ValueError(msg)
    return tags


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    total_assignments: int
    task_types: int


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class TaskCreateRequest(BaseModel):
    """Body of POST /tasks."""

    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    description: str
    excerption: str = Field(max_length=140)
    deadline: datetime | None = None
    type: str | None = Field(default=None, min_length=1)
    tags: list[str] = Field(default_factory=list, max_length=5)

    _check_tags = field_validator("tags")(_unique_tags)


class TaskPatchRequest(BaseModel):
    """Body of PATCH /tasks/{task_id}. Only fields present are applied."""

    model_config = ConfigDict(extra="forbid")
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    excerption: str | None = Field(default=None, max_length=140)
    deadline: datetime | None = None
    type: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = Field(default=None, max_length=5)
    status: TaskStatusName | None = None

    _check_tags = field_validator("tags")(_unique_tags)


class TaskQuery(BaseModel):
    """Query parameters of GET /tasks."""

    model_config = ConfigDict(extra="forbid")
    search: str | None = None
    name: str | None = None
    publisher: str | None = None
    tag: str | None = None
    type: str | None = None
    status: TaskStatusName | None = None
    completed: bool | None = None
    deadline_from: datetime | None = None
    deadline_to: datetime | None = None
    limit: int | None = Field(default=None, ge=1)
    last_id: str | None = None
    populate: bool = False
    count: bool = False


class AssignmentCreateRequest(BaseModel):
    """Body of POST /assignments."""

    model_config = ConfigDict(extra="forbid")
    task: str = Field(min_length=1)
    data: dict[str, Any] | None = None


class AssignmentPatchRequest(BaseModel):
    """Body of PATCH /assignments/{assignment_id}."""

    model_config = ConfigDict(extra="forbid")
    status: AssignmentStatusName


class AssignmentQuery(BaseModel):
    """Query parameters of GET /assignments."""

    model_config = ConfigDict(extra="forbid")
    task: str | None = None
    publisher: str | None = None
    subscriber: str | None = None
    status: AssignmentStatusName | None = None
    limit: int | None = Field(default=None, ge=1)
    last_id: str | None = None
    populate: bool = False
    count: bool = False


class TaskTypePatchRequest(BaseModel):
    """Body of PATCH /task-types/{type_id}."""

    model_config = ConfigDict(extra="forbid", strict=True)
    enabled: bool
