"""Domain types: principals, roles, statuses, tasks and assignments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, IntFlag
from typing import Any


class Role(IntFlag):
    """Role bitmask. Bit positions are part of the persisted contract."""

    SUBSCRIBER = 1
    PUBLISHER = 2
    TASK_ADMIN = 4
    USER_ADMIN = 8
    SITE_ADMIN = 16


class TaskStatus(IntEnum):
    """Task lifecycle status, persisted as its integer value."""

    EDITING = 0
    SUBMITTED = 1
    ADMITTED = 2
    PUBLISHED = 3


class AssignmentStatus(IntEnum):
    """Assignment lifecycle status, persisted as its integer value."""

    EDITING = 0
    SUBMITTED = 1
    ADMITTED = 2
    REJECTED = 3


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by the identity service."""

    uid: str
    role: Role

    def has_role(self, role: Role) -> bool:
        """Return True if every bit of ``role`` is set."""
        return (self.role & role) == role

    def has_any_role(self, role: Role) -> bool:
        """Return True if any bit of ``role`` is set."""
        return bool(self.role & role)


def has_role(principal: Principal | None, role: Role) -> bool:
    """Role check that treats anonymous callers as having no roles."""
    return principal is not None and principal.has_role(role)


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def to_iso(value: datetime) -> str:
    """Normalize a datetime to the stored UTC ISO 8601 form."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse a stored ISO 8601 timestamp."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class Task:
    """A unit of work a publisher offers to subscribers."""

    id: str
    publisher: str
    name: str
    description: str
    excerption: str
    created_at: str
    updated_at: str
    tags: list[str] = field(default_factory=list)
    type: str | None = None
    status: TaskStatus = TaskStatus.EDITING
    valid: bool = False
    total: int | None = None
    remain: int | None = None
    deadline: str | None = None
    picture: str | None = None
    thumbnail: str | None = None
    data: dict[str, Any] | None = None
    deleted: bool = False

    @property
    def completed(self) -> bool:
        """A bounded task is completed once every slot has been admitted."""
        return (
            self.total is not None
            and self.total >= 0
            and self.remain is not None
            and self.remain <= 0
        )

    @property
    def has_capacity(self) -> bool:
        """True for unbounded tasks or bounded tasks with slots left."""
        if self.total is None or self.total < 0:
            return True
        return self.remain is not None and self.remain > 0

    def deadline_passed(self, now: datetime | None = None) -> bool:
        """True when a deadline is set and lies in the past."""
        if self.deadline is None:
            return False
        current = now if now is not None else datetime.now(UTC)
        return current > parse_iso(self.deadline)


@dataclass
class Assignment:
    """One subscriber's attempt at a task."""

    id: str
    task: str
    publisher: str
    subscriber: str
    type: str
    created_at: str
    updated_at: str
    status: AssignmentStatus = AssignmentStatus.EDITING
    valid: bool = False
    summary: str = ""
    data: dict[str, Any] | None = None
    deleted: bool = False
