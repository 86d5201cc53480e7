"""SQLite-backed storage for tasks and assignments."""

from __future__ import annotations

import contextlib
import json
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from crowdsource_service.models import (
    Assignment,
    AssignmentStatus,
    Task,
    TaskStatus,
    now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicateIdError(Exception):
    """Raised when inserting a task or assignment whose id already exists."""


class UnknownCursorError(Exception):
    """Raised when a pagination cursor does not name a stored row."""


@dataclass
class TaskFilters:
    """Filters for task listing. ``None`` means unfiltered."""

    search_terms: list[str] = field(default_factory=list)
    name: str | None = None
    publisher: str | None = None
    tag: str | None = None
    type: str | None = None
    status: TaskStatus | None = None
    completed: bool | None = None
    deadline_from: str | None = None
    deadline_to: str | None = None


@dataclass
class AssignmentFilters:
    """Filters for assignment listing. ``None`` means unfiltered."""

    task: str | None = None
    publisher: str | None = None
    subscriber: str | None = None
    status: AssignmentStatus | None = None
    participant: str | None = None
    data_flags: dict[str, bool] = field(default_factory=dict)


_DATA_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _data_path(key: str) -> str:
    if _DATA_KEY_RE.match(key) is None:
        msg = f"Invalid data key: {key!r}"
        raise ValueError(msg)
    return f"$.{key}"


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class TaskStore:
    """
    SQLite-backed storage for tasks and assignments.

    Every read excludes soft-deleted rows. Progress counters and signup
    lists are changed through single conditional UPDATE statements so
    concurrent admissions never lose an update.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "id",
        "publisher",
        "name",
        "description",
        "excerption",
        "tags",
        "type",
        "status",
        "valid",
        "total",
        "remain",
        "deadline",
        "picture",
        "thumbnail",
        "data",
        "deleted",
        "created_at",
        "updated_at",
    )
    _ASSIGNMENT_COLUMNS: tuple[str, ...] = (
        "id",
        "task",
        "publisher",
        "subscriber",
        "type",
        "status",
        "valid",
        "summary",
        "data",
        "deleted",
        "created_at",
        "updated_at",
    )
    _JSON_COLUMNS = frozenset({"tags", "data"})
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _ASSIGNMENT_COLUMNS_SQL = ", ".join(_ASSIGNMENT_COLUMNS)

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    publisher TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    excerption TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    type TEXT,
                    status INTEGER NOT NULL DEFAULT 0,
                    valid INTEGER NOT NULL DEFAULT 0,
                    total INTEGER,
                    remain INTEGER,
                    deadline TEXT,
                    picture TEXT,
                    thumbnail TEXT,
                    data TEXT,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_publisher ON tasks (publisher);
                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status);

                CREATE TABLE IF NOT EXISTS assignments (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    task TEXT NOT NULL,
                    publisher TEXT NOT NULL,
                    subscriber TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status INTEGER NOT NULL DEFAULT 0,
                    valid INTEGER NOT NULL DEFAULT 0,
                    summary TEXT NOT NULL DEFAULT '',
                    data TEXT,
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_assignments_task_subscriber
                    ON assignments (task, subscriber);
                """
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run a block inside one write transaction.

        Re-entrant: nested blocks join the outermost transaction. The block
        must not await, because the lock is held by the running thread.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
                self._db.execute("COMMIT")
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            finally:
                self._depth = 0

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _encode(self, column: str, value: Any) -> Any:
        if column in self._JSON_COLUMNS:
            return None if value is None else json.dumps(value)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (TaskStatus, AssignmentStatus)):
            return int(value)
        return value

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            publisher=row["publisher"],
            name=row["name"],
            description=row["description"],
            excerption=row["excerption"],
            tags=json.loads(row["tags"]),
            type=row["type"],
            status=TaskStatus(row["status"]),
            valid=bool(row["valid"]),
            total=row["total"],
            remain=row["remain"],
            deadline=row["deadline"],
            picture=row["picture"],
            thumbnail=row["thumbnail"],
            data=None if row["data"] is None else json.loads(row["data"]),
            deleted=bool(row["deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_assignment(self, row: sqlite3.Row) -> Assignment:
        return Assignment(
            id=row["id"],
            task=row["task"],
            publisher=row["publisher"],
            subscriber=row["subscriber"],
            type=row["type"],
            status=AssignmentStatus(row["status"]),
            valid=bool(row["valid"]),
            summary=row["summary"],
            data=None if row["data"] is None else json.loads(row["data"]),
            deleted=bool(row["deleted"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _insert(self, table: str, columns: tuple[str, ...], entity: Any) -> None:
        values = tuple(self._encode(column, getattr(entity, column)) for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608
        with self.transaction():
            try:
                self._db.execute(query, values)
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateIdError(f"A row with id={entity.id} already exists") from exc
                raise

    def _update(
        self,
        table: str,
        columns: tuple[str, ...],
        entity_id: str,
        updates: dict[str, Any],
        expected_status: int | None,
    ) -> int:
        if len(updates) == 0:
            return 0

        if any(column not in columns or column in ("id", "seq") for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        updates = {**updates, "updated_at": now_iso()}
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = f"UPDATE {table} SET " + set_clause + " WHERE id = ? AND deleted = 0"  # nosec B608
        params.append(entity_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(int(expected_status))

        with self.transaction():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def _cursor_seq(self, table: str, last_id: str) -> int:
        row = self._db.execute(
            f"SELECT seq FROM {table} WHERE id = ?",  # nosec B608
            (last_id,),
        ).fetchone()
        if row is None:
            raise UnknownCursorError(f"Unknown cursor: {last_id}")
        return int(row["seq"])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task: Task) -> None:
        """Insert a new task row."""
        self._insert("tasks", self._TASK_COLUMNS, task)

    def get_task(self, task_id: str) -> Task | None:
        """Fetch a non-deleted task by id."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks "  # nosec B608
                "WHERE id = ? AND deleted = 0",
                (task_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: TaskStatus | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        return self._update("tasks", self._TASK_COLUMNS, task_id, updates, expected_status)

    def soft_delete_task(self, task_id: str) -> int:
        """Mark a task deleted. Returns the number of affected rows."""
        return self._update("tasks", self._TASK_COLUMNS, task_id, {"deleted": True}, None)

    def _task_where(self, filters: TaskFilters) -> tuple[list[str], list[object]]:
        clauses: list[str] = ["deleted = 0"]
        params: list[object] = []

        if filters.search_terms:
            term_clauses: list[str] = []
            for term in filters.search_terms:
                pattern = _like_pattern(term)
                term_clauses.append(
                    "(name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\' "
                    "OR excerption LIKE ? ESCAPE '\\')"
                )
                params.extend([pattern, pattern, pattern])
            clauses.append("(" + " OR ".join(term_clauses) + ")")
        if filters.name is not None:
            clauses.append("name = ?")
            params.append(filters.name)
        if filters.publisher is not None:
            clauses.append("publisher = ?")
            params.append(filters.publisher)
        if filters.tag is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(tasks.tags) WHERE json_each.value = ?)")
            params.append(filters.tag)
        if filters.type is not None:
            clauses.append("type = ?")
            params.append(filters.type)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(int(filters.status))
        if filters.completed is True:
            clauses.append("(total >= 0 AND remain IS NOT NULL AND remain <= 0)")
        elif filters.completed is False:
            clauses.append("(total IS NULL OR total < 0 OR remain IS NULL OR remain > 0)")
        if filters.deadline_from is not None and filters.deadline_to is not None:
            clauses.append("(deadline >= ? AND deadline <= ?)")
            params.extend([filters.deadline_from, filters.deadline_to])
        elif filters.deadline_to is not None:
            clauses.append("deadline <= ?")
            params.append(filters.deadline_to)
        elif filters.deadline_from is not None:
            clauses.append("(deadline IS NULL OR deadline >= ?)")
            params.append(filters.deadline_from)

        return clauses, params

    def list_tasks(self, filters: TaskFilters, *, limit: int, last_id: str | None) -> list[Task]:
        """List tasks newest first, continuing after ``last_id`` when given."""
        clauses, params = self._task_where(filters)
        with self._lock:
            if last_id is not None:
                clauses.append("seq < ?")
                params.append(self._cursor_seq("tasks", last_id))
            query = (
                f"SELECT {self._TASK_COLUMNS_SQL} FROM tasks WHERE "  # nosec B608
                + " AND ".join(clauses)
                + " ORDER BY seq DESC LIMIT ?"
            )
            params.append(limit)
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def count_tasks_matching(self, filters: TaskFilters) -> int:
        """Count non-deleted tasks matching the filters."""
        clauses, params = self._task_where(filters)
        query = "SELECT COUNT(*) FROM tasks WHERE " + " AND ".join(clauses)  # nosec B608
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count non-deleted tasks grouped by status name."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM tasks WHERE deleted = 0 GROUP BY status"
            ).fetchall()
        return {TaskStatus(row[0]).name: int(row[1]) for row in rows}

    def decrement_remain(self, task_id: str) -> bool:
        """Atomically consume one progress slot. False when none is left."""
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE tasks SET remain = remain - 1, updated_at = ? "
                "WHERE id = ? AND deleted = 0 AND remain IS NOT NULL AND remain > 0",
                (now_iso(), task_id),
            )
        return cursor.rowcount == 1

    def append_to_data_list(self, task_id: str, key: str, value: str) -> bool:
        """
        Atomically append ``value`` to the ``data[key]`` array of a task.

        Returns False when the value is already present, the array does not
        exist, or the task is gone.
        """
        path = _data_path(key)
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE tasks SET data = json_insert(data, ?, ?), updated_at = ? "
                "WHERE id = ? AND deleted = 0 AND json_type(data, ?) = 'array' "
                "AND NOT EXISTS ("
                "SELECT 1 FROM json_each(tasks.data, ?) WHERE json_each.value = ?"
                ")",
                (f"{path}[#]", value, now_iso(), task_id, path, path, value),
            )
        return cursor.rowcount == 1

    def increment_data_counter(self, task_id: str, key: str, *, maximum: int) -> int | None:
        """Atomically increment ``data[key]`` while it is below ``maximum``.

        Returns the new value, or None if the counter is exhausted.
        """
        path = _data_path(key)
        with self.transaction():
            cursor = self._db.execute(
                "UPDATE tasks SET data = json_set(data, ?, json_extract(data, ?) + 1), "
                "updated_at = ? "
                "WHERE id = ? AND deleted = 0 AND json_extract(data, ?) < ?",
                (path, path, now_iso(), task_id, path, maximum),
            )
            if cursor.rowcount != 1:
                return None
            row = self._db.execute(
                "SELECT json_extract(data, ?) FROM tasks WHERE id = ?",
                (path, task_id),
            ).fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def insert_assignment(self, assignment: Assignment) -> None:
        """Insert a new assignment row."""
        self._insert("assignments", self._ASSIGNMENT_COLUMNS, assignment)

    def get_assignment(self, assignment_id: str) -> Assignment | None:
        """Fetch a non-deleted assignment by id."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._ASSIGNMENT_COLUMNS_SQL} FROM assignments "  # nosec B608
                "WHERE id = ? AND deleted = 0",
                (assignment_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_assignment(row)

    def update_assignment(
        self,
        assignment_id: str,
        updates: dict[str, Any],
        *,
        expected_status: AssignmentStatus | None,
    ) -> int:
        """Update assignment columns and return the number of affected rows."""
        return self._update(
            "assignments", self._ASSIGNMENT_COLUMNS, assignment_id, updates, expected_status
        )

    def soft_delete_assignment(self, assignment_id: str) -> int:
        """Mark an assignment deleted. Returns the number of affected rows."""
        return self._update(
            "assignments", self._ASSIGNMENT_COLUMNS, assignment_id, {"deleted": True}, None
        )

    def _assignment_where(self, filters: AssignmentFilters) -> tuple[list[str], list[object]]:
        clauses: list[str] = ["deleted = 0"]
        params: list[object] = []

        for column in ("task", "publisher", "subscriber"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if filters.status is not None:
            clauses.append("status = ?")
            params.append(int(filters.status))
        if filters.participant is not None:
            clauses.append("(publisher = ? OR subscriber = ?)")
            params.extend([filters.participant, filters.participant])
        for key, flag in filters.data_flags.items():
            clauses.append("IFNULL(json_extract(data, ?), 0) = ?")
            params.extend([_data_path(key), 1 if flag else 0])

        return clauses, params

    def list_assignments(
        self,
        filters: AssignmentFilters,
        *,
        limit: int,
        last_id: str | None,
    ) -> list[Assignment]:
        """List assignments newest first, continuing after ``last_id`` when given."""
        clauses, params = self._assignment_where(filters)
        with self._lock:
            if last_id is not None:
                clauses.append("seq < ?")
                params.append(self._cursor_seq("assignments", last_id))
            query = (
                f"SELECT {self._ASSIGNMENT_COLUMNS_SQL} FROM assignments WHERE "  # nosec B608
                + " AND ".join(clauses)
                + " ORDER BY seq DESC LIMIT ?"
            )
            params.append(limit)
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_assignment(row) for row in rows]

    def count_assignments_matching(self, filters: AssignmentFilters) -> int:
        """Count non-deleted assignments matching the filters."""
        clauses, params = self._assignment_where(filters)
        query = "SELECT COUNT(*) FROM assignments WHERE " + " AND ".join(clauses)  # nosec B608
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
