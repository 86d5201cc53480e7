"""Shared test helpers: principals, config files, entities and managers."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from PIL import Image

from crowdsource_service.models import Assignment, Principal, Role, Task, now_iso
from crowdsource_service.services.assignment_manager import AssignmentManager
from crowdsource_service.services.task_manager import TaskManager
from crowdsource_service.services.task_store import TaskStore
from crowdsource_service.services.thumbnailer import Thumbnailer
from crowdsource_service.task_types.base import HookRequest
from crowdsource_service.task_types.guess_number import GuessNumberTaskType
from crowdsource_service.task_types.mark_image import MarkImageTaskType
from crowdsource_service.task_types.registry import TaskTypeRegistry

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------
PUBLISHER = Principal(uid="u-publisher", role=Role.PUBLISHER)
OTHER_PUBLISHER = Principal(uid="u-other-publisher", role=Role.PUBLISHER)
SUBSCRIBER = Principal(uid="u-subscriber", role=Role.SUBSCRIBER)
OTHER_SUBSCRIBER = Principal(uid="u-other-subscriber", role=Role.SUBSCRIBER)
TASK_ADMIN = Principal(uid="u-task-admin", role=Role.TASK_ADMIN)
SITE_ADMIN = Principal(uid="u-site-admin", role=Role.SITE_ADMIN)

TOKENS: dict[str, Principal] = {
    "publisher-token": PUBLISHER,
    "other-publisher-token": OTHER_PUBLISHER,
    "subscriber-token": SUBSCRIBER,
    "other-subscriber-token": OTHER_SUBSCRIBER,
    "task-admin-token": TASK_ADMIN,
    "site-admin-token": SITE_ADMIN,
}

DEFAULT_PLUGINS = (
    "crowdsource_service.task_types.guess_number:GuessNumberTaskType",
    "crowdsource_service.task_types.mark_image:MarkImageTaskType",
)


def auth(token: str) -> dict[str, str]:
    """Authorization header for one of the TOKENS."""
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
def write_config(
    tmp_path: Path,
    *,
    plugins: tuple[str, ...] = DEFAULT_PLUGINS,
    max_file_size: int = 1048576,
    max_body_size: int = 1048576,
) -> Path:
    """Write a complete config.yaml rooted in ``tmp_path`` and return its path."""
    plugin_lines = "\n".join(f'    - "{plugin}"' for plugin in plugins)
    config_content = f"""\
service:
  name: "crowdsource"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{tmp_path / "test.db"}"
identity:
  base_url: "http://localhost:8001"
  verify_token_path: "/tokens/verify"
  timeout_seconds: 10
uploads:
  directory: "{tmp_path / "uploads"}"
  max_file_size: {max_file_size}
  thumbnail_width: 32
  thumbnail_height: 32
request:
  max_body_size: {max_body_size}
listing:
  default_limit: 10
  max_limit: 49
task_types:
  plugins:
{plugin_lines}
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
def make_task(task_id: str = "t-1", **overrides: Any) -> Task:
    """Build a Task with sensible defaults."""
    now = now_iso()
    fields: dict[str, Any] = {
        "id": task_id,
        "publisher": PUBLISHER.uid,
        "name": f"Task {task_id}",
        "description": "Description",
        "excerption": "Excerption",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Task(**fields)


def make_assignment(
    assignment_id: str = "a-1",
    task_id: str = "t-1",
    **overrides: Any,
) -> Assignment:
    """Build an Assignment with sensible defaults."""
    now = now_iso()
    fields: dict[str, Any] = {
        "id": assignment_id,
        "task": task_id,
        "publisher": PUBLISHER.uid,
        "subscriber": SUBSCRIBER.uid,
        "type": "guess-number",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Assignment(**fields)


def png_bytes(size: tuple[int, int] = (64, 48), color: str = "red") -> bytes:
    """Encode a solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Managers
# ---------------------------------------------------------------------------
@dataclass
class Engine:
    """Managers wired to a temporary store, as the lifespan wires them."""

    store: TaskStore
    registry: TaskTypeRegistry
    tasks: TaskManager
    assignments: AssignmentManager
    upload_directory: Path


def build_engine(tmp_path: Path) -> Engine:
    """Wire both managers to a fresh database and upload directory."""
    upload_directory = tmp_path / "uploads"
    upload_directory.mkdir(parents=True, exist_ok=True)
    store = TaskStore(db_path=str(tmp_path / "engine.db"))
    registry = TaskTypeRegistry()
    registry.register(GuessNumberTaskType())
    registry.register(MarkImageTaskType())
    tasks = TaskManager(
        store=store,
        registry=registry,
        thumbnailer=Thumbnailer(output_directory=str(upload_directory / "thumbnails")),
        upload_directory=str(upload_directory),
        thumbnail_size=(32, 32),
        default_limit=10,
        max_limit=49,
    )
    assignments = AssignmentManager(
        store=store,
        registry=registry,
        upload_directory=str(upload_directory),
        default_limit=10,
        max_limit=49,
    )
    return Engine(
        store=store,
        registry=registry,
        tasks=tasks,
        assignments=assignments,
        upload_directory=upload_directory,
    )


def publish_task(engine: Engine, type_id: str, data: dict[str, Any]) -> str:
    """Create a task, post its data and walk it to PUBLISHED. Returns the task id."""
    created = engine.tasks.create_task(
        PUBLISHER,
        {"name": "t", "description": "d", "excerption": "e", "type": type_id},
    )
    task_id: str = created["id"]
    engine.tasks.post_task_data(
        PUBLISHER, task_id, HookRequest(principal=PUBLISHER, body=data)
    )
    engine.tasks.patch_task(PUBLISHER, task_id, {"status": "SUBMITTED"})
    engine.tasks.patch_task(TASK_ADMIN, task_id, {"status": "ADMITTED"})
    engine.tasks.patch_task(PUBLISHER, task_id, {"status": "PUBLISHED"})
    return task_id
