"""Registry mapping task-type ids to plugin instances."""

from __future__ import annotations

import importlib
from dataclasses import dataclass, replace
from threading import RLock
from typing import TYPE_CHECKING

from pydantic import ValidationError

from crowdsource_service.core.exceptions import (
    ConfigError,
    IdCollisionError,
    NotFoundError,
)
from crowdsource_service.logging import get_logger
from crowdsource_service.task_types.base import TaskType, TaskTypeMeta

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True)
class RegisteredTaskType:
    """A plugin together with its validated metadata and origin."""

    meta: TaskTypeMeta
    plugin: TaskType
    source: str


def _source_of(plugin: TaskType) -> str:
    cls = type(plugin)
    return f"{cls.__module__}:{cls.__qualname__}"


class TaskTypeRegistry:
    """
    Holds the task types available to the lifecycle engine.

    Writers build a new mapping and swap it in under a lock, so readers
    always see a complete mapping while plugins are added, replaced or
    removed at runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._entries: dict[str, RegisteredTaskType] = {}
        self._logger = get_logger(__name__)

    def register(self, plugin: TaskType) -> TaskTypeMeta:
        """
        Validate and register a plugin.

        Re-registering the same plugin class replaces the previous instance.
        A different class may only take over an id whose holder is disabled.

        Raises:
            ConfigError: meta is missing or malformed
            IdCollisionError: another enabled plugin already holds the id
        """
        try:
            meta = TaskTypeMeta.model_validate(dict(plugin.meta))
        except (ValidationError, TypeError, ValueError) as exc:
            msg = f"Invalid task type meta for {_source_of(plugin)}: {exc}"
            raise ConfigError(msg) from exc

        source = _source_of(plugin)
        with self._lock:
            existing = self._entries.get(meta.id)
            if existing is not None and existing.source != source and existing.meta.enabled:
                msg = f"Task type id collision: {meta.id!r} is held by {existing.source}"
                raise IdCollisionError(msg)
            entries = dict(self._entries)
            entries[meta.id] = RegisteredTaskType(meta=meta, plugin=plugin, source=source)
            self._entries = entries

        self._logger.info(
            "Task type registered",
            extra={"task_type": meta.id, "source": source, "enabled": meta.enabled},
        )
        return meta

    def load(self, paths: Iterable[str]) -> list[str]:
        """
        Instantiate and register plugins from ``module.path:ClassName`` entries.

        Entries that fail to import, construct or register are logged and skipped.
        Returns the ids that were registered.
        """
        loaded: list[str] = []
        for path in paths:
            try:
                plugin = self._instantiate(path)
                meta = self.register(plugin)
            except (ConfigError, ImportError, AttributeError, TypeError) as exc:
                self._logger.error(
                    "Failed to load task type",
                    extra={"path": path, "error": str(exc)},
                )
                continue
            loaded.append(meta.id)
        return loaded

    def _instantiate(self, path: str) -> TaskType:
        module_name, sep, class_name = path.partition(":")
        if not sep or not module_name or not class_name:
            msg = f"Task type path must be 'module:ClassName', got {path!r}"
            raise ConfigError(msg)
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            raise
        except Exception as exc:
            msg = f"{module_name} failed to import: {exc!r}"
            raise ConfigError(msg) from exc
        plugin_class = getattr(module, class_name)
        if not isinstance(plugin_class, type) or not issubclass(plugin_class, TaskType):
            msg = f"{path} is not a TaskType subclass"
            raise ConfigError(msg)
        try:
            plugin: TaskType = plugin_class()
        except Exception as exc:
            msg = f"{path} failed to initialize: {exc!r}"
            raise ConfigError(msg) from exc
        return plugin

    def lookup(self, type_id: str) -> RegisteredTaskType:
        """Return the registered entry for ``type_id``, enabled or not."""
        entry = self._entries.get(type_id)
        if entry is None:
            raise NotFoundError(f"Task type not found: {type_id}")
        return entry

    def get_enabled(self, type_id: str | None) -> TaskType | None:
        """Return the plugin for ``type_id`` if it is registered and enabled."""
        if type_id is None:
            return None
        entry = self._entries.get(type_id)
        if entry is None or not entry.meta.enabled:
            return None
        return entry.plugin

    def list(self) -> list[TaskTypeMeta]:
        """Return metadata for all registered task types, ordered by id."""
        entries = self._entries
        return [entries[type_id].meta for type_id in sorted(entries)]

    def set_enabled(self, type_id: str, enabled: bool) -> TaskTypeMeta:
        """Enable or disable a registered task type."""
        with self._lock:
            entry = self.lookup(type_id)
            meta = entry.meta.model_copy(update={"enabled": enabled})
            entries = dict(self._entries)
            entries[type_id] = replace(entry, meta=meta)
            self._entries = entries
        self._logger.info(
            "Task type toggled",
            extra={"task_type": type_id, "enabled": enabled},
        )
        return meta

    def unregister(self, type_id: str) -> None:
        """Remove a task type."""
        with self._lock:
            self.lookup(type_id)
            entries = dict(self._entries)
            del entries[type_id]
            self._entries = entries
        self._logger.info("Task type unregistered", extra={"task_type": type_id})
