"""Per-request ledger of files created or replaced by an operation."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from crowdsource_service.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType


def remove_path(path: Path) -> bool:
    """Delete a file or directory tree, logging instead of raising on failure."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as exc:
        get_logger(__name__).error(
            "Failed to delete path",
            extra={"path": str(path), "error": str(exc)},
        )
        return False
    return True


class FileLedger:
    """
    Tracks filesystem side effects of one operation.

    Files created by the operation are ``track``-ed and removed if the
    operation fails. Files the operation replaces are ``supersede``-d and
    removed only once the operation has succeeded.
    """

    def __init__(self) -> None:
        self._created: list[Path] = []
        self._superseded: list[Path] = []

    @property
    def created(self) -> tuple[Path, ...]:
        return tuple(self._created)

    @property
    def superseded(self) -> tuple[Path, ...]:
        return tuple(self._superseded)

    def track(self, path: Path) -> Path:
        """Record a path created by the current operation."""
        self._created.append(path)
        return path

    def supersede(self, path: Path) -> None:
        """Record a path to delete once the current operation succeeds."""
        self._superseded.append(path)

    def commit(self) -> None:
        """Operation succeeded: drop superseded files, keep created ones."""
        for path in self._superseded:
            remove_path(path)
        self._created.clear()
        self._superseded.clear()

    def rollback(self) -> None:
        """Operation failed: drop created files, keep superseded ones."""
        for path in reversed(self._created):
            remove_path(path)
        self._created.clear()
        self._superseded.clear()

    def __enter__(self) -> FileLedger:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
