"""Service layer components."""

from crowdsource_service.services.file_ledger import FileLedger
from crowdsource_service.services.task_store import TaskStore
from crowdsource_service.services.thumbnailer import Thumbnailer

__all__ = ["FileLedger", "TaskStore", "Thumbnailer"]
