"""
Task snapshot persistence.

``TaskStore`` is the collaborator the request handler reads and writes task
snapshots through. ``InMemoryTaskStore`` is the volatile reference store.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .a2a.models import Task

logger = logging.getLogger(__name__)


class TaskStore(ABC):
    """Get/save task snapshots by id. Saves are last-write-wins upserts."""

    @abstractmethod
    async def get(self, task_id: str) -> Optional[Task]:
        """Return the stored task, or None when the id is unknown."""

    @abstractmethod
    async def save(self, task: Task) -> None:
        """Insert or replace the snapshot stored under ``task.id``."""


class InMemoryTaskStore(TaskStore):
    """Dictionary-backed store; snapshots are copied in and out."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}

    async def get(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return task.model_copy(deep=True)

    async def save(self, task: Task) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)
        logger.debug(
            "Task snapshot saved",
            extra={"task_id": task.id, "state": task.status.state.value},
        )

    def __len__(self) -> int:
        return len(self._tasks)
