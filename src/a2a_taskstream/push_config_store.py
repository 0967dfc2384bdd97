"""
Storage for per-task push notification configurations.

Configurations are only recorded and returned; nothing here delivers
notifications.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Optional

from .a2a.models import TaskPushNotificationConfig


class PushNotificationConfigStore(ABC):
    @abstractmethod
    async def set_config(self, config: TaskPushNotificationConfig) -> None:
        ...

    @abstractmethod
    async def get_config(self, task_id: str) -> Optional[TaskPushNotificationConfig]:
        ...


class InMemoryPushNotificationConfigStore(PushNotificationConfigStore):
    def __init__(self) -> None:
        self._configs: Dict[str, TaskPushNotificationConfig] = {}

    async def set_config(self, config: TaskPushNotificationConfig) -> None:
        self._configs[config.id] = config.model_copy(deep=True)

    async def get_config(self, task_id: str) -> Optional[TaskPushNotificationConfig]:
        config = self._configs.get(task_id)
        return config.model_copy(deep=True) if config is not None else None
