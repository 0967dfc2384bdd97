"""
Agent executor contract and the default echo executor.

The request handler owns task bookkeeping; an executor only decides what a
task produces. Streaming executors push events onto the queue they are given
and return when they are done. They may raise ``A2AServerError`` to answer
with a specific protocol error.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from .a2a.models import (
    Message,
    OperationNotSupportedError,
    Part,
    Task,
    TaskIdParams,
    TaskNotCancelableError,
    TaskQueryParams,
    TaskSendParams,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TaskStreamEvent,
    TERMINAL_STATES,
    current_timestamp,
)
from .exceptions import A2AServerError
from .streaming_queue import StreamingResponseQueue

logger = logging.getLogger(__name__)


class CancellationToken:
    """Advisory cancellation signal shared between a stream and tasks/cancel."""

    def __init__(self) -> None:
        self._event: Optional[asyncio.Event] = None
        self.reason: Optional[str] = None

    @property
    def _cancel_event(self) -> asyncio.Event:
        """Lazily create the event inside the running loop."""
        if self._event is None:
            self._event = asyncio.Event()
        return self._event

    @property
    def cancelled(self) -> bool:
        return self._event is not None and self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self.cancelled:
            return
        self.reason = reason
        self._cancel_event.set()

    async def wait(self) -> None:
        await self._cancel_event.wait()


class AgentExecutor(ABC):
    """Computes task results; the request handler persists them."""

    @abstractmethod
    async def on_send(self, params: TaskSendParams, task: Task) -> Union[Task, Message]:
        """Handle a non-streaming send and return the updated task or a reply message."""

    @abstractmethod
    async def on_send_subscribe(
        self,
        params: TaskSendParams,
        task: Task,
        events: StreamingResponseQueue[TaskStreamEvent],
        cancel_token: CancellationToken,
    ) -> None:
        """Push status and artifact events for a streaming send."""

    @abstractmethod
    async def on_cancel(
        self,
        params: TaskIdParams,
        task: Task,
        cancel_token: Optional[CancellationToken],
    ) -> Task:
        """Return the task after cancellation, or raise TaskNotCancelable."""

    async def on_resubscribe(
        self,
        params: TaskQueryParams,
        task: Task,
        events: StreamingResponseQueue[TaskStreamEvent],
        cancel_token: CancellationToken,
    ) -> None:
        raise A2AServerError(OperationNotSupportedError())


class EchoAgentExecutor(AgentExecutor):
    """Completes every task immediately, answering with the user's own parts."""

    def _reply(self, params: TaskSendParams) -> Message:
        parts: List[Part] = [part.model_copy(deep=True) for part in params.message.parts]
        return Message(role="agent", parts=parts)

    async def on_send(self, params: TaskSendParams, task: Task) -> Union[Task, Message]:
        reply = self._reply(params)
        completed = task.model_copy(deep=True)
        completed.status = TaskStatus(
            state=TaskState.COMPLETED,
            message=reply,
            timestamp=current_timestamp(),
        )
        completed.history = list(completed.history or []) + [reply]
        logger.debug("Echo executor completed task", extra={"task_id": task.id})
        return completed

    async def on_send_subscribe(
        self,
        params: TaskSendParams,
        task: Task,
        events: StreamingResponseQueue[TaskStreamEvent],
        cancel_token: CancellationToken,
    ) -> None:
        if cancel_token.cancelled:
            return
        events.push(
            TaskStatusUpdateEvent(
                id=task.id,
                status=TaskStatus(
                    state=TaskState.COMPLETED,
                    message=self._reply(params),
                    timestamp=current_timestamp(),
                ),
                final=True,
            )
        )

    async def on_cancel(
        self,
        params: TaskIdParams,
        task: Task,
        cancel_token: Optional[CancellationToken],
    ) -> Task:
        if task.status.state in TERMINAL_STATES:
            raise A2AServerError(
                TaskNotCancelableError(data={"taskId": task.id, "state": task.status.state.value})
            )

        if cancel_token is not None:
            cancel_token.cancel("canceled by client")

        canceled = task.model_copy(deep=True)
        canceled.status = TaskStatus(state=TaskState.CANCELED, timestamp=current_timestamp())
        return canceled

    async def on_resubscribe(
        self,
        params: TaskQueryParams,
        task: Task,
        events: StreamingResponseQueue[TaskStreamEvent],
        cancel_token: CancellationToken,
    ) -> None:
        events.push(
            TaskStatusUpdateEvent(id=task.id, status=task.status.model_copy(deep=True), final=True)
        )
