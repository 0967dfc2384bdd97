"""
A2A request dispatcher and task state machine.

Routes JSON-RPC methods to the agent executor, keeps task snapshots in the
task store in step with what the executor produces, and turns streaming
executions into an outbound queue of JSON-RPC envelopes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .a2a.models import (
    Artifact,
    InternalError,
    InvalidParamsError,
    JSONRPCError,
    JSONRPCRequest,
    Message,
    MethodNotFoundError,
    OperationNotSupportedError,
    PushNotificationNotSupportedError,
    StreamingNotSupportedError,
    Task,
    TaskArtifactUpdateEvent,
    TaskIdParams,
    TaskNotFoundError,
    TaskPushNotificationConfig,
    TaskQueryParams,
    TaskSendParams,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
    TaskStreamEvent,
    current_timestamp,
    error_response,
    success_response,
)
from .agent_executor import AgentExecutor, CancellationToken
from .exceptions import A2AServerError
from .push_config_store import PushNotificationConfigStore
from .streaming_queue import StreamingResponseQueue
from .task_store import InMemoryTaskStore, TaskStore

ParamsT = TypeVar("ParamsT", bound=BaseModel)

EventProducer = Callable[
    [StreamingResponseQueue[TaskStreamEvent], CancellationToken], Awaitable[None]
]


class A2ARequestHandler:
    """Dispatches A2A JSON-RPC methods against an executor and a task store."""

    def __init__(
        self,
        agent_executor: AgentExecutor,
        task_store: Optional[TaskStore] = None,
        push_config_store: Optional[PushNotificationConfigStore] = None,
        streaming_enabled: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.agent_executor = agent_executor
        self.task_store = task_store if task_store is not None else InMemoryTaskStore()
        self.push_config_store = push_config_store
        self.streaming_enabled = streaming_enabled
        self.logger = logger or logging.getLogger(__name__)

        self._background_tasks: Set[asyncio.Task] = set()
        self._active_tokens: Dict[str, CancellationToken] = {}

        self._unary_methods: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "tasks/send": self._on_send,
            "message/send": self._on_send,
            "tasks/get": self._on_get,
            "tasks/cancel": self._on_cancel,
            "tasks/pushNotificationConfig/set": self._on_set_push_config,
            "tasks/pushNotificationConfig/get": self._on_get_push_config,
        }
        self._streaming_methods: Dict[
            str,
            Callable[[Any, Dict[str, Any], StreamingResponseQueue[Dict[str, Any]]], Awaitable[None]],
        ] = {
            "tasks/sendSubscribe": self._on_send_subscribe,
            "message/sendStream": self._on_send_subscribe,
            "tasks/resubscribe": self._on_resubscribe,
        }

    def is_streaming_method(self, method: str) -> bool:
        return method in self._streaming_methods

    # ===== UNARY METHODS =====

    async def handle(self, request: JSONRPCRequest) -> Dict[str, Any]:
        """Execute a non-streaming method and return its JSON-RPC envelope."""
        handler = self._unary_methods.get(request.method)
        if handler is None:
            self.logger.warning("Method not found", extra={"method": request.method})
            return error_response(request.id, MethodNotFoundError(data={"method": request.method}))

        self.logger.info(
            "Processing A2A request",
            extra={"method": request.method, "request_id": request.id},
        )
        try:
            result = await handler(request.params or {})
        except A2AServerError as exc:
            self.logger.info(
                "A2A request answered with protocol error",
                extra={"method": request.method, "code": exc.error.code},
            )
            return error_response(request.id, exc.error)
        except Exception as exc:
            self.logger.exception(
                "Unexpected error in method handler",
                extra={"method": request.method, "error": str(exc)},
            )
            return error_response(request.id, InternalError(message=f"Internal error: {exc}"))

        return success_response(request.id, result)

    async def _on_send(self, raw_params: Dict[str, Any]) -> Any:
        params = self._parse_params(TaskSendParams, raw_params)
        task = await self._resolve_task(params)

        try:
            result = await self.agent_executor.on_send(params, task.model_copy(deep=True))
        except A2AServerError:
            raise
        except Exception as exc:
            await self._mark_failed(task, exc)
            raise

        if isinstance(result, Message):
            task.history = list(task.history or []) + [result]
            task.status = TaskStatus(
                state=TaskState.COMPLETED,
                message=result,
                timestamp=current_timestamp(),
            )
            await self.task_store.save(task)
            return result

        if result.history is None:
            result.history = task.history
        await self.task_store.save(result)
        return self._trim_history(result, params.historyLength)

    async def _on_get(self, raw_params: Dict[str, Any]) -> Task:
        params = self._parse_params(TaskQueryParams, raw_params)
        task = await self._require_task(params.id)
        return self._trim_history(task, params.historyLength)

    async def _on_cancel(self, raw_params: Dict[str, Any]) -> Task:
        params = self._parse_params(TaskIdParams, raw_params)
        task = await self._require_task(params.id)

        token = self._active_tokens.get(task.id)
        canceled = await self.agent_executor.on_cancel(params, task, token)
        await self.task_store.save(canceled)
        self.logger.info(
            "Task canceled",
            extra={"task_id": task.id, "had_active_stream": token is not None},
        )
        return canceled

    async def _on_set_push_config(self, raw_params: Dict[str, Any]) -> TaskPushNotificationConfig:
        store = self._require_push_config_store()
        config = self._parse_params(TaskPushNotificationConfig, raw_params)
        await self._require_task(config.id)
        await store.set_config(config)
        return config

    async def _on_get_push_config(
        self, raw_params: Dict[str, Any]
    ) -> Optional[TaskPushNotificationConfig]:
        store = self._require_push_config_store()
        params = self._parse_params(TaskIdParams, raw_params)
        await self._require_task(params.id)
        return await store.get_config(params.id)

    # ===== STREAMING METHODS =====

    async def open_stream(self, request: JSONRPCRequest) -> StreamingResponseQueue[Dict[str, Any]]:
        """Start a streaming method and return the queue its envelopes arrive on.

        The queue is always closed eventually: after the final status event,
        after an error envelope, or when the consumer goes away.
        """
        outbound: StreamingResponseQueue[Dict[str, Any]] = StreamingResponseQueue()

        handler = self._streaming_methods.get(request.method)
        if handler is None:
            outbound.push(
                error_response(request.id, MethodNotFoundError(data={"method": request.method}))
            )
            outbound.close()
            return outbound

        if not self.streaming_enabled:
            outbound.push(error_response(request.id, StreamingNotSupportedError()))
            outbound.close()
            return outbound

        self.logger.info(
            "Opening A2A stream",
            extra={"method": request.method, "request_id": request.id},
        )
        try:
            await handler(request.id, request.params or {}, outbound)
        except A2AServerError as exc:
            outbound.push(error_response(request.id, exc.error))
            outbound.close()
        except Exception as exc:
            self.logger.exception(
                "Unexpected error opening stream",
                extra={"method": request.method, "error": str(exc)},
            )
            outbound.push(error_response(request.id, InternalError(message=f"Internal error: {exc}")))
            outbound.close()
        return outbound

    async def _on_send_subscribe(
        self,
        request_id: Any,
        raw_params: Dict[str, Any],
        outbound: StreamingResponseQueue[Dict[str, Any]],
    ) -> None:
        params = self._parse_params(TaskSendParams, raw_params)
        task = await self._resolve_task(params)
        executor_task = task.model_copy(deep=True)

        async def produce(events, token):
            await self.agent_executor.on_send_subscribe(params, executor_task, events, token)

        self._start_cycle(request_id, task, outbound, produce)

    async def _on_resubscribe(
        self,
        request_id: Any,
        raw_params: Dict[str, Any],
        outbound: StreamingResponseQueue[Dict[str, Any]],
    ) -> None:
        params = self._parse_params(TaskQueryParams, raw_params)
        task = await self._require_task(params.id)
        executor_task = task.model_copy(deep=True)

        async def produce(events, token):
            await self.agent_executor.on_resubscribe(params, executor_task, events, token)

        self._start_cycle(request_id, task, outbound, produce)

    def _start_cycle(
        self,
        request_id: Any,
        task: Task,
        outbound: StreamingResponseQueue[Dict[str, Any]],
        produce: EventProducer,
    ) -> None:
        token = CancellationToken()
        self._active_tokens[task.id] = token
        self._track(self._pump(request_id, task, outbound, produce, token))

    async def _pump(
        self,
        request_id: Any,
        task: Task,
        outbound: StreamingResponseQueue[Dict[str, Any]],
        produce: EventProducer,
        token: CancellationToken,
    ) -> None:
        """Drive one streaming cycle from executor events to outbound envelopes."""
        task_id = task.id
        events: StreamingResponseQueue[TaskStreamEvent] = StreamingResponseQueue()

        async def run_executor() -> Tuple[Optional[JSONRPCError], bool]:
            try:
                await produce(events, token)
                return None, False
            except A2AServerError as exc:
                return exc.error, False
            except Exception as exc:
                self.logger.exception(
                    "Agent executor failed during stream",
                    extra={"task_id": task_id, "error": str(exc)},
                )
                return InternalError(message=f"Internal error: {exc}"), True
            finally:
                events.close()

        producer = self._track(run_executor())
        final_seen = False
        try:
            async for event in events:
                if final_seen:
                    self.logger.warning(
                        "Dropping event received after final status",
                        extra={"task_id": task_id, "event_type": event.type},
                    )
                    continue
                if event.id != task_id:
                    self.logger.warning(
                        "Dropping event addressed to another task",
                        extra={"task_id": task_id, "event_task_id": event.id, "event_type": event.type},
                    )
                    continue

                task = self._apply_event(task, event)
                await self.task_store.save(task)
                if isinstance(event, TaskStatusUpdateEvent) and event.final:
                    final_seen = True

                if not outbound.push(success_response(request_id, event)):
                    self.logger.info(
                        "Stream consumer disconnected",
                        extra={"task_id": task_id, "request_id": request_id},
                    )
                    token.cancel("client disconnected")
                    return
                if final_seen:
                    # The client sees the end of the stream now; the executor may keep running.
                    outbound.close()

            error, faulted = await producer
            if error is not None:
                if final_seen:
                    self.logger.warning(
                        "Dropping executor error raised after final status",
                        extra={"task_id": task_id, "code": error.code},
                    )
                    return
                if faulted:
                    task.status = TaskStatus(state=TaskState.FAILED, timestamp=current_timestamp())
                    await self.task_store.save(task)
                outbound.push(error_response(request_id, error))
                return

            if not final_seen:
                state = TaskState.CANCELED if token.cancelled else TaskState.COMPLETED
                closing = TaskStatusUpdateEvent(
                    id=task_id,
                    status=TaskStatus(state=state, timestamp=current_timestamp()),
                    final=True,
                )
                task = self._apply_event(task, closing)
                await self.task_store.save(task)
                outbound.push(success_response(request_id, closing))
        except Exception as exc:
            self.logger.exception(
                "Streaming cycle failed",
                extra={"task_id": task_id, "error": str(exc)},
            )
            if not final_seen:
                outbound.push(error_response(request_id, InternalError(message=f"Internal error: {exc}")))
        finally:
            events.close()
            outbound.close()
            if self._active_tokens.get(task_id) is token:
                del self._active_tokens[task_id]
            self.logger.debug("Streaming cycle finished", extra={"task_id": task_id})

    @staticmethod
    def _apply_event(task: Task, event: TaskStreamEvent) -> Task:
        """Fold one streaming event into the task snapshot."""
        if isinstance(event, TaskStatusUpdateEvent):
            status = event.status.model_copy(deep=True)
            if status.timestamp is None:
                status.timestamp = current_timestamp()
            task.status = status
            if status.message is not None:
                history = list(task.history or [])
                if not history or history[-1] != status.message:
                    history.append(status.message)
                task.history = history
            return task

        if isinstance(event, TaskArtifactUpdateEvent):
            task.artifacts = _merge_artifact(list(task.artifacts or []), event.artifact)
        return task

    # ===== LIFECYCLE =====

    async def aclose(self) -> None:
        """Cancel every in-flight streaming cycle and executor."""
        pending = list(self._background_tasks)
        for background in pending:
            background.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._active_tokens.clear()

    # ===== HELPERS =====

    def _track(self, coro: Awaitable[Any]) -> asyncio.Task:
        background = asyncio.ensure_future(coro)
        self._background_tasks.add(background)
        background.add_done_callback(self._background_tasks.discard)
        return background

    @staticmethod
    def _parse_params(model: Type[ParamsT], raw_params: Dict[str, Any]) -> ParamsT:
        try:
            return model.model_validate(raw_params)
        except ValidationError as exc:
            raise A2AServerError(
                InvalidParamsError(data=json.loads(exc.json(include_url=False)))
            ) from exc

    async def _require_task(self, task_id: str) -> Task:
        task = await self.task_store.get(task_id)
        if task is None:
            raise A2AServerError(TaskNotFoundError(data={"taskId": task_id}))
        return task

    def _require_push_config_store(self) -> PushNotificationConfigStore:
        if self.push_config_store is None:
            raise A2AServerError(OperationNotSupportedError())
        return self.push_config_store

    async def _resolve_task(self, params: TaskSendParams) -> Task:
        """Load the task for a send, or create it, and record the inbound message."""
        if params.pushNotification is not None:
            if self.push_config_store is None:
                raise A2AServerError(PushNotificationNotSupportedError())

        task = await self.task_store.get(params.id)
        if task is None:
            task = Task(
                id=params.id,
                sessionId=params.sessionId,
                status=TaskStatus(state=TaskState.SUBMITTED, timestamp=current_timestamp()),
                history=[params.message],
                metadata=params.metadata,
            )
            self.logger.info("Created task", extra={"task_id": task.id})
        else:
            task.history = list(task.history or []) + [params.message]
            if params.sessionId and not task.sessionId:
                task.sessionId = params.sessionId

        await self.task_store.save(task)

        if params.pushNotification is not None:
            await self.push_config_store.set_config(
                TaskPushNotificationConfig(id=task.id, pushNotificationConfig=params.pushNotification)
            )
        return task

    async def _mark_failed(self, task: Task, exc: Exception) -> None:
        self.logger.exception(
            "Agent executor failed",
            extra={"task_id": task.id, "error": str(exc)},
        )
        task.status = TaskStatus(state=TaskState.FAILED, timestamp=current_timestamp())
        await self.task_store.save(task)

    @staticmethod
    def _trim_history(task: Task, history_length: Optional[int]) -> Task:
        if history_length is None or task.history is None:
            return task
        trimmed = task.model_copy(deep=True)
        trimmed.history = trimmed.history[-history_length:] if history_length > 0 else []
        return trimmed


def _merge_artifact(artifacts: list, artifact: Artifact) -> list:
    """Place an artifact chunk into its slot: replace, or extend on append."""
    chunk = artifact.model_copy(deep=True)
    for position, existing in enumerate(artifacts):
        if existing.index != chunk.index:
            continue
        if chunk.append:
            existing.parts.extend(chunk.parts)
            existing.lastChunk = chunk.lastChunk
            if chunk.metadata:
                existing.metadata = {**(existing.metadata or {}), **chunk.metadata}
        else:
            artifacts[position] = chunk
        return artifacts

    artifacts.append(chunk)
    return artifacts
