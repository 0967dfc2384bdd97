"""
A2A JSON-RPC client over httpx.

Unary methods return typed response envelopes; streaming methods are async
generators of ``SendTaskStreamingResponse`` envelopes reassembled from the
server's event stream.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from .a2a.models import (
    CancelTaskResponse,
    GetTaskPushNotificationResponse,
    GetTaskResponse,
    SendTaskResponse,
    SendTaskStreamingResponse,
    SetTaskPushNotificationResponse,
    TaskIdParams,
    TaskPushNotificationConfig,
    TaskQueryParams,
    TaskSendParams,
    generate_id,
    serialize_a2a,
)
from .a2a.sse import aiter_stream_responses
from .exceptions import A2AClientHTTPError, A2AClientJSONError, A2AClientSSEError

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)
Params = Union[BaseModel, Dict[str, Any]]


class A2AClient:
    """Client for a single A2A JSON-RPC endpoint."""

    def __init__(
        self,
        url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = 30.0,
    ) -> None:
        self.url = url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "A2AClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ===== UNARY METHODS =====

    async def send_task(
        self, params: Union[TaskSendParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> SendTaskResponse:
        return await self._send_request("tasks/send", params, SendTaskResponse, request_id)

    async def get_task(
        self, params: Union[TaskQueryParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> GetTaskResponse:
        return await self._send_request("tasks/get", params, GetTaskResponse, request_id)

    async def cancel_task(
        self, params: Union[TaskIdParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> CancelTaskResponse:
        return await self._send_request("tasks/cancel", params, CancelTaskResponse, request_id)

    async def set_task_push_notification(
        self,
        params: Union[TaskPushNotificationConfig, Dict[str, Any]],
        request_id: Optional[Union[str, int]] = None,
    ) -> SetTaskPushNotificationResponse:
        return await self._send_request(
            "tasks/pushNotificationConfig/set", params, SetTaskPushNotificationResponse, request_id
        )

    async def get_task_push_notification(
        self, params: Union[TaskIdParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> GetTaskPushNotificationResponse:
        return await self._send_request(
            "tasks/pushNotificationConfig/get", params, GetTaskPushNotificationResponse, request_id
        )

    # ===== STREAMING METHODS =====

    def send_task_subscribe(
        self, params: Union[TaskSendParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> AsyncIterator[SendTaskStreamingResponse]:
        return self._stream_request("tasks/sendSubscribe", params, request_id)

    def resubscribe_task(
        self, params: Union[TaskQueryParams, Dict[str, Any]], request_id: Optional[Union[str, int]] = None
    ) -> AsyncIterator[SendTaskStreamingResponse]:
        return self._stream_request("tasks/resubscribe", params, request_id)

    # ===== TRANSPORT =====

    @staticmethod
    def _build_request(method: str, params: Params, request_id: Optional[Union[str, int]]) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": request_id if request_id is not None else generate_id(),
            "method": method,
            "params": serialize_a2a(params),
        }

    async def _send_request(
        self,
        method: str,
        params: Params,
        response_model: Type[ResponseT],
        request_id: Optional[Union[str, int]],
    ) -> ResponseT:
        payload = self._build_request(method, params, request_id)
        try:
            response = await self._http.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise A2AClientHTTPError(exc.response.status_code, str(exc), cause=exc) from exc
        except httpx.RequestError as exc:
            raise A2AClientHTTPError(
                503, f"Network communication error: {exc}", cause=exc
            ) from exc

        try:
            return response_model.model_validate(response.json())
        except json.JSONDecodeError as exc:
            raise A2AClientJSONError(f"Failed to decode response: {exc}", cause=exc) from exc
        except ValidationError as exc:
            raise A2AClientJSONError(f"Invalid {method} response: {exc}", cause=exc) from exc

    async def _stream_request(
        self,
        method: str,
        params: Params,
        request_id: Optional[Union[str, int]],
    ) -> AsyncIterator[SendTaskStreamingResponse]:
        payload = self._build_request(method, params, request_id)
        headers = {"Accept": "text/event-stream"}
        try:
            async with self._http.stream("POST", self.url, json=payload, headers=headers) as response:
                if response.is_error:
                    await response.aread()
                    raise A2AClientHTTPError(
                        response.status_code,
                        f"HTTP error: {response.status_code} {response.reason_phrase}",
                    )

                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    await response.aread()
                    raise A2AClientSSEError(
                        f"Expected text/event-stream, got {content_type or 'no content type'}"
                    )

                logger.debug("SSE stream opened", extra={"method": method, "request_id": payload["id"]})
                async for envelope in aiter_stream_responses(response.aiter_bytes()):
                    yield envelope
        except httpx.RequestError as exc:
            raise A2AClientHTTPError(
                503, f"Network communication error: {exc}", cause=exc
            ) from exc
