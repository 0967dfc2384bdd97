"""
Client/server round trips over httpx's in-process ASGI transport.
"""

import httpx
import pytest

from a2a_taskstream.a2a.models import (
    Message,
    Task,
    TaskArtifactUpdateEvent,
    TaskNotCancelableError,
    TaskNotFoundError,
    TaskSendParams,
    TaskState,
    TaskStatusUpdateEvent,
    TextPart,
)
from a2a_taskstream.client import A2AClient
from a2a_taskstream.exceptions import (
    A2AClientError,
    A2AClientHTTPError,
    A2AClientJSONError,
    A2AClientSSEError,
)
from a2a_taskstream.request_handler import A2ARequestHandler
from a2a_taskstream.server import A2AServer

from dummy_executor import ScriptedExecutor, artifact_event, status_event


def make_client(executor=None, app=None):
    if app is None:
        handler = A2ARequestHandler(executor or ScriptedExecutor())
        app = A2AServer(handler).get_fastapi_app()
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    return A2AClient("http://testserver/", http_client=http), http


def params(task_id="t1", text="hi"):
    return TaskSendParams(id=task_id, message=Message(role="user", parts=[TextPart(text=text)]))


class TestUnaryCalls:
    @pytest.mark.asyncio
    async def test_send_get_cancel(self):
        client, http = make_client()
        async with http:
            sent = await client.send_task(params())
            assert isinstance(sent.result, Task)
            assert sent.result.status.state == TaskState.COMPLETED

            fetched = await client.get_task({"id": "t1", "historyLength": 1})
            assert fetched.result.status.state == TaskState.COMPLETED
            assert len(fetched.result.history) == 1

            canceled = await client.cancel_task({"id": "t1"})
            assert canceled.result is None
            assert isinstance(canceled.error, TaskNotCancelableError)

    @pytest.mark.asyncio
    async def test_unknown_task_error_is_typed(self):
        client, http = make_client()
        async with http:
            response = await client.get_task({"id": "ghost"}, request_id="q-1")
        assert response.id == "q-1"
        assert isinstance(response.error, TaskNotFoundError)

    @pytest.mark.asyncio
    async def test_message_reply(self):
        reply = Message(role="agent", parts=[TextPart(text="ok")])
        client, http = make_client(ScriptedExecutor(reply=reply))
        async with http:
            response = await client.send_task(params())
        assert isinstance(response.result, Message)
        assert response.result.parts[0].text == "ok"

    @pytest.mark.asyncio
    async def test_push_config_unsupported(self):
        client, http = make_client()
        async with http:
            await client.send_task(params())
            response = await client.set_task_push_notification(
                {"id": "t1", "pushNotificationConfig": {"url": "https://hook"}}
            )
            fetched = await client.get_task_push_notification({"id": "t1"})
        assert response.error.code == -32004
        assert fetched.error.code == -32004


class TestStreamingCalls:
    @pytest.mark.asyncio
    async def test_send_task_subscribe_yields_typed_events(self):
        executor = ScriptedExecutor(
            events=[
                status_event("t1", TaskState.WORKING),
                artifact_event("t1", "part one"),
                artifact_event("t1", "part two", append=True, last_chunk=True),
                status_event("t1", TaskState.COMPLETED, final=True),
            ]
        )
        client, http = make_client(executor)
        async with http:
            responses = [r async for r in client.send_task_subscribe(params())]

        kinds = [type(r.result) for r in responses]
        assert kinds == [
            TaskStatusUpdateEvent,
            TaskArtifactUpdateEvent,
            TaskArtifactUpdateEvent,
            TaskStatusUpdateEvent,
        ]
        assert responses[-1].result.final is True
        assert responses[2].result.artifact.append is True

    @pytest.mark.asyncio
    async def test_stream_error_envelope(self):
        client, http = make_client(ScriptedExecutor(fail_with=RuntimeError("bad")))
        async with http:
            responses = [r async for r in client.send_task_subscribe(params())]
        assert len(responses) == 1
        assert responses[0].error.code == -32603
        assert responses[0].error.message == "Internal error: bad"

    @pytest.mark.asyncio
    async def test_resubscribe(self):
        client, http = make_client()
        async with http:
            await client.send_task(params())
            responses = [r async for r in client.resubscribe_task({"id": "t1"})]
        assert len(responses) == 1
        assert responses[0].result.status.state == TaskState.COMPLETED
        assert responses[0].result.final is True

    @pytest.mark.asyncio
    async def test_non_sse_response_raises(self):
        client, http = make_client()
        client.url = "http://testserver/health"
        async with http:
            with pytest.raises(A2AClientError):
                [r async for r in client.send_task_subscribe(params())]


def _mock_client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://agent")
    return A2AClient("http://agent/", http_client=http), http


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_http_status_error(self):
        client, http = _mock_client(lambda request: httpx.Response(500, text="boom"))
        async with http:
            with pytest.raises(A2AClientHTTPError) as exc_info:
                await client.get_task({"id": "t1"})
        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_network_error_maps_to_503(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, http = _mock_client(refuse)
        async with http:
            with pytest.raises(A2AClientHTTPError) as exc_info:
                await client.send_task(params())
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        client, http = _mock_client(lambda request: httpx.Response(200, text="<html>"))
        async with http:
            with pytest.raises(A2AClientJSONError):
                await client.get_task({"id": "t1"})

    @pytest.mark.asyncio
    async def test_invalid_envelope(self):
        client, http = _mock_client(
            lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"id": "t1"}})
        )
        async with http:
            with pytest.raises(A2AClientJSONError):
                await client.get_task({"id": "t1"})

    @pytest.mark.asyncio
    async def test_stream_requires_event_stream_content_type(self):
        client, http = _mock_client(lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}))
        async with http:
            with pytest.raises(A2AClientSSEError):
                [r async for r in client.send_task_subscribe(params())]

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        client, http = _mock_client(lambda request: httpx.Response(503))
        async with http:
            with pytest.raises(A2AClientHTTPError) as exc_info:
                [r async for r in client.send_task_subscribe(params())]
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_stream_skips_bad_frames(self):
        body = (
            "data: garbage\n\n"
            'data: {"jsonrpc": "2.0", "id": 1, "result": {"type": "taskStatusUpdate", "id": "t1", '
            '"status": {"state": "completed"}, "final": true}}\n\n'
            "event: end\ndata: {}\n\n"
        )
        client, http = _mock_client(
            lambda request: httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})
        )
        async with http:
            responses = [r async for r in client.send_task_subscribe(params())]
        assert len(responses) == 1
        assert responses[0].result.final is True

    @pytest.mark.asyncio
    async def test_request_sends_accept_header_and_serialized_params(self):
        seen = {}

        def capture(request):
            seen["accept"] = request.headers.get("accept")
            seen["body"] = request.read()
            return httpx.Response(200, text="event: end\ndata: {}\n\n", headers={"Content-Type": "text/event-stream"})

        client, http = _mock_client(capture)
        async with http:
            responses = [r async for r in client.send_task_subscribe(params(), request_id=42)]
        assert responses == []
        assert seen["accept"] == "text/event-stream"
        assert b'"method":"tasks/sendSubscribe"' in seen["body"].replace(b" ", b"")
        assert b'"id":42' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_client_owns_default_http_client():
    async with A2AClient("http://agent/") as client:
        assert client._owns_client is True
    assert client._http.is_closed
