"""
Tests for the HTTP surface of the A2A server.

Exercises JSON-RPC envelope validation, unary responses, SSE streaming bodies,
the health endpoint and the start/shutdown lifecycle.
"""

import json
import socket

import httpx
import pytest
from fastapi.testclient import TestClient

from a2a_taskstream.a2a.sse import END_OF_STREAM, SSEDecoder
from a2a_taskstream.agent_executor import EchoAgentExecutor
from a2a_taskstream.main import create_app, create_server
from a2a_taskstream.request_handler import A2ARequestHandler
from a2a_taskstream.server import A2AServer
from a2a_taskstream.settings import Settings
from a2a_taskstream.task_store import InMemoryTaskStore


def make_settings(**overrides):
    values = dict(
        host="127.0.0.1",
        port=8000,
        rpc_path="/",
        streaming_enabled=True,
        push_notifications_enabled=False,
        log_level="INFO",
        log_file=None,
    )
    values.update(overrides)
    return Settings(**values)


def send_request(method="tasks/send", task_id="t1", request_id=1, text="hi"):
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": {"id": task_id, "message": {"role": "user", "parts": [{"type": "text", "text": text}]}},
    }


def parse_sse(body):
    frames = SSEDecoder().feed(body)
    return [(frame.event, json.loads(frame.data)) for frame in frames]


@pytest.fixture
def client():
    with TestClient(create_app(settings=make_settings())) as test_client:
        yield test_client


class TestA2AServer:
    def test_health_check_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["protocol"] == "A2A"
        assert data["version"] == "0.1.0"

    def test_send_and_get(self, client):
        sent = client.post("/", json=send_request())
        assert sent.status_code == 200
        assert sent.json()["result"]["status"]["state"] == "completed"

        fetched = client.post("/", json={"jsonrpc": "2.0", "id": 2, "method": "tasks/get", "params": {"id": "t1"}})
        assert fetched.json()["id"] == 2
        assert fetched.json()["result"]["id"] == "t1"

    def test_get_unknown_task(self, client):
        response = client.post("/", json={"jsonrpc": "2.0", "id": 9, "method": "tasks/get", "params": {"id": "x"}})
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32001


class TestEnvelopeValidation:
    def test_invalid_json(self, client):
        response = client.post("/", content=b"{not json", headers={"Content-Type": "application/json"})
        body = response.json()
        assert body["id"] is None
        assert body["error"]["code"] == -32700

    def test_batch_requests_are_rejected(self, client):
        response = client.post("/", json=[send_request()])
        assert response.json()["error"]["code"] == -32600

    def test_missing_method_keeps_request_id(self, client):
        response = client.post("/", json={"jsonrpc": "2.0", "id": "abc"})
        body = response.json()
        assert body["id"] == "abc"
        assert body["error"]["code"] == -32600

    def test_wrong_protocol_version(self, client):
        request = send_request()
        request["jsonrpc"] = "1.0"
        response = client.post("/", json=request)
        assert response.json()["error"]["code"] == -32600

    def test_unknown_method(self, client):
        response = client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "tasks/unknown"})
        assert response.json()["error"]["code"] == -32601

    def test_invalid_params(self, client):
        response = client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "tasks/get", "params": {}})
        assert response.json()["error"]["code"] == -32602


class TestStreamingEndpoint:
    def test_send_subscribe_streams_events_then_end(self, client):
        response = client.post("/", json=send_request(method="tasks/sendSubscribe", request_id="s1"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text.endswith(END_OF_STREAM)

        frames = parse_sse(response.text)
        assert frames[-1] == ("end", {})
        events = [payload for name, payload in frames if name == "message"]
        assert len(events) == 1
        assert events[0]["id"] == "s1"
        assert events[0]["result"]["final"] is True
        assert events[0]["result"]["status"]["state"] == "completed"

    def test_resubscribe_unknown_task_streams_error(self, client):
        response = client.post(
            "/",
            json={"jsonrpc": "2.0", "id": 4, "method": "tasks/resubscribe", "params": {"id": "ghost"}},
        )
        frames = parse_sse(response.text)
        assert frames[0][1]["error"]["code"] == -32001
        assert frames[-1] == ("end", {})
        assert len(frames) == 2

    def test_streaming_disabled(self):
        app = create_app(settings=make_settings(streaming_enabled=False))
        with TestClient(app) as test_client:
            response = test_client.post("/", json=send_request(method="tasks/sendSubscribe"))
        frames = parse_sse(response.text)
        assert frames[0][1]["error"]["code"] == -32006

    def test_custom_rpc_path(self):
        app = create_app(settings=make_settings(rpc_path="/a2a"))
        with TestClient(app) as test_client:
            assert test_client.post("/a2a", json=send_request()).json()["result"]["id"] == "t1"
            assert test_client.post("/", json=send_request()).status_code in (404, 405)


def test_push_notifications_enabled_by_settings():
    app = create_app(settings=make_settings(push_notifications_enabled=True))
    with TestClient(app) as test_client:
        test_client.post("/", json=send_request())
        response = test_client.post(
            "/",
            json={
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tasks/pushNotificationConfig/set",
                "params": {"id": "t1", "pushNotificationConfig": {"url": "https://hook.example"}},
            },
        )
    assert response.json()["result"]["pushNotificationConfig"]["url"] == "https://hook.example"


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_start_and_shutdown():
    port = _free_port()
    server = A2AServer(A2ARequestHandler(EchoAgentExecutor()), host="127.0.0.1", port=port)

    await server.start()
    try:
        async with httpx.AsyncClient() as http:
            response = await http.get(f"http://127.0.0.1:{port}/health")
        assert response.json()["status"] == "ok"
    finally:
        await server.shutdown()

    # Shutdown is idempotent once stopped.
    await server.shutdown()


def test_create_server_uses_settings():
    server = create_server(settings=make_settings(host="127.0.0.2", port=9123, streaming_enabled=False))
    assert server.host == "127.0.0.2"
    assert server.port == 9123
    assert server.request_handler.streaming_enabled is False
    assert isinstance(server.request_handler.agent_executor, EchoAgentExecutor)


def test_create_server_keeps_injected_empty_store():
    store = InMemoryTaskStore()
    server = create_server(settings=make_settings(), task_store=store)
    assert server.request_handler.task_store is store


@pytest.mark.asyncio
async def test_start_raises_when_port_is_taken():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        port = occupied.getsockname()[1]
        server = A2AServer(A2ARequestHandler(EchoAgentExecutor()), host="127.0.0.1", port=port)

        with pytest.raises(RuntimeError):
            await server.start()

    # A failed start leaves nothing to shut down.
    await server.shutdown()
