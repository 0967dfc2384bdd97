"""
A2A JSON-RPC 2.0 HTTP Server

Serves the request handler over HTTP with FastAPI: unary methods answer with
a JSON-RPC response, streaming methods answer with a Server-Sent Events body.
``A2AServer`` is an explicit handle that can be started and shut down from
inside a running event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from .a2a import __version__
from .a2a.models import (
    InternalError,
    InvalidRequestError,
    JSONParseError,
    JSONRPCRequest,
    error_response,
)
from .a2a.sse import END_OF_STREAM, SSE_HEADERS, format_sse
from .request_handler import A2ARequestHandler
from .streaming_queue import StreamingResponseQueue


class A2AServer:
    """
    HTTP front end for an ``A2ARequestHandler``.

    Parses JSON-RPC envelopes, rejects malformed ones before they reach the
    handler, and writes streaming envelopes as SSE frames.
    """

    def __init__(
        self,
        request_handler: A2ARequestHandler,
        host: str = "0.0.0.0",
        port: int = 8000,
        rpc_path: str = "/",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.request_handler = request_handler
        self.host = host
        self.port = port
        self.rpc_path = rpc_path
        self.logger = logger or logging.getLogger(__name__)

        self.app = FastAPI(title="A2A TaskStream Server", version=__version__, lifespan=self._lifespan)
        self._setup_routes()

        self._uvicorn: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncGenerator[None, None]:
        app.state.request_handler = self.request_handler
        self.logger.info("A2A server ready", extra={"rpc_path": self.rpc_path})
        try:
            yield
        finally:
            await self.request_handler.aclose()
            self.logger.info("A2A server stopped")

    def _setup_routes(self) -> None:
        @self.app.post(self.rpc_path)
        async def handle_jsonrpc(request: Request) -> Response:
            """Main JSON-RPC 2.0 endpoint."""
            body = await request.body()
            try:
                request_data = json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                self.logger.error("Invalid JSON in request body", extra={"error": str(e)})
                return JSONResponse(error_response(None, JSONParseError()))

            request_id = request_data.get("id") if isinstance(request_data, dict) else None
            if not isinstance(request_data, dict):
                self.logger.error("JSON-RPC request must be an object")
                return JSONResponse(
                    error_response(None, InvalidRequestError(data="Batch requests are not supported"))
                )

            try:
                rpc_request = JSONRPCRequest.model_validate(request_data)
            except ValidationError as e:
                self.logger.error("Invalid JSON-RPC request format", extra={"error": str(e)})
                if not isinstance(request_id, (str, int)):
                    request_id = None
                return JSONResponse(
                    error_response(
                        request_id,
                        InvalidRequestError(data=json.loads(e.json(include_url=False))),
                    )
                )

            try:
                if self.request_handler.is_streaming_method(rpc_request.method):
                    outbound = await self.request_handler.open_stream(rpc_request)
                    return StreamingResponse(
                        self._sse_body(outbound, rpc_request.id),
                        media_type="text/event-stream",
                        headers=SSE_HEADERS,
                    )
                return JSONResponse(await self.request_handler.handle(rpc_request))
            except Exception as e:
                self.logger.exception("Unexpected error handling JSON-RPC request")
                return JSONResponse(
                    error_response(rpc_request.id, InternalError(message=f"Internal error: {e}"))
                )

        @self.app.get("/health")
        async def health_check() -> Dict[str, Any]:
            """Health check endpoint."""
            return {"status": "ok", "protocol": "A2A", "version": __version__}

    async def _sse_body(
        self,
        outbound: StreamingResponseQueue[Dict[str, Any]],
        request_id: Any,
    ) -> AsyncIterator[str]:
        """Write queued envelopes as SSE frames, then the end-of-stream event."""
        self.logger.debug("SSE stream opened", extra={"request_id": request_id})
        try:
            async for envelope in outbound:
                yield format_sse(envelope)
            yield END_OF_STREAM
        finally:
            # A consumer that went away must stop the pump from buffering more.
            outbound.close()
            self.logger.debug("SSE stream closed", extra={"request_id": request_id})

    async def start(self) -> None:
        """Serve in the background of the current event loop until shutdown()."""
        if self._serve_task is not None:
            raise RuntimeError("A2AServer is already running")

        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None)
        self._uvicorn = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._serve(self._uvicorn))

        while not self._uvicorn.started:
            if self._serve_task.done():
                serve_task, self._serve_task, self._uvicorn = self._serve_task, None, None
                # Surface bind errors and the like.
                serve_task.result()
                raise RuntimeError("A2AServer exited before it started serving")
            await asyncio.sleep(0.05)
        self.logger.info("A2A server listening", extra={"host": self.host, "port": self.port})

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind.
            raise RuntimeError(
                f"A2AServer failed to start on {self.host}:{self.port}"
            ) from exc

    async def shutdown(self) -> None:
        """Ask uvicorn to exit and wait for it."""
        if self._uvicorn is None or self._serve_task is None:
            return
        self._uvicorn.should_exit = True
        try:
            await self._serve_task
        finally:
            self._uvicorn = None
            self._serve_task = None

    def run(self) -> None:
        """Serve in the foreground (blocking)."""
        uvicorn.run(self.app, host=self.host, port=self.port, log_config=None)

    def get_fastapi_app(self) -> FastAPI:
        return self.app
