"""
A2A-TaskStream Main Application

Wires settings, task store, push configuration store and agent executor into
an ``A2AServer``.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .agent_executor import AgentExecutor, EchoAgentExecutor
from .logging_config import configure_logging
from .push_config_store import InMemoryPushNotificationConfigStore
from .request_handler import A2ARequestHandler
from .server import A2AServer
from .settings import Settings, get_settings
from .task_store import InMemoryTaskStore, TaskStore

logger = logging.getLogger(__name__)


def create_server(
    executor: Optional[AgentExecutor] = None,
    settings: Optional[Settings] = None,
    task_store: Optional[TaskStore] = None,
) -> A2AServer:
    """Build a server handle from settings; the echo executor is the default."""
    settings = settings or get_settings()

    push_config_store = (
        InMemoryPushNotificationConfigStore() if settings.push_notifications_enabled else None
    )
    handler = A2ARequestHandler(
        executor or EchoAgentExecutor(),
        task_store=task_store if task_store is not None else InMemoryTaskStore(),
        push_config_store=push_config_store,
        streaming_enabled=settings.streaming_enabled,
        logger=logging.getLogger("a2a_taskstream.request_handler"),
    )
    server = A2AServer(
        handler,
        host=settings.host,
        port=settings.port,
        rpc_path=settings.rpc_path,
        logger=logging.getLogger("a2a_taskstream.server"),
    )
    logger.info(
        "A2A server created",
        extra={
            "executor": type(handler.agent_executor).__name__,
            "streaming_enabled": settings.streaming_enabled,
            "push_notifications_enabled": settings.push_notifications_enabled,
        },
    )
    return server


def create_app(
    executor: Optional[AgentExecutor] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the A2A-TaskStream FastAPI application.

    Returns:
        Configured FastAPI application serving the JSON-RPC endpoint and /health
    """
    return create_server(executor, settings).get_fastapi_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the A2A-TaskStream server directly."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)

    server = create_server(settings=settings)
    if host is not None:
        server.host = host
    if port is not None:
        server.port = port
    server.run()


if __name__ == "__main__":
    run_server()
