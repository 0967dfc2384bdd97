"""
A2A-TaskStream: A2A task lifecycle and streaming engine

JSON-RPC 2.0 over HTTP with Server-Sent Events for incremental task status
and artifact updates, plus a matching client.
"""

from .main import create_app

__all__ = ["create_app"]
