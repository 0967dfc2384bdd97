"""
Exception types for the A2A task engine.

Server side, executors raise ``A2AServerError`` to answer a request with a
specific protocol error. Client side, transport and decoding failures surface
as ``A2AClientError`` subclasses.
"""

from __future__ import annotations

from typing import Optional

from .a2a.models import JSONRPCError


class A2AServerError(Exception):
    """A protocol error to be returned to the caller unchanged."""

    def __init__(self, error: JSONRPCError) -> None:
        super().__init__(f"[{error.code}] {error.message}")
        self.error = error


class A2AClientError(Exception):
    """Base exception for all client-side failures.

    Supports optional cause chaining so the underlying transport or decoding
    error stays reachable through ``__cause__``.
    """

    def __init__(self, message: str, *, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class A2AClientHTTPError(A2AClientError):
    """The server answered with an HTTP error status or could not be reached.

    Network-level failures are reported with status 503.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(f"HTTP Error {status_code}: {message}", cause=cause)
        self.status_code = status_code


class A2AClientJSONError(A2AClientError):
    """The response body was not valid JSON or not a valid envelope."""

    def __init__(self, message: str, *, cause: Optional[Exception] = None) -> None:
        super().__init__(f"JSON Error: {message}", cause=cause)


class A2AClientSSEError(A2AClientError):
    """A streaming request was not answered with an event stream."""

    def __init__(self, message: str, *, cause: Optional[Exception] = None) -> None:
        super().__init__(f"SSE Error: {message}", cause=cause)
