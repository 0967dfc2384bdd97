"""
Single-consumer asynchronous channel used to carry streaming updates.

Producers push items without blocking; the one consumer awaits them in order.
Closing the queue lets the consumer drain what is buffered and then observe
the end of the stream.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, AsyncIterator, Deque, Generic, Optional, TypeVar

T = TypeVar("T")


class _EndOfQueue:
    def __repr__(self) -> str:
        return "END_OF_QUEUE"


END_OF_QUEUE: Any = _EndOfQueue()


class StreamingResponseQueue(Generic[T]):
    """Unbounded single-producer/single-consumer queue with explicit close."""

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._waiter: Optional[asyncio.Future] = None
        self._closed = False
        self._iterating = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: T) -> bool:
        """Deliver an item; returns False once the queue has been closed."""
        if self._closed:
            return False

        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(item)
        else:
            self._items.append(item)
        return True

    async def next(self) -> Any:
        """Return the next item, or ``END_OF_QUEUE`` once closed and drained."""
        if self._items:
            return self._items.popleft()
        if self._closed:
            return END_OF_QUEUE
        if self._waiter is not None:
            raise RuntimeError("StreamingResponseQueue supports a single consumer")

        waiter = asyncio.get_running_loop().create_future()
        self._waiter = waiter
        try:
            return await waiter
        except asyncio.CancelledError:
            # An item handed over just before the cancel goes back to the front.
            if waiter.done() and not waiter.cancelled() and waiter.result() is not END_OF_QUEUE:
                self._items.appendleft(waiter.result())
            raise
        finally:
            if self._waiter is waiter:
                self._waiter = None

    def close(self) -> None:
        """Stop accepting items and wake a suspended consumer."""
        if self._closed:
            return
        self._closed = True

        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(END_OF_QUEUE)

    def __aiter__(self) -> AsyncIterator[T]:
        if self._iterating:
            raise RuntimeError("StreamingResponseQueue can only be iterated once")
        self._iterating = True
        return self._drain()

    async def _drain(self) -> AsyncIterator[T]:
        while True:
            item = await self.next()
            if item is END_OF_QUEUE:
                return
            yield item
