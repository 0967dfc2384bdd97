"""
Server-Sent Events codec for A2A streaming responses.

The server side renders JSON-RPC envelopes as ``data:`` frames and terminates
the stream with an ``end`` event. The client side reassembles frames from an
arbitrarily chunked byte stream and turns them back into typed envelopes.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, List, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from .models import SendTaskStreamingResponse

logger = logging.getLogger(__name__)

END_EVENT = "end"
END_OF_STREAM = "event: end\ndata: {}\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(data: Any, event: Optional[str] = None) -> str:
    """Serialize data as a single server-sent event frame."""
    payload = json.dumps(jsonable_encoder(data))
    if event:
        return f"event: {event}\ndata: {payload}\n\n"
    return f"data: {payload}\n\n"


@dataclass
class SSEFrame:
    """One reassembled event: its name and the concatenated data lines."""

    event: str
    data: str


class SSEDecoder:
    """Incremental frame reassembler.

    Feed it text in whatever pieces the transport delivers; complete frames
    come back in order and a trailing partial frame stays buffered until the
    next feed.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> List[SSEFrame]:
        self._buffer += text
        self._buffer = self._buffer.replace("\r\n", "\n")
        blocks = self._buffer.split("\n\n")
        self._buffer = blocks.pop()

        frames: List[SSEFrame] = []
        for block in blocks:
            frame = self._parse_block(block)
            if frame is not None:
                frames.append(frame)
        return frames

    @property
    def pending(self) -> str:
        """Text buffered for a frame that has not been terminated yet."""
        return self._buffer

    @staticmethod
    def _parse_block(block: str) -> Optional[SSEFrame]:
        event = "message"
        data_lines: List[str] = []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            if line.startswith("data:"):
                data_lines.append(line[5:].strip())
            elif line.startswith("event:"):
                event = line[6:].strip()

        if not data_lines:
            return None
        return SSEFrame(event=event, data="".join(data_lines))


async def aiter_sse_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[SSEFrame]:
    """Yield frames from a chunked UTF-8 byte stream until the ``end`` event."""
    decoder = SSEDecoder()
    text_decoder = codecs.getincrementaldecoder("utf-8")()

    async for chunk in chunks:
        for frame in decoder.feed(text_decoder.decode(chunk)):
            if frame.event == END_EVENT:
                return
            yield frame

    for frame in decoder.feed(text_decoder.decode(b"", final=True)):
        if frame.event == END_EVENT:
            return
        yield frame

    if decoder.pending.strip():
        logger.debug(
            "Dropping incomplete SSE frame at end of stream",
            extra={"pending_length": len(decoder.pending)},
        )


async def aiter_stream_responses(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[SendTaskStreamingResponse]:
    """Yield typed streaming envelopes; undecodable frames are logged and skipped."""
    async for frame in aiter_sse_frames(chunks):
        try:
            payload = json.loads(frame.data)
        except json.JSONDecodeError as exc:
            logger.warning(
                "Skipping SSE frame with invalid JSON",
                extra={"error": str(exc), "event": frame.event},
            )
            continue

        try:
            response = SendTaskStreamingResponse.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "Skipping SSE frame with invalid envelope",
                extra={"error": str(exc), "event": frame.event},
            )
            continue

        yield response
