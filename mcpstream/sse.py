"""Server-Sent Events framing and stream writers for the streaming transport."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from .jsonrpc import Message, RequestId, notification

PROGRESS_NOTIFICATION_METHOD = "notifications/progress"

SendBytes = Callable[[bytes], Awaitable[None]]


class StreamClosed(Exception):
    """Raised when writing to a stream that is closed or has failed."""


def format_sse_event(payload: bytes, event_id: str = "") -> bytes:
    """Return one SSE frame carrying ``payload`` as its data field."""
    head = f"id: {event_id}\n".encode() if event_id else b""
    return head + b"data: " + payload + b"\n\n"


class SSEWriter:
    """Serializes SSE frames onto an async byte sink and refuses writes once closed."""

    def __init__(self, send: SendBytes) -> None:
        self._send = send
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the stream was closed or a write to it failed."""
        return self._closed

    async def write_event(self, payload: bytes, event_id: str = "") -> None:
        """Write one event; raises StreamClosed if the stream cannot take it."""
        if self._closed:
            raise StreamClosed("stream is closed")
        async with self._lock:
            # Re-check after waiting for the lock: the stream may have closed meanwhile.
            if self._closed:
                raise StreamClosed("stream is closed")
            try:
                await self._send(format_sse_event(payload, event_id))
            except Exception as exc:
                self._closed = True
                raise StreamClosed(f"failed to write SSE event: {exc}") from exc

    def close(self) -> None:
        """Mark the stream closed; later writes raise StreamClosed."""
        self._closed = True


class SessionWithWriter:
    """A session whose messages go straight to the open response stream.

    When the stream is closed or a write fails, messages go to ``fallback``
    (normally the session's own persistent message queue). Other attributes
    are taken from the wrapped session.
    """

    def __init__(
        self,
        session: Any,
        writer: SSEWriter,
        fallback: SendBytes | None = None,
    ) -> None:
        self._session = session
        self._writer = writer
        self._fallback = fallback

    def __getattr__(self, name: str) -> Any:
        return getattr(self._session, name)

    async def write_message(self, payload: bytes) -> None:
        """Deliver a message to the client, falling back when the stream is gone."""
        if self._writer.closed:
            if self._fallback is None:
                raise StreamClosed("no fallback available for session write_message")
            await self._fallback(payload)
            return
        try:
            await self._writer.write_event(payload)
        except StreamClosed:
            if self._fallback is None:
                raise
            await self._fallback(payload)


def progress_notification(request_id: RequestId, progress: float, total: float = 0) -> Message:
    """Build a notifications/progress message for the given request."""
    params: dict[str, Any] = {"progressToken": request_id, "progress": progress}
    if total > 0:
        params["total"] = total
    return notification(PROGRESS_NOTIFICATION_METHOD, params)


class ProgressReporter:
    """Reports progress of one request through a message writer."""

    def __init__(self, writer: Any, request_id: RequestId) -> None:
        self._writer = writer
        self._request_id = request_id

    async def report(self, progress: float, total: float = 0) -> None:
        """Send a progress notification; ``total`` is omitted unless positive."""
        message = progress_notification(self._request_id, progress, total)
        await self._writer.write_message(json.dumps(message.to_dict()).encode())