"""Event-stream transport for one session, on top of the SDK's SSE transport."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from urllib.parse import urlencode

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.sse import SseServerTransport
from mcp.shared.message import SessionMessage
from starlette.types import Message, Receive, Scope, Send

from .exceptions import TransportError


logger = logging.getLogger(__name__)

SessionStreams = tuple[
    MemoryObjectReceiveStream[SessionMessage | Exception],
    MemoryObjectSendStream[SessionMessage],
]


class SessionTransport:
    """Carries one session's traffic: a long-lived event stream out, posted messages in.

    Each session gets its own ``SseServerTransport``, so the SDK transport
    never holds more than one stream writer and its identifier becomes the
    session identifier. Closure is tracked here so the router can stop
    routing to a stream that has already finished.
    """

    def __init__(self, post_path: str) -> None:
        self.post_path = post_path
        self.sse = SseServerTransport(post_path)
        self.session_id: str | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def endpoint(self) -> str:
        return f"{self.post_path}?session_id={self.session_id}"

    @asynccontextmanager
    async def connect(self, scope: Scope, receive: Receive, send: Send) -> AsyncIterator[SessionStreams]:
        """Open the event stream and yield the SDK read/write streams for the server."""

        if self.session_id is not None:
            raise TransportError(message="Transport already connected", details={"session_id": self.session_id})

        async def send_until_complete(message: Message) -> None:
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                self._closed = True
            await send(message)

        try:
            async with self.sse.connect_sse(scope, receive, send_until_complete) as streams:
                # one connection per transport, so exactly one writer is registered
                self.session_id = next(iter(self.sse._read_stream_writers)).hex
                yield streams
        finally:
            self._closed = True
            logger.debug("transport %s closed", self.session_id)

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Hand one posted request to the SDK transport, addressed to this session."""

        if self.session_id is None:
            raise TransportError(message="Transport not connected")
        if self._closed:
            raise TransportError(message="Transport closed", details={"session_id": self.session_id})
        query = urlencode({"session_id": self.session_id}).encode("ascii")
        await self.sse.handle_post_message({**scope, "query_string": query}, receive, send)

    def close(self) -> None:
        """Stop accepting posted messages; repeated calls are no-ops."""

        self._closed = True
