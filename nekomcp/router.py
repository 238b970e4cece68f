"""Session routing: one MCP server and one transport per event-stream connection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator

import anyio
from mcp.server import Server
from starlette.types import Receive, Scope, Send

from .audit import EventLogger
from .exceptions import MissingSessionId, SessionNotFound, TransportError
from .transport import SessionTransport
from .types import Metrics


logger = logging.getLogger(__name__)

ServerFactory = Callable[[str], Server]
TransportFactory = Callable[[], SessionTransport]


@dataclass
class Session:
    session_id: str
    server: Server
    transport: SessionTransport
    cancel_scope: anyio.CancelScope = field(default_factory=anyio.CancelScope, repr=False)
    finished: anyio.Event = field(default_factory=anyio.Event, repr=False)


class SessionRegistry:
    """Live sessions keyed by identifier.

    Only touched from the event loop thread, so plain dict operations are
    atomic with respect to lookups.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        if session.session_id in self._sessions:
            raise TransportError(message="Duplicate session identifier", details={"session_id": session.session_id})
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))


class SessionRouter:
    """Runs sessions, routes posted messages to them and tears them down."""

    def __init__(
        self,
        server_factory: ServerFactory,
        transport_factory: TransportFactory,
        *,
        registry: SessionRegistry | None = None,
        events: EventLogger | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self.server_factory = server_factory
        self.transport_factory = transport_factory
        self.registry = registry if registry is not None else SessionRegistry()
        self.events = events
        self.metrics = metrics or Metrics()

    async def run_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one event-stream connection until it closes.

        The session is registered once the transport has its identifier and is
        removed when the server's run loop ends, whatever the reason.
        """

        transport = self.transport_factory()
        session: Session | None = None
        try:
            async with transport.connect(scope, receive, send) as (read_stream, write_stream):
                session = self._open(transport)
                try:
                    with session.cancel_scope:
                        await session.server.run(
                            read_stream,
                            write_stream,
                            session.server.create_initialization_options(),
                        )
                finally:
                    self.close_session(session.session_id)
                    # the event stream, and with it the response, ends once its writer closes
                    write_stream.close()
                    session.finished.set()
        except Exception as exc:
            self.metrics.errors += 1
            if session is None:
                logger.error("failed to start session: %s", exc)
                self._log("session.open", transport.session_id, outcome="error", detail=str(exc))
                raise TransportError(message="Failed to establish SSE connection") from exc
            logger.exception("session %s ended with an error", session.session_id)
            raise

    def _open(self, transport: SessionTransport) -> Session:
        if transport.session_id is None:
            raise TransportError(message="Transport did not assign a session identifier")
        session = Session(
            session_id=transport.session_id,
            server=self.server_factory(transport.session_id),
            transport=transport,
        )
        self.registry.add(session)
        self.metrics.sessions_opened += 1
        self._log("session.open", session.session_id)
        return session

    async def route_message(self, session_id: str | None, scope: Scope, receive: Receive, send: Send) -> None:
        if not session_id:
            raise MissingSessionId(message="Missing sessionId query parameter")
        session = self.registry.get(session_id)
        if session is None or session.transport.closed:
            raise SessionNotFound(message="Unknown session", details={"session_id": session_id})
        self.metrics.messages_routed += 1
        await session.transport.handle_post_message(scope, receive, send)

    def close_session(self, session_id: str) -> None:
        """Remove a session and stop its server; unknown identifiers are ignored."""

        session = self.registry.remove(session_id)
        if session is None:
            return
        session.transport.close()
        session.cancel_scope.cancel()
        self.metrics.sessions_closed += 1
        self._log("session.close", session_id)

    async def shutdown(self, timeout: float = 5.0) -> None:
        sessions = [session for session in map(self.registry.get, self.registry) if session is not None]
        for session in sessions:
            self.close_session(session.session_id)
        with anyio.move_on_after(timeout):
            for session in sessions:
                await session.finished.wait()

    def _log(self, event: str, session_id: str | None, *, outcome: str = "ok", detail: str | None = None) -> None:
        if self.events is not None:
            self.events.log(event=event, session_id=session_id, outcome=outcome, detail=detail)
