"""HTTP application wiring the session router, registries and static files."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.types import Message, Receive, Scope, Send

from . import __version__
from .audit import EventLogger
from .catapi import CatApiClient
from .config import Settings, load_settings
from .exceptions import NekoMCPException
from .protocol import build_server
from .resources import ResourceRegistry
from .router import SessionRouter
from .static import PublicDirectory
from .tools import build_tool_registry
from .transport import SessionTransport


logger = logging.getLogger(__name__)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "content-type",
}
POST_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "content-type",
}


class ResponseTracker:
    """ASGI ``send`` wrapper that notes whether a response has begun and adds headers to it."""

    def __init__(self, send: Send, headers: dict[str, str]) -> None:
        self._send = send
        self._headers = [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers.items()]
        self.started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
            message = {**message, "headers": [*message.get("headers", []), *self._headers]}
        await self._send(message)


class AlreadySent(Response):
    """Returned when the SDK transport has written the response itself."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        return None


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    resources: ResourceRegistry | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    server_settings = settings.server
    events = EventLogger(settings.logging, __version__)
    cat_api = CatApiClient(settings.cat_api, http_client=http_client)
    tools = build_tool_registry(cat_api, settings.cat_api)
    resources = resources or ResourceRegistry.from_public_dir(server_settings.public_dir)
    public = PublicDirectory(server_settings.public_dir)

    router = SessionRouter(
        lambda session_id: build_server(tools, resources, session_id=session_id, events=events),
        lambda: SessionTransport(server_settings.post_path),
        events=events,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await router.shutdown()
        await cat_api.aclose()

    app = FastAPI(title="nekomcp", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.router = router
    app.state.tools = tools
    app.state.resources = resources

    @app.options(server_settings.sse_path)
    @app.options(server_settings.post_path)
    async def preflight() -> Response:
        return Response(status_code=204, headers=CORS_PREFLIGHT_HEADERS)

    @app.get(server_settings.sse_path)
    async def open_stream(request: Request) -> Response:
        send = ResponseTracker(request._send, CORS_HEADERS)
        try:
            await router.run_session(request.scope, request.receive, send)
        except Exception as exc:
            if send.started:
                logger.warning("event stream ended with an error after it began: %s", exc)
                return AlreadySent()
            if isinstance(exc, NekoMCPException):
                return PlainTextResponse(exc.message, status_code=exc.http_status, headers=CORS_HEADERS)
            return PlainTextResponse("Failed to establish SSE connection", status_code=500, headers=CORS_HEADERS)
        return AlreadySent()

    @app.post(server_settings.post_path)
    async def post_message(
        request: Request,
        session_id: str | None = Query(default=None, alias="sessionId"),
        announced_id: str | None = Query(default=None, alias="session_id"),
    ) -> Response:
        send = ResponseTracker(request._send, POST_HEADERS)
        target = session_id or announced_id
        try:
            await router.route_message(target, request.scope, request.receive, send)
        except NekoMCPException as exc:
            if exc.http_status >= 500:
                router.metrics.errors += 1
                logger.error("failed to process message for session %s: %s", target, exc)
            if send.started:
                return AlreadySent()
            return PlainTextResponse(exc.message, status_code=exc.http_status, headers=POST_HEADERS)
        except Exception:
            router.metrics.errors += 1
            logger.exception("failed to process message for session %s", target)
            if send.started:
                return AlreadySent()
            return PlainTextResponse("Failed to process message", status_code=500, headers=POST_HEADERS)
        return AlreadySent()

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"}, headers=CORS_HEADERS)

    @app.get("/metrics")
    async def metrics() -> dict[str, int]:
        return router.metrics.to_dict(active_sessions=len(router.registry))

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    async def static_files(request: Request, path: str) -> Response:
        if request.method in ("GET", "HEAD"):
            response = public.response(path, headers=CORS_HEADERS)
            if response is not None:
                return response
        return PlainTextResponse("Not Found", status_code=404)

    return app
