import asyncio
import json
import re
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from mcp.types import LATEST_PROTOCOL_VERSION
from sse_starlette.sse import AppStatus

from nekomcp.audit import EventLogger
from nekomcp.catapi import CatApiClient
from nekomcp.config import DEFAULT_PUBLIC_DIR, CatApiSettings
from nekomcp.protocol import build_server
from nekomcp.resources import ResourceRegistry
from nekomcp.router import SessionRouter
from nekomcp.tools import ToolRegistry, build_tool_registry
from nekomcp.transport import SessionTransport


BREEDS = [
    {
        "id": "beng",
        "name": "Bengal",
        "temperament": "Alert, Agile, Energetic",
        "origin": "United States",
        "wikipedia_url": "https://en.wikipedia.org/wiki/Bengal_cat",
    },
    {"id": "sibe", "name": "Siberian", "temperament": "Curious, Playful", "origin": "Russia"},
]

INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 0,
    "method": "initialize",
    "params": {
        "protocolVersion": LATEST_PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "nekomcp-tests", "version": "0"},
    },
}
INITIALIZED = {"jsonrpc": "2.0", "method": "notifications/initialized"}

Asgi = Callable[[dict, Callable[[], Awaitable[dict]], Callable[[dict], Awaitable[None]]], Awaitable[None]]


def sample_images(count: int) -> list[dict[str, Any]]:
    images = []
    for idx in range(count):
        image: dict[str, Any] = {
            "id": f"img{idx}",
            "url": f"https://cdn2.thecatapi.com/images/img{idx}.jpg",
            "width": 800,
            "height": 600,
        }
        if idx % 2 == 0:
            image["breeds"] = [BREEDS[(idx // 2) % len(BREEDS)]]
        images.append(image)
    return images


class FakeCatApi:
    """Stands in for The Cat API and records every request it sees."""

    def __init__(self, status: int = 200, payload: Any = None, delay: float = 0.0) -> None:
        self.status = status
        self.payload = payload
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.payload is not None:
            return httpx.Response(self.status, json=self.payload)
        limit = int(request.url.params.get("limit", "1"))
        return httpx.Response(self.status, json=sample_images(limit))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def rpc(request_id: Any, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def http_scope(method: str, path: str, query: str = "", headers: dict[str, str] | None = None) -> dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("ascii"),
        "root_path": "",
        "query_string": query.encode("ascii"),
        "headers": [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in (headers or {}).items()],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }


def parse_block(block: str) -> tuple[str, str] | None:
    event = "message"
    data: list[str] = []
    for line in block.splitlines():
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            value = line[len("data:"):]
            data.append(value[1:] if value.startswith(" ") else value)
    if not data:
        return None
    return event, "\n".join(data)


class StreamPeer:
    """The client side of one event-stream request, for driving ASGI code directly."""

    def __init__(self, path: str = "/mcp") -> None:
        self.scope = http_scope("GET", path)
        self.status: int | None = None
        self.headers: dict[str, str] = {}
        self.events: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._buffer = ""
        self._disconnected = asyncio.Event()

    async def receive(self) -> dict[str, Any]:
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: dict[str, Any]) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.headers = {name.decode("latin-1"): value.decode("latin-1") for name, value in message.get("headers", [])}
        elif message["type"] == "http.response.body":
            self._buffer += message.get("body", b"").decode("utf-8")
            *blocks, self._buffer = re.split(r"\r\n\r\n|\n\n", self._buffer)
            for block in blocks:
                parsed = parse_block(block)
                if parsed is not None:
                    self.events.put_nowait(parsed)

    async def next_event(self, timeout: float = 2.0) -> tuple[str, str]:
        return await asyncio.wait_for(self.events.get(), timeout=timeout)

    async def next_message(self, timeout: float = 2.0) -> dict[str, Any]:
        while True:
            event, data = await self.next_event(timeout)
            if event == "message":
                return json.loads(data)

    async def endpoint(self) -> str:
        event, data = await self.next_event()
        assert event == "endpoint"
        return data

    def disconnect(self) -> None:
        self._disconnected.set()


class PostPeer:
    """The client side of one posted message."""

    def __init__(self, path: str, body: bytes, query: str = "", content_type: str = "application/json") -> None:
        self.scope = http_scope("POST", path, query, {"content-type": content_type})
        self.body = body
        self.status: int | None = None
        self.headers: dict[str, str] = {}
        self.text = ""
        self._delivered = False

    async def receive(self) -> dict[str, Any]:
        if self._delivered:
            return {"type": "http.disconnect"}
        self._delivered = True
        return {"type": "http.request", "body": self.body, "more_body": False}

    async def send(self, message: dict[str, Any]) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
            self.headers = {name.decode("latin-1"): value.decode("latin-1") for name, value in message.get("headers", [])}
        elif message["type"] == "http.response.body":
            self.text += message.get("body", b"").decode("utf-8")


def session_id_from(endpoint: str) -> str:
    return parse_qs(urlsplit(endpoint).query)["session_id"][0]


def encode(message: Any) -> bytes:
    return message if isinstance(message, bytes) else json.dumps(message).encode("utf-8")


async def open_stream(asgi: Asgi, path: str = "/mcp") -> tuple[StreamPeer, asyncio.Task[None], str]:
    """Start an event-stream request in the background and wait for its endpoint event."""

    stream = StreamPeer(path)
    task = asyncio.create_task(asgi(stream.scope, stream.receive, stream.send))
    endpoint = await stream.endpoint()
    return stream, task, endpoint


async def post_to(app: Asgi, endpoint: str, message: Any, content_type: str = "application/json") -> PostPeer:
    """POST ``message`` through a whole ASGI app, to an endpoint such as an announced one."""

    parts = urlsplit(endpoint)
    peer = PostPeer(parts.path, encode(message), parts.query, content_type)
    await asyncio.wait_for(app(peer.scope, peer.receive, peer.send), timeout=2.0)
    return peer


async def route(router: SessionRouter, session_id: str | None, message: Any) -> PostPeer:
    """Route ``message`` straight through a session router."""

    peer = PostPeer("/mcp/messages", encode(message))
    await asyncio.wait_for(router.route_message(session_id, peer.scope, peer.receive, peer.send), timeout=2.0)
    return peer


async def handshake(send: Callable[[Any], Awaitable[PostPeer]], stream: StreamPeer) -> dict[str, Any]:
    """Run the MCP initialize exchange over an open stream and return the server's reply."""

    assert (await send(INITIALIZE)).status == 202
    reply = await stream.next_message()
    assert (await send(INITIALIZED)).status == 202
    return reply


@pytest.fixture(autouse=True)
def fresh_sse_exit_event(monkeypatch: pytest.MonkeyPatch) -> None:
    # sse-starlette keeps a module-level exit event; every test runs on a new event loop
    monkeypatch.setattr(AppStatus, "should_exit_event", None, raising=False)


@pytest.fixture
def fake_cat_api() -> FakeCatApi:
    return FakeCatApi()


@pytest.fixture
def cat_api_settings() -> CatApiSettings:
    return CatApiSettings()


@pytest.fixture
def resources() -> ResourceRegistry:
    return ResourceRegistry.from_public_dir(DEFAULT_PUBLIC_DIR)


@pytest.fixture
def make_tools(cat_api_settings: CatApiSettings) -> Callable[[FakeCatApi], ToolRegistry]:
    def factory(fake: FakeCatApi, settings: CatApiSettings | None = None) -> ToolRegistry:
        settings = settings or cat_api_settings
        return build_tool_registry(CatApiClient(settings, http_client=fake.client()), settings)

    return factory


@pytest.fixture
def make_router(make_tools: Callable[..., ToolRegistry], resources: ResourceRegistry) -> Callable[..., SessionRouter]:
    def factory(fake: FakeCatApi, *, events: EventLogger | None = None, **kwargs: Any) -> SessionRouter:
        tools = make_tools(fake)
        return SessionRouter(
            lambda session_id: build_server(tools, resources, session_id=session_id, events=events),
            lambda: SessionTransport("/mcp/messages"),
            events=events,
            **kwargs,
        )

    return factory
