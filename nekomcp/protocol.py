"""Per-session MCP server built on the SDK's low-level ``Server``."""

from __future__ import annotations

import logging
import time
from typing import Any

import mcp.types as types
from mcp.server import Server
from mcp.shared.exceptions import McpError

from . import __version__
from .audit import EventLogger
from .exceptions import NekoMCPException, ResourceNotFound
from .resources import ResourceRegistry
from .tools import ToolRegistry


logger = logging.getLogger(__name__)

SERVER_NAME = "neko-mcp-server"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def build_server(
    tools: ToolRegistry,
    resources: ResourceRegistry,
    *,
    session_id: str | None = None,
    events: EventLogger | None = None,
    version: str = __version__,
) -> Server:
    """Build the MCP server for one session.

    The tool and resource registries are shared by every session; the server
    object itself, and with it the protocol state, belongs to one session.
    """

    server: Server = Server(SERVER_NAME, version=version)

    def record(**fields: Any) -> None:
        if events is not None:
            events.log(session_id=session_id, **fields)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [types.Tool.model_validate(descriptor) for descriptor in tools.list_tools()]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        started = time.perf_counter()
        try:
            result = await tools.call(name, arguments)
        except NekoMCPException as exc:
            record(event="tool.call", tool=name, outcome="rejected", detail=exc.message, latency_ms=_elapsed_ms(started))
            raise
        record(
            event="tool.call",
            tool=name,
            outcome="error" if result.is_error else "ok",
            detail=result.text if result.is_error else None,
            latency_ms=_elapsed_ms(started),
        )
        return types.CallToolResult.model_validate(result.to_dict())

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        return [types.Resource.model_validate(descriptor) for descriptor in resources.list_resources()]

    @server.list_resource_templates()
    async def list_resource_templates() -> list[types.ResourceTemplate]:
        return [types.ResourceTemplate.model_validate(descriptor) for descriptor in resources.list_templates()]

    async def read_resource(request: types.ReadResourceRequest) -> types.ServerResult:
        uri = str(request.params.uri)
        try:
            contents = resources.read(uri)
        except ResourceNotFound as exc:
            record(event="resource.read", uri=uri, outcome="rejected", detail=exc.message)
            raise McpError(exc.error_data()) from exc
        record(event="resource.read", uri=uri)
        return types.ServerResult(
            types.ReadResourceResult(
                contents=[types.TextResourceContents.model_validate(content) for content in contents],
            )
        )

    # registered directly: the read_resource() decorator drops per-content _meta
    server.request_handlers[types.ReadResourceRequest] = read_resource
    logger.debug("built MCP server for session %s", session_id)
    return server
