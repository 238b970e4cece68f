"""Custom exceptions for nekomcp."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, ErrorData


@dataclass(eq=False)
class NekoMCPException(Exception):
    """Base class for nekomcp exceptions."""

    message: str
    http_status: int = 400
    details: dict[str, object] | None = None

    jsonrpc_code: ClassVar[int] = INTERNAL_ERROR

    def __str__(self) -> str:  # pragma: no cover - dataclass str wrapper
        return self.message

    def error_data(self) -> ErrorData:
        return ErrorData(code=self.jsonrpc_code, message=self.message, data=self.details)


@dataclass(eq=False)
class MissingSessionId(NekoMCPException):
    """Raised when a posted message carries no session identifier."""

    http_status: int = 400


@dataclass(eq=False)
class SessionNotFound(NekoMCPException):
    """Raised when a posted message names a session that is not open."""

    http_status: int = 404


@dataclass(eq=False)
class ToolNotFound(NekoMCPException):
    http_status: int = 404
    jsonrpc_code: ClassVar[int] = INVALID_PARAMS


@dataclass(eq=False)
class ResourceNotFound(NekoMCPException):
    http_status: int = 404
    jsonrpc_code: ClassVar[int] = INVALID_PARAMS


@dataclass(eq=False)
class InvalidArguments(NekoMCPException):
    """Raised when tool arguments fail validation."""

    http_status: int = 400
    jsonrpc_code: ClassVar[int] = INVALID_PARAMS


@dataclass(eq=False)
class UpstreamError(NekoMCPException):
    """Raised when The Cat API answers with an error or an unusable payload."""

    http_status: int = 502


@dataclass(eq=False)
class TransportError(NekoMCPException):
    """Raised when a session transport cannot be connected or has gone away."""

    http_status: int = 500


@dataclass(eq=False)
class BadConfig(NekoMCPException):
    """Raised when a configuration file cannot be parsed or validated."""

    http_status: int = 422
