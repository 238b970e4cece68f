"""Structured session, tool-call and resource-read event logging."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from .config import LoggingSettings


EVENTS_LOGGER = "nekomcp.events"


def build_event_handler(settings: LoggingSettings) -> logging.Handler:
    """One JSON object per line, to stderr or a size-rotated file."""

    handler: logging.Handler
    if settings.output == "file":
        handler = RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.rotate_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


class EventLogger:
    """Writes session lifecycle, tool-call and resource-read events as JSON lines.

    Every app instance shares the ``nekomcp.events`` logger; the handler is
    attached once, by whichever instance is created first.
    """

    def __init__(self, settings: LoggingSettings, server_version: str) -> None:
        self.server_version = server_version
        self.logger = logging.getLogger(EVENTS_LOGGER)
        self.logger.setLevel(settings.level)
        if not self.logger.handlers:
            self.logger.addHandler(build_event_handler(settings))

    def log(
        self,
        *,
        event: str,
        session_id: Optional[str] = None,
        tool: Optional[str] = None,
        uri: Optional[str] = None,
        outcome: str = "ok",
        detail: Optional[str] = None,
        latency_ms: float | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "session_id": session_id,
            "tool": tool,
            "uri": uri,
            "outcome": outcome,
            "detail": detail,
            "latency_ms": latency_ms,
            "server_version": self.server_version,
        }
        level = logging.INFO if outcome == "ok" else logging.WARNING
        self.logger.log(level, json.dumps(payload, ensure_ascii=False))
