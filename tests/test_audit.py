import asyncio
import json
import logging
import pathlib
from logging.handlers import RotatingFileHandler
from typing import Callable

import pytest

from conftest import FakeCatApi, handshake, open_stream, route, rpc, session_id_from
from nekomcp.audit import EventLogger, build_event_handler
from nekomcp.config import LoggingSettings
from nekomcp.router import SessionRouter


def events_from(caplog: pytest.LogCaptureFixture) -> list[dict]:
    return [json.loads(record.getMessage()) for record in caplog.records if record.name == "nekomcp.events"]


def test_event_logger_writes_json(caplog: pytest.LogCaptureFixture) -> None:
    events = EventLogger(LoggingSettings(), "0.1.0")
    with caplog.at_level(logging.INFO, logger="nekomcp.events"):
        events.log(event="session.open", session_id="abc")
        events.log(event="tool.call", tool="show_cat_gallery", outcome="error", detail="boom")
    opened, failed = events_from(caplog)
    assert opened["event"] == "session.open"
    assert opened["session_id"] == "abc"
    assert opened["server_version"] == "0.1.0"
    assert failed["outcome"] == "error"
    assert caplog.records[-1].levelno == logging.WARNING


def test_event_logger_file_output(tmp_path: pathlib.Path) -> None:
    logger = logging.getLogger("nekomcp.events")
    saved = logger.handlers[:]
    logger.handlers.clear()
    try:
        log_path = tmp_path / "events.log"
        events = EventLogger(LoggingSettings(output="file", file_path=str(log_path)), "0.1.0")
        events.log(event="session.close", session_id="abc")
        for handler in logger.handlers:
            handler.flush()
        assert json.loads(log_path.read_text().splitlines()[0])["event"] == "session.close"
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers[:] = saved


@pytest.mark.asyncio
async def test_session_and_tool_events(
    make_router: Callable[..., SessionRouter], caplog: pytest.LogCaptureFixture
) -> None:
    events = EventLogger(LoggingSettings(), "0.1.0")
    router = make_router(FakeCatApi(), events=events)
    with caplog.at_level(logging.INFO, logger="nekomcp.events"):
        stream, task, endpoint = await open_stream(router.run_session)
        session_id = session_id_from(endpoint)
        await handshake(lambda message: route(router, session_id, message), stream)
        await route(router, session_id, rpc(1, "tools/call", {"name": "show_cat_gallery", "arguments": {"limit": 2}}))
        await stream.next_message()
        await route(router, session_id, rpc(2, "tools/call", {"name": "nope", "arguments": {}}))
        await stream.next_message()
        await route(router, session_id, rpc(3, "resources/read", {"uri": "ui://widget/cat-gallery.html"}))
        await stream.next_message()
        await router.shutdown()
        await asyncio.wait_for(task, timeout=2.0)

    logged = events_from(caplog)
    assert [entry["event"] for entry in logged] == [
        "session.open",
        "tool.call",
        "tool.call",
        "resource.read",
        "session.close",
    ]
    assert logged[1]["outcome"] == "ok"
    assert logged[1]["tool"] == "show_cat_gallery"
    assert logged[1]["latency_ms"] is not None
    assert logged[2]["outcome"] == "rejected"
    assert logged[2]["detail"] == "Unknown tool: nope"
    assert logged[3]["uri"] == "ui://widget/cat-gallery.html"
    assert logged[3]["outcome"] == "ok"
    assert all(entry["session_id"] == session_id for entry in logged)


def test_file_handler_uses_configured_backups(tmp_path: pathlib.Path) -> None:
    handler = build_event_handler(
        LoggingSettings(output="file", file_path=str(tmp_path / "events.log"), backup_count=5)
    )
    try:
        assert isinstance(handler, RotatingFileHandler)
        assert handler.backupCount == 5
        assert handler.encoding == "utf-8"
    finally:
        handler.close()
