"""Tests for the host's structlog configuration."""

import json
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import structlog

from mcp_host.core import logging as host_logging
from mcp_host.core.config import Settings
from mcp_host.core.logging import NOISY_LOGGERS, HostContext, build_processors, setup_logging


def capture(settings: Settings):
    """Bound logger running the host processor chain into a list."""
    lines = []
    stdlib_logger = SimpleNamespace(
        name="mcp_host.mcp.client",
        isEnabledFor=lambda level: True,
        info=lines.append,
        warning=lines.append,
    )
    logger = structlog.wrap_logger(
        stdlib_logger,
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
    )
    return logger, lines


class TestHostContext:

    def test_adds_service_and_server(self):
        event = HostContext("http://mcp.example/mcp")(None, "info", {"event": "connected"})
        assert event == {"event": "connected", "service": "mcp-host", "mcp_server": "http://mcp.example/mcp"}

    def test_bound_server_wins(self):
        event = HostContext("http://mcp.example/mcp")(None, "info", {"event": "x", "mcp_server": "http://other"})
        assert event["mcp_server"] == "http://other"

    def test_json_lines_carry_host_context(self):
        logger, lines = capture(Settings(MCP_SERVER_URL="http://mcp.example/mcp", LOG_FORMAT="json"))

        logger.warning("Streamable HTTP returned 4xx, falling back to SSE transport", status_code=404)

        line = json.loads(lines[0])
        assert line["event"] == "Streamable HTTP returned 4xx, falling back to SSE transport"
        assert line["service"] == "mcp-host"
        assert line["mcp_server"] == "http://mcp.example/mcp"
        assert line["logger"] == "mcp_host.mcp.client"
        assert line["level"] == "warning"
        assert line["status_code"] == 404

    def test_text_format_uses_console_renderer(self):
        processors = build_processors(Settings(LOG_FORMAT="text"))
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


class TestSetupLogging:

    def test_quiets_transport_loggers_above_debug(self, monkeypatch):
        monkeypatch.setattr(host_logging.structlog, "configure", MagicMock())
        monkeypatch.setattr(host_logging.logging, "basicConfig", MagicMock())
        saved = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
        try:
            setup_logging(Settings(LOG_LEVEL="INFO"))
            assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)

            host_logging.structlog.configure.assert_called_once()
            processors = host_logging.structlog.configure.call_args.kwargs["processors"]
            assert any(isinstance(p, HostContext) for p in processors)
        finally:
            for name, level in saved.items():
                logging.getLogger(name).setLevel(level)

    def test_debug_keeps_transport_loggers(self, monkeypatch):
        monkeypatch.setattr(host_logging.structlog, "configure", MagicMock())
        monkeypatch.setattr(host_logging.logging, "basicConfig", MagicMock())
        logging.getLogger("httpx").setLevel(logging.NOTSET)

        setup_logging(Settings(LOG_LEVEL="DEBUG"))

        assert logging.getLogger("httpx").level == logging.NOTSET
