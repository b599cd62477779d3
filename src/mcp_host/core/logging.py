"""
Host Logging

structlog over the standard library. Every event carries the host's
service name and the MCP server it talks to, so log lines from several
hosts pointed at different servers can be told apart.
"""

import logging
import sys
from typing import Any, Dict, Optional, Union

import structlog

from mcp_host.core.config import Settings, settings as default_settings


SERVICE_NAME = "mcp-host"

# Per-request chatter from the HTTP and SDK layers; the host logs its own
# connect, fallback and retry decisions
NOISY_LOGGERS = ("httpx", "httpcore", "mcp.client.streamable_http", "mcp.client.sse")


class HostContext:
    """structlog processor that stamps events with the service and MCP server."""

    def __init__(self, mcp_server: str, service: str = SERVICE_NAME):
        self.mcp_server = mcp_server
        self.service = service

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", self.service)
        event_dict.setdefault("mcp_server", self.mcp_server)
        return event_dict


def build_processors(settings: Settings) -> list:
    """Processor chain for the given settings; the renderer is always last."""
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        HostContext(settings.MCP_SERVER_URL),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _get_renderer(settings),
    ]


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the root logger for the host process.

    Args:
        settings: Host settings, defaults to the module-level settings
    """
    settings = settings or default_settings

    structlog.configure(
        processors=build_processors(settings),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.LOG_LEVEL.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _get_renderer(settings: Settings) -> Union[structlog.processors.JSONRenderer, structlog.dev.ConsoleRenderer]:
    if settings.LOG_FORMAT.lower() == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
