"""
MCP Transport Factory

Factory for the two HTTP transports the host can negotiate with an MCP
server: streamable HTTP (primary) and the legacy SSE transport (fallback),
plus classification of connect failures into retry-same vs. fall-back.
"""

import re
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import urlparse

import httpx
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared._httpx_utils import create_mcp_http_client

from ..core.logging import get_logger
from .exceptions import MCPTransportError


logger = get_logger(__name__)

# Substrings that identify an HTTP 4xx answer when no status code is attached
_CLIENT_ERROR_PATTERNS = (
    re.compile(r"\(HTTP 4\d\d\)"),
    re.compile(r"\bHTTP 4\d\d\b"),
    re.compile(r"Client error '4\d\d"),
)
_STATUS_PATTERN = re.compile(r"4\d\d")


class TransportType(str, Enum):
    STREAMABLE_HTTP = "streamable_http"
    SSE = "sse"


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk an exception, its cause/context chain and any exception-group members."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        if isinstance(current, BaseExceptionGroup):
            stack.extend(current.exceptions)
        stack.append(current.__cause__)
        stack.append(current.__context__)


def find_status_code(exc: BaseException) -> Optional[int]:
    """Return the first HTTP 4xx status found in the exception tree, if any."""
    for current in _iter_causes(exc):
        if isinstance(current, MCPTransportError) and current.status_code is not None:
            return current.status_code
        if isinstance(current, httpx.HTTPStatusError):
            return current.response.status_code
        status = getattr(current, "status_code", None) or getattr(current, "status", None)
        if isinstance(status, int) and 400 <= status < 600:
            return status
        text = str(current)
        for pattern in _CLIENT_ERROR_PATTERNS:
            match = pattern.search(text)
            if match:
                return int(_STATUS_PATTERN.search(match.group(0)).group(0))
    return None


def classify_transport_error(
    exc: BaseException,
    transport_type: TransportType,
    url: Optional[str] = None
) -> MCPTransportError:
    """Wrap a connect failure, attaching the HTTP status when one can be found."""
    if isinstance(exc, MCPTransportError):
        return exc

    leaves = [e for e in _iter_causes(exc) if not isinstance(e, BaseExceptionGroup)]
    message = "; ".join(f"{type(e).__name__}: {e}" for e in leaves[:3]) or str(exc)
    return MCPTransportError(
        f"Failed to connect using {transport_type.value} transport: {message}",
        transport_type=transport_type.value,
        status_code=find_status_code(exc),
        details={"url": url, "error_type": type(exc).__name__},
    )


class ResponseStatusRecorder:
    """
    httpx client factory that remembers the first HTTP 4xx status it sees.

    The streamable HTTP client answers a 404 on a request with a JSON-RPC
    "Session terminated" error instead of raising, so the status is only
    visible on the wire.
    """

    def __init__(self, base_factory: Callable[..., httpx.AsyncClient] = create_mcp_http_client):
        self._base_factory = base_factory
        self.status_code: Optional[int] = None

    def __call__(
        self,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        auth: Optional[httpx.Auth] = None
    ) -> httpx.AsyncClient:
        client = self._base_factory(headers=headers, timeout=timeout, auth=auth)
        hooks = client.event_hooks
        hooks["response"] = [*hooks.get("response", []), self._record]
        client.event_hooks = hooks
        return client

    async def _record(self, response: httpx.Response) -> None:
        if self.status_code is None and 400 <= response.status_code < 500:
            self.status_code = response.status_code


def _validate_url(url: str, transport_type: TransportType) -> str:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        logger.error(f"Invalid URL format: {url}")
        raise MCPTransportError(
            f"Invalid URL format: {url}",
            transport_type=transport_type.value
        )
    return url


class MCPTransportFactory:
    """Factory for creating MCP transport connections."""

    @staticmethod
    @asynccontextmanager
    async def create_http_transport(
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        httpx_client_factory: Optional[Callable[..., httpx.AsyncClient]] = None
    ) -> AsyncGenerator[Tuple[Any, Any], None]:
        """
        Create a streamable HTTP transport connection.

        Args:
            url: MCP server URL
            headers: Additional HTTP headers
            timeout: HTTP timeout in seconds, None keeps the SDK default
            httpx_client_factory: Builds the underlying httpx client, defaults to the SDK factory

        Yields:
            Tuple of (read_stream, write_stream)

        Raises:
            MCPTransportError: If the HTTP connection fails, carrying any HTTP 4xx
                status seen on the wire
        """
        url = _validate_url(url, TransportType.STREAMABLE_HTTP)
        recorder = ResponseStatusRecorder(httpx_client_factory or create_mcp_http_client)
        kwargs: Dict[str, Any] = {"url": url, "headers": headers, "httpx_client_factory": recorder}
        if timeout is not None:
            kwargs["timeout"] = timeout

        logger.debug(f"Creating streamable HTTP transport for {url}")
        try:
            async with streamablehttp_client(**kwargs) as (read_stream, write_stream, _get_session_id):
                yield read_stream, write_stream
        except Exception as e:
            error = classify_transport_error(e, TransportType.STREAMABLE_HTTP, url)
            if error.status_code is None and recorder.status_code is not None:
                error.status_code = recorder.status_code
            raise error from e

    @staticmethod
    @asynccontextmanager
    async def create_sse_transport(
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        httpx_client_factory: Optional[Callable[..., httpx.AsyncClient]] = None
    ) -> AsyncGenerator[Tuple[Any, Any], None]:
        """
        Create a legacy SSE transport connection.

        Args:
            url: MCP server URL
            headers: Additional HTTP headers
            timeout: HTTP timeout in seconds, None keeps the SDK default
            httpx_client_factory: Builds the underlying httpx client, defaults to the SDK factory

        Yields:
            Tuple of (read_stream, write_stream)

        Raises:
            MCPTransportError: If the SSE connection fails
        """
        url = _validate_url(url, TransportType.SSE)
        kwargs: Dict[str, Any] = {"url": url, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if httpx_client_factory is not None:
            kwargs["httpx_client_factory"] = httpx_client_factory

        logger.debug(f"Creating SSE transport for {url}")
        try:
            async with sse_client(**kwargs) as (read_stream, write_stream):
                yield read_stream, write_stream
        except Exception as e:
            raise classify_transport_error(e, TransportType.SSE, url) from e

    @classmethod
    def create_transport(
        cls,
        transport_type: TransportType,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        httpx_client_factory: Optional[Callable[..., httpx.AsyncClient]] = None
    ):
        """
        Create a transport context manager for the requested transport type.

        Returns:
            Async context manager yielding (read_stream, write_stream)
        """
        if transport_type is TransportType.STREAMABLE_HTTP:
            return cls.create_http_transport(
                url, headers=headers, timeout=timeout, httpx_client_factory=httpx_client_factory
            )
        if transport_type is TransportType.SSE:
            return cls.create_sse_transport(
                url, headers=headers, timeout=timeout, httpx_client_factory=httpx_client_factory
            )
        raise MCPTransportError(
            f"Unsupported transport type: {transport_type}",
            transport_type=str(transport_type)
        )
