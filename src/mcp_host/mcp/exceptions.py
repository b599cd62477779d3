"""
MCP Client Exception Classes

Custom exceptions for MCP host operations and error handling.
"""

from typing import Optional, Dict, Any


class MCPClientError(Exception):
    """Base exception for all MCP client errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MCPConnectionError(MCPClientError):
    """Raised when connection to MCP server fails."""

    def __init__(
        self,
        message: str,
        server_url: Optional[str] = None,
        transport_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.server_url = server_url
        self.transport_type = transport_type


class MCPTransportError(MCPClientError):
    """Raised when transport-level operations fail."""

    def __init__(
        self,
        message: str,
        transport_type: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.transport_type = transport_type
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        """True when the server answered with an HTTP 4xx status."""
        return self.status_code is not None and 400 <= self.status_code < 500


class MCPNotConnectedError(MCPClientError):
    """Raised when an operation needs a session that is not established yet."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"MCP client is not connected (operation: {operation})", details)
        self.operation = operation


class SamplingRejectedError(MCPClientError):
    """Raised when the human denies a server sampling request."""

    code = -1

    def __init__(self, request_id: str, message: str = "User rejected sampling request"):
        super().__init__(message, {"request_id": request_id})
        self.request_id = request_id


class RootExistsError(MCPClientError):
    """Raised when a root with the same name or uri is already registered."""
