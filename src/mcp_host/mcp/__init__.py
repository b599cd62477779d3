"""
MCP Client Integration Module

Protocol client for the host's MCP server: transport negotiation,
discovery, notification routing, the capability cache, roots, progress
tracking and the sampling approval handshake.
"""

from .cache import CapabilityCache
from .client import ConnectionState, MCPHostClient
from .progress import OperationCancelledError, ProgressMiddleware, with_progress
from .roots import RootsStore
from .sampling import SamplingHandler
from .transport_factory import MCPTransportFactory, TransportType
from .exceptions import (
    MCPClientError, MCPConnectionError, MCPTransportError,
    MCPNotConnectedError, SamplingRejectedError, RootExistsError
)

__all__ = [
    "CapabilityCache",
    "ConnectionState",
    "MCPHostClient",
    "OperationCancelledError",
    "ProgressMiddleware",
    "with_progress",
    "RootsStore",
    "SamplingHandler",
    "MCPTransportFactory",
    "TransportType",
    "MCPClientError",
    "MCPConnectionError",
    "MCPTransportError",
    "MCPNotConnectedError",
    "SamplingRejectedError",
    "RootExistsError",
]
