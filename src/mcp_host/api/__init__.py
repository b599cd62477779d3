"""HTTP API for the MCP Host."""

from .routes import router

__all__ = ["router"]
