"""MCP Host: conversation orchestration over a Model Context Protocol server."""

__version__ = "0.1.0"
