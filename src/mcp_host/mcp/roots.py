"""Roots exposed to the MCP server."""

import threading
from typing import Dict, List, Optional

from mcp.types import ListRootsResult, Root
from pydantic import ValidationError

from .exceptions import RootExistsError


class RootsStore:
    """Ordered list of {name, uri} roots, unique on both name and uri."""

    def __init__(self):
        self._roots: List[Dict[str, str]] = []
        self._lock = threading.Lock()

    def list(self) -> List[Dict[str, str]]:
        with self._lock:
            return [dict(root) for root in self._roots]

    def add(self, name: str, uri: str) -> Dict[str, str]:
        """
        Add a root.

        Raises:
            ValueError: If name or uri is empty, or uri is not a file uri
            RootExistsError: If the name or uri is already registered
        """
        if not name or not uri:
            raise ValueError("Name and URI required")
        try:
            Root(uri=uri, name=name)
        except ValidationError as e:
            raise ValueError(f"Invalid root uri {uri}: {e.errors()[0]['msg']}") from e

        root = {"name": name, "uri": uri}
        with self._lock:
            if any(r["name"] == name or r["uri"] == uri for r in self._roots):
                raise RootExistsError("Root already exists", details=root)
            self._roots.append(root)
        return dict(root)

    def remove(self, name: str) -> Optional[Dict[str, str]]:
        """Remove a root by name, returning it, or None if unknown."""
        with self._lock:
            for index, root in enumerate(self._roots):
                if root["name"] == name:
                    return self._roots.pop(index)
        return None

    def as_result(self) -> ListRootsResult:
        """Answer for the server's roots/list request."""
        return ListRootsResult(roots=[Root(uri=r["uri"], name=r["name"]) for r in self.list()])
