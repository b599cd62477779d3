"""
Capability Cache

Last-known tools, prompts, resources and resource templates of the
connected MCP server, host-local tool enable flags, and the resource
content cache with its staleness flags and subscription set.

All state is guarded by one lock and only reachable through methods.
Invalidation flips the stale flag and never drops an entry, so old
content stays available while a refresh is pending.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from mcp.types import Prompt, Resource, ResourceTemplate, Tool
from pydantic import AnyUrl, ValidationError


def normalize_uri(uri: Any) -> str:
    """Canonical cache key for a resource uri (`AnyUrl` and plain strings agree)."""
    text = str(uri)
    try:
        return str(AnyUrl(text))
    except ValidationError:
        return text


@dataclass
class ResourceCacheEntry:
    content: str
    stale: bool = False


@dataclass
class ToolEntry:
    tool: Tool
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.tool.name,
            "description": self.tool.description or "",
            "enabled": self.enabled,
        }


class CapabilityCache:
    """Shared source of truth for what the model can currently see."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tools: List[ToolEntry] = []
        self._prompts: List[Prompt] = []
        self._resources: List[Resource] = []
        self._templates: List[ResourceTemplate] = []
        self._tools_stale = False
        self._prompts_stale = False
        self._entries: Dict[str, ResourceCacheEntry] = {}
        self._subscribed: Set[str] = set()

    # Capability snapshot

    def set_tools(self, tools: Iterable[Tool]) -> None:
        """Replace the tool list, carrying enable flags over by name."""
        with self._lock:
            previous = {entry.tool.name: entry.enabled for entry in self._tools}
            self._tools = [ToolEntry(tool, previous.get(tool.name, True)) for tool in tools]
            self._tools_stale = False

    def tools(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [entry.to_dict() for entry in self._tools]

    def enabled_tools(self) -> List[Tool]:
        with self._lock:
            return [entry.tool for entry in self._tools if entry.enabled]

    def set_tool_enabled(self, name: str, enabled: bool) -> Optional[Dict[str, Any]]:
        with self._lock:
            for entry in self._tools:
                if entry.tool.name == name:
                    entry.enabled = bool(enabled)
                    return entry.to_dict()
        return None

    def set_prompts(self, prompts: Iterable[Prompt]) -> None:
        with self._lock:
            self._prompts = list(prompts)
            self._prompts_stale = False

    def prompts(self) -> List[Prompt]:
        with self._lock:
            return list(self._prompts)

    def set_resources(self, resources: Iterable[Resource]) -> Tuple[List[str], List[str]]:
        """
        Replace the resource list.

        Returns:
            (added uris, removed uris) relative to the previous list
        """
        resources = list(resources)
        with self._lock:
            old_uris = [normalize_uri(r.uri) for r in self._resources]
            new_uris = [normalize_uri(r.uri) for r in resources]
            added = [uri for uri in new_uris if uri not in old_uris]
            removed = [uri for uri in old_uris if uri not in new_uris]
            self._resources = resources
            for uri in removed:
                entry = self._entries.get(uri)
                if entry is not None:
                    entry.stale = True
        return added, removed

    def resources(self) -> List[Resource]:
        with self._lock:
            return list(self._resources)

    def resource_uris(self) -> List[str]:
        with self._lock:
            return [normalize_uri(r.uri) for r in self._resources]

    def set_templates(self, templates: Iterable[ResourceTemplate]) -> None:
        with self._lock:
            self._templates = list(templates)

    def templates(self) -> List[ResourceTemplate]:
        with self._lock:
            return list(self._templates)

    def mark_tools_stale(self) -> None:
        with self._lock:
            self._tools_stale = True

    def mark_prompts_stale(self) -> None:
        with self._lock:
            self._prompts_stale = True

    @property
    def tools_stale(self) -> bool:
        with self._lock:
            return self._tools_stale

    @property
    def prompts_stale(self) -> bool:
        with self._lock:
            return self._prompts_stale

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """JSON-ready view of the capability lists."""
        with self._lock:
            return {
                "tools": [e.tool.model_dump(mode="json", exclude_none=True) for e in self._tools],
                "prompts": [p.model_dump(mode="json", exclude_none=True) for p in self._prompts],
                "resources": [r.model_dump(mode="json", exclude_none=True) for r in self._resources],
                "templates": [t.model_dump(mode="json", exclude_none=True) for t in self._templates],
            }

    # Resource content

    def get_fresh(self, uri: Any) -> Optional[str]:
        """Cached content for `uri`, or None when absent or stale."""
        with self._lock:
            entry = self._entries.get(normalize_uri(uri))
            if entry is None or entry.stale:
                return None
            return entry.content

    def entry(self, uri: Any) -> Optional[ResourceCacheEntry]:
        with self._lock:
            entry = self._entries.get(normalize_uri(uri))
            return ResourceCacheEntry(entry.content, entry.stale) if entry else None

    def store(self, uri: Any, content: str) -> None:
        with self._lock:
            self._entries[normalize_uri(uri)] = ResourceCacheEntry(content=content, stale=False)

    def invalidate(self, uri: Any) -> bool:
        """Mark `uri` stale. Returns True if an entry existed."""
        with self._lock:
            entry = self._entries.get(normalize_uri(uri))
            if entry is None:
                return False
            entry.stale = True
            return True

    def claim_subscription(self, uri: Any) -> bool:
        """Record `uri` as subscribed. Returns False if it was already claimed."""
        key = normalize_uri(uri)
        with self._lock:
            if key in self._subscribed:
                return False
            self._subscribed.add(key)
            return True

    def is_subscribed(self, uri: Any) -> bool:
        with self._lock:
            return normalize_uri(uri) in self._subscribed
