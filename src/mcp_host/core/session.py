"""Process-wide host session."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .broadcaster import UpdateBroadcaster
from .decisions import DecisionRegistry
from .tasks import TaskRegistry

if TYPE_CHECKING:
    from ..chat.orchestrator import ConversationOrchestrator
    from ..mcp.client import MCPHostClient


@dataclass
class HostSession:
    """
    The single session of this host.

    Holds the MCP client handle, the chat and sampling model names and the
    continuation token returned by the Responses API, together with the
    registries the HTTP layer reaches the core through.
    """
    client: "MCPHostClient"
    orchestrator: "ConversationOrchestrator"
    openai: Any
    model: str
    sampling_model: str
    broadcaster: UpdateBroadcaster = field(default_factory=UpdateBroadcaster)
    decisions: DecisionRegistry = field(default_factory=DecisionRegistry)
    tasks: TaskRegistry = field(default_factory=TaskRegistry)
    continuation_token: Optional[str] = None

    def reset(self) -> None:
        """Forget the conversation; the next turn starts without history."""
        self.continuation_token = None
