"""Conversation orchestration against the OpenAI Responses API."""

from .orchestrator import (
    ConversationOrchestrator,
    ResourceSelection,
    TemplateSelection,
    TurnResult,
)

__all__ = [
    "ConversationOrchestrator",
    "ResourceSelection",
    "TemplateSelection",
    "TurnResult",
]
