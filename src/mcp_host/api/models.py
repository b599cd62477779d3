"""
MCP Host API Models

Pydantic models for the host's HTTP request and response bodies. Field
names follow the JSON the browser UI sends (camelCase where it does).
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ResourceSelectionModel(BaseModel):
    """A resource picked for the conversation context."""
    model_config = ConfigDict(populate_by_name=True)

    uri: str
    use_cached: bool = Field(default=False, alias="useCached")


class TemplateSelectionModel(BaseModel):
    """A resource template picked for the conversation context."""
    uri: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    """Request to run one conversation turn."""
    model_config = ConfigDict(populate_by_name=True)

    message: str
    prompt_name: Optional[str] = Field(default=None, alias="promptName")
    prompt_args: Dict[str, Any] = Field(default_factory=dict, alias="promptArgs")
    selected_resources: List[ResourceSelectionModel] = Field(default_factory=list, alias="selectedResources")
    selected_templates: List[TemplateSelectionModel] = Field(default_factory=list, alias="selectedTemplates")
    model: Optional[str] = None
    tool_required: bool = False
    conversation: bool = False
    previous_response_id: Optional[str] = None


class ChatResponse(BaseModel):
    """Final reply of a conversation turn."""
    model_config = ConfigDict(populate_by_name=True)

    reply: str
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list, alias="toolCalls")
    response_id: Optional[str] = None


class CompletionRequest(BaseModel):
    """Plain chat-completion proxy request."""
    messages: List[Dict[str, Any]]
    max_tokens: Optional[int] = None


class ToolConfigRequest(BaseModel):
    """Enable or disable a tool for the model."""
    name: str
    enabled: bool


class RootRequest(BaseModel):
    """Root to expose to the MCP server."""
    name: str = ""
    uri: str = ""


class RootDeleteRequest(BaseModel):
    """Root to withdraw, by name."""
    name: str


class TaskCancelRequest(BaseModel):
    """Cancel a tracked long-running operation."""
    token: Union[str, int]
    reason: Optional[str] = None


class SamplingDecisionRequest(BaseModel):
    """Human decision for a pending sampling request."""
    id: Union[str, int]
    approved: bool


class ResourceReadRequest(BaseModel):
    """Read a resource, optionally from the cache."""
    model_config = ConfigDict(populate_by_name=True)

    uri: str
    use_cached: bool = Field(default=False, alias="useCached")


class TemplateReadRequest(BaseModel):
    """Read a resource template with arguments."""
    uri: str
    args: Dict[str, Any] = Field(default_factory=dict)


class PromptGetRequest(BaseModel):
    """Fetch a prompt with arguments."""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ResourceSelectionModel",
    "TemplateSelectionModel",
    "ChatRequest",
    "ChatResponse",
    "CompletionRequest",
    "ToolConfigRequest",
    "RootRequest",
    "RootDeleteRequest",
    "TaskCancelRequest",
    "SamplingDecisionRequest",
    "ResourceReadRequest",
    "TemplateReadRequest",
    "PromptGetRequest",
]
