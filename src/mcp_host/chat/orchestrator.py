"""
Conversation Orchestrator

Turns one user message plus the selected MCP context (prompt, resources,
templates) into OpenAI Responses API round trips, running every function
call the model asks for against the MCP server until the model answers
with plain text.

Context entries are ordered: prompt, resources (selection order),
templates (selection order), the user message, then call/result pairs
grouped per batch in the order the calls were issued.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..core.logging import get_logger
from ..mcp.client import MCPHostClient, tool_result_text


logger = get_logger(__name__)


@dataclass
class ResourceSelection:
    uri: str
    use_cached: bool = False


@dataclass
class TemplateSelection:
    uri: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnResult:
    reply: str
    tool_calls: List[Dict[str, Any]]
    response_id: Optional[str] = None


def to_function_tool(tool: Any) -> Dict[str, Any]:
    """Map an MCP tool descriptor onto a Responses API function tool."""
    return {
        "type": "function",
        "name": tool.name,
        "description": tool.description or "",
        "parameters": tool.inputSchema or {"type": "object", "properties": {}},
        "strict": False,
    }


def function_calls(response: Any) -> List[Any]:
    return [item for item in (getattr(response, "output", None) or []) if getattr(item, "type", None) == "function_call"]


class ConversationOrchestrator:
    """Runs conversation turns against the model with MCP tools attached."""

    def __init__(self, client: MCPHostClient, openai_client: Any, max_iterations: int = 0):
        self._client = client
        self._openai = openai_client
        self._max_iterations = max_iterations

    async def build_context(
        self,
        message: str,
        prompt_name: Optional[str] = None,
        prompt_args: Optional[Dict[str, Any]] = None,
        selected_resources: Sequence[ResourceSelection] = (),
        selected_templates: Sequence[TemplateSelection] = ()
    ) -> List[Dict[str, Any]]:
        """
        Assemble the ordered input entries for the first completion request.

        Prompt, resource and template failures are logged and the item is
        left out; they never abort the turn.
        """
        context: List[Dict[str, Any]] = []

        if prompt_name:
            try:
                text = await self._client.get_prompt(prompt_name, prompt_args or {})
                if text:
                    context.append({"role": "system", "content": text})
            except Exception as e:
                logger.error(f"Failed fetching prompt {prompt_name}: {e}")

        for selection in selected_resources:
            try:
                if selection.use_cached:
                    content = await self._client.read_cached(selection.uri)
                else:
                    content = await self._client.refresh(selection.uri)
                context.append({"role": "system", "content": f"Resource ({selection.uri}): {content}"})
            except Exception as e:
                logger.error(f"Error reading resource {selection.uri}: {e}")

        for selection in selected_templates:
            try:
                content = await self._client.read_template(selection.uri, selection.args)
                context.append({"role": "system", "content": f"Template ({selection.uri}): {content}"})
            except Exception as e:
                logger.error(f"Error reading template {selection.uri}: {e}")

        context.append({"role": "user", "content": message})
        return context

    async def handle_message(
        self,
        message: str,
        *,
        model: str,
        prompt_name: Optional[str] = None,
        prompt_args: Optional[Dict[str, Any]] = None,
        selected_resources: Sequence[ResourceSelection] = (),
        selected_templates: Sequence[TemplateSelection] = (),
        tool_required: bool = False,
        previous_response_id: Optional[str] = None
    ) -> TurnResult:
        """
        Run one conversation turn.

        Raises:
            Exception: Whatever the completion service raised; there is no
                partial reply without the model
        """
        context = await self.build_context(
            message, prompt_name, prompt_args, selected_resources, selected_templates
        )

        tools = [to_function_tool(tool) for tool in await self._client.enabled_tools()]
        logger.info(f"Enabled tools: {[tool['name'] for tool in tools]}")

        payload: Dict[str, Any] = {"model": model, "truncation": "auto"}
        if previous_response_id:
            payload["previous_response_id"] = previous_response_id
        if tools:
            payload["tools"] = tools
            if tool_required:
                payload["tool_choice"] = "required"

        tool_calls: List[Dict[str, Any]] = []
        response = await self._create(payload, context)
        rounds = 1
        calls = function_calls(response)

        while calls:
            if self._max_iterations and rounds >= self._max_iterations:
                logger.warning(f"Tool loop stopped after {rounds} completion requests with calls pending")
                break

            outputs = await asyncio.gather(*(self._execute(call, tool_calls) for call in calls))
            for call, output in zip(calls, outputs):
                context.append({
                    "type": "function_call",
                    "name": call.name,
                    "arguments": call.arguments,
                    "call_id": call.call_id,
                })
                context.append({"type": "function_call_output", "call_id": call.call_id, "output": output})

            # Forcing a call on every round would never let the model answer
            payload.pop("tool_choice", None)
            response = await self._create(payload, context)
            rounds += 1
            calls = function_calls(response)

        return TurnResult(
            reply=getattr(response, "output_text", None) or "",
            tool_calls=tool_calls,
            response_id=getattr(response, "id", None),
        )

    async def _execute(self, call: Any, tool_calls: List[Dict[str, Any]]) -> str:
        """Run one function call; failures become an error string for the model."""
        try:
            args = json.loads(call.arguments or "{}")
        except (TypeError, ValueError) as e:
            tool_calls.append({"name": call.name, "args": call.arguments})
            logger.error(f"Invalid arguments for function_call {call.name}: {e}")
            return f"Error: invalid arguments: {e}"

        tool_calls.append({"name": call.name, "args": args})
        try:
            result = await self._client.call_tool(call.name, args)
            return tool_result_text(result)
        except Exception as e:
            logger.error(f"Error executing function_call {call.name}: {e}")
            return f"Error: {e}"

    async def _create(self, payload: Dict[str, Any], context: List[Dict[str, Any]]) -> Any:
        request = {**payload, "input": list(context)}
        logger.debug("OpenAI request", request=request)
        try:
            response = await self._openai.responses.create(**request)
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise
        logger.debug("OpenAI response", response_id=getattr(response, "id", None))
        return response
