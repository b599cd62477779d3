"""
Sampling approval handshake.

A server-initiated `sampling/createMessage` request is announced on the
`sampling/request` channel and parked in the DecisionRegistry until a
human approves or denies it. Approved requests are answered with an
OpenAI chat completion; denied ones are rejected with a JSON-RPC error.
"""

import asyncio
from typing import Any, Dict, List, Optional

from mcp.types import CreateMessageRequestParams, CreateMessageResult, ErrorData, TextContent

from ..core.broadcaster import SAMPLING_REQUEST, SAMPLING_RESPONSE, UpdateBroadcaster
from ..core.decisions import DecisionRegistry
from ..core.logging import get_logger
from .exceptions import SamplingRejectedError


logger = get_logger(__name__)

_STOP_REASONS = {
    "stop": "stopSequence",
    "length": "maxTokens",
}


def map_stop_reason(finish_reason: Optional[str]) -> str:
    """Map an OpenAI finish reason onto the MCP stop reasons."""
    return _STOP_REASONS.get(finish_reason or "", "endTurn")


def _message_text(content: Any) -> Optional[str]:
    blocks = content if isinstance(content, list) else [content]
    texts = [block.text for block in blocks if getattr(block, "type", None) == "text"]
    return "\n".join(texts) if texts else None


def build_chat_messages(params: CreateMessageRequestParams) -> List[Dict[str, str]]:
    """Translate sampling parameters into chat-completion messages (text only)."""
    messages: List[Dict[str, str]] = []
    if params.systemPrompt:
        messages.append({"role": "system", "content": params.systemPrompt})
    for message in params.messages or []:
        text = _message_text(message.content)
        if text is not None:
            messages.append({"role": message.role, "content": text})
    return messages


class SamplingHandler:
    """
    Sampling callback for the MCP ClientSession, gated by human approval.

    The SDK awaits this callback inside the session receive loop. While a
    decision is pending, responses to the host's own requests (tool calls,
    resource reads, pings) and server notifications are not processed.
    Set `timeout` (SAMPLING_TIMEOUT) to bound the stall; an expired wait is
    answered as a denial.
    """

    def __init__(
        self,
        openai_client: Any,
        model: str,
        decisions: DecisionRegistry,
        broadcaster: UpdateBroadcaster,
        timeout: Optional[float] = None
    ):
        self._openai = openai_client
        self._model = model
        self._decisions = decisions
        self._broadcaster = broadcaster
        self._timeout = timeout or None

    async def __call__(self, context: Any, params: CreateMessageRequestParams) -> CreateMessageResult | ErrorData:
        request_id = str(context.request_id)
        try:
            return await self.handle(request_id, params)
        except SamplingRejectedError as e:
            return ErrorData(code=e.code, message=e.message)

    async def handle(self, request_id: str, params: CreateMessageRequestParams) -> CreateMessageResult:
        """
        Run the approval handshake for one sampling request.

        Raises:
            SamplingRejectedError: If the request is denied or times out
        """
        logger.info(f"Sampling requested by server: {request_id}")
        self._broadcaster.publish(
            SAMPLING_REQUEST,
            {"id": request_id, **params.model_dump(mode="json", exclude_none=True)}
        )

        try:
            approved = await self._decisions.wait(request_id, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Sampling request {request_id} timed out waiting for a decision")
            raise SamplingRejectedError(request_id, "Sampling request timed out awaiting approval")

        if not approved:
            raise SamplingRejectedError(request_id)

        request: Dict[str, Any] = {"model": self._model, "messages": build_chat_messages(params)}
        if params.temperature is not None:
            request["temperature"] = params.temperature
        if params.maxTokens:
            request["max_tokens"] = params.maxTokens
        if params.stopSequences:
            request["stop"] = params.stopSequences

        response = await self._openai.chat.completions.create(**request)
        choice = response.choices[0] if response.choices else None
        text = (choice.message.content if choice else None) or ""

        result = CreateMessageResult(
            role="assistant",
            content=TextContent(type="text", text=text),
            model=getattr(response, "model", None) or self._model,
            stopReason=map_stop_reason(choice.finish_reason if choice else None),
        )
        self._broadcaster.publish(SAMPLING_RESPONSE, result.model_dump(mode="json", exclude_none=True))
        logger.info(f"Sampling request {request_id} answered", stop_reason=result.stopReason)
        return result
