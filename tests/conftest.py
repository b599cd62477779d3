"""Shared fakes for the MCP Host tests."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.types import (
    CallToolResult,
    ListPromptsResult,
    ListResourcesResult,
    ListResourceTemplatesResult,
    ListToolsResult,
    ReadResourceResult,
    Resource,
    ServerCapabilities,
    TextContent,
    TextResourceContents,
    Tool,
)

from mcp_host.core.broadcaster import UpdateBroadcaster
from mcp_host.mcp.client import MCPHostClient


def make_tool(name: str, description: str = "") -> Tool:
    return Tool(name=name, description=description, inputSchema={"type": "object", "properties": {}})


def make_resource(uri: str) -> Resource:
    return Resource(uri=uri, name=uri.rsplit("/", 1)[-1] or uri)


def text_result(uri: str, text: str) -> ReadResourceResult:
    return ReadResourceResult(contents=[TextResourceContents(uri=uri, text=text)])


def tool_text(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)])


class FakeSession:
    """Stand-in for an initialized mcp.ClientSession."""

    def __init__(self, tools=(), resources=(), prompts=(), templates=()):
        self.list_tools = AsyncMock(return_value=ListToolsResult(tools=list(tools)))
        self.list_prompts = AsyncMock(return_value=ListPromptsResult(prompts=list(prompts)))
        self.list_resources = AsyncMock(return_value=ListResourcesResult(resources=list(resources)))
        self.list_resource_templates = AsyncMock(
            return_value=ListResourceTemplatesResult(resourceTemplates=list(templates))
        )
        self.call_tool = AsyncMock(return_value=tool_text("ok"))
        self.send_request = AsyncMock(return_value=text_result("file:///a.txt", "DATA"))
        self.subscribe_resource = AsyncMock()
        self.unsubscribe_resource = AsyncMock()
        self.get_prompt = AsyncMock()
        self.send_ping = AsyncMock()
        self.send_roots_list_changed = AsyncMock()
        self.initialize = AsyncMock(return_value=SimpleNamespace(capabilities=ServerCapabilities()))
        self.callbacks = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def function_call(name: str, arguments: dict, call_id: str):
    return SimpleNamespace(type="function_call", name=name, arguments=json.dumps(arguments), call_id=call_id)


def model_response(response_id: str, text: str = "", calls=()):
    output = list(calls) or [SimpleNamespace(type="message")]
    return SimpleNamespace(id=response_id, output=output, output_text=text)


def fake_openai(*responses):
    """OpenAI client double whose Responses API returns `responses` in order."""
    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=list(responses))
    client.chat.completions.create = AsyncMock()
    client.models.list = AsyncMock()
    return client


async def wait_until(predicate, timeout: float = 1.0):
    """Yield to the loop until `predicate()` holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def broadcaster():
    return UpdateBroadcaster()


@pytest.fixture
def updates(broadcaster):
    """Subscriber queue capturing everything published during a test."""
    return broadcaster.subscribe()


def drain(queue: asyncio.Queue):
    events = []
    while not queue.empty():
        event, payload = queue.get_nowait()
        events.append((event, json.loads(payload)))
    return events


@pytest.fixture
async def connected_client(broadcaster):
    """Factory binding an MCPHostClient to a FakeSession; stopped on teardown."""
    clients = []

    async def connect(session: FakeSession, capabilities: ServerCapabilities = None):
        client = MCPHostClient("http://mcp.test/mcp", broadcaster, ping_interval=0)
        await client.bind_session(session, capabilities or ServerCapabilities())
        clients.append(client)
        return client

    yield connect

    for client in clients:
        await client.stop()
