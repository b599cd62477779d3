"""
MCP Host Client

Owns the single logical connection from the host to its MCP server:
transport negotiation with fallback, capability discovery, routing of
server notifications into the capability cache and the update
broadcaster, progress-aware tool calls and resource reads, roots, and
the liveness ping.

Connection states::

    disconnected -> connecting_primary -> connected
    disconnected -> connecting_primary -> connecting_fallback -> connected

The primary (streamable HTTP) transport is retried every `retry_delay`
seconds until it succeeds, unless it fails with an HTTP 4xx, in which
case the legacy SSE transport is retried the same way. Once connected
the transport is never renegotiated; a lost connection is logged and the
client stays disconnected until `start()` is called again.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp import ClientSession
from mcp.types import (
    CallToolResult,
    ClientRequest,
    Implementation,
    ListRootsResult,
    LoggingMessageNotification,
    ProgressNotification,
    Prompt,
    PromptListChangedNotification,
    ReadResourceRequest,
    ReadResourceRequestParams,
    ReadResourceResult,
    Resource,
    ResourceListChangedNotification,
    ResourceTemplate,
    ResourceUpdatedNotification,
    ServerCapabilities,
    ServerNotification,
    Tool,
    ToolListChangedNotification,
)
from pydantic import AnyUrl

from ..core.broadcaster import (
    PROGRESS,
    PROMPTS_LIST_CHANGED,
    RESOURCES_CHANGE,
    RESOURCES_LIST_CHANGED,
    ROOTS_LIST_CHANGED,
    TOOLS_LIST_CHANGED,
    UpdateBroadcaster,
)
from ..core.logging import get_logger
from ..core.tasks import TaskRegistry
from .cache import CapabilityCache
from .exceptions import MCPConnectionError, MCPNotConnectedError
from .progress import ProgressMiddleware, with_progress
from .roots import RootsStore
from .transport_factory import MCPTransportFactory, TransportType, classify_transport_error


logger = get_logger(__name__)

CLIENT_INFO = Implementation(name="mcp-host", version="0.1.0")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING_PRIMARY = "connecting_primary"
    CONNECTING_FALLBACK = "connecting_fallback"
    CONNECTED = "connected"


def default_session_factory(read_stream, write_stream, **callbacks) -> ClientSession:
    """Build the SDK ClientSession for an open transport."""
    return ClientSession(read_stream, write_stream, client_info=CLIENT_INFO, **callbacks)


def contents_to_text(contents: Optional[List[Any]]) -> str:
    """Flatten resource or tool content blocks into text; non-text blocks become JSON."""
    parts = []
    for item in contents or []:
        text = getattr(item, "text", None)
        if isinstance(text, str):
            parts.append(text)
        elif hasattr(item, "model_dump"):
            parts.append(json.dumps(item.model_dump(mode="json", exclude_none=True)))
        else:
            parts.append(json.dumps(item, default=str))
    return "\n".join(parts)


def tool_result_text(result: Any) -> str:
    """Render a CallToolResult as the string fed back to the model."""
    content = getattr(result, "content", None)
    if content:
        return contents_to_text(content)
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return json.dumps(structured, default=str)
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str) if result is not None else ""


def expand_template(uri_template: str, arguments: Optional[Dict[str, Any]] = None) -> str:
    """Substitute `{name}` placeholders of a resource template."""
    uri = uri_template
    for key, value in (arguments or {}).items():
        uri = uri.replace(f"{{{key}}}", str(value))
    return uri


class MCPHostClient:
    """
    Protocol client for one MCP server.

    Provides:
    - Transport negotiation with fallback and indefinite retry
    - Capability discovery into a CapabilityCache
    - Notification routing to the cache and the UpdateBroadcaster
    - Progress-tracked, cancelable tool calls and resource reads
    - Cached resource reads with subscribe-on-first-read
    - Roots and the server's roots/list request
    - Periodic liveness ping
    """

    def __init__(
        self,
        server_url: str,
        broadcaster: UpdateBroadcaster,
        cache: Optional[CapabilityCache] = None,
        roots: Optional[RootsStore] = None,
        tasks: Optional[TaskRegistry] = None,
        sampling_callback: Optional[Callable] = None,
        transport_factory: Any = MCPTransportFactory,
        session_factory: Callable[..., Any] = default_session_factory,
        retry_delay: float = 1.0,
        ping_interval: float = 30.0,
        initialize_timeout: float = 30.0
    ):
        self.server_url = server_url
        self.broadcaster = broadcaster
        self.cache = cache or CapabilityCache()
        self.roots = roots or RootsStore()
        self.tasks = tasks or TaskRegistry()
        self.progress = ProgressMiddleware(broadcaster, self.tasks)

        self._sampling_callback = sampling_callback
        self._transport_factory = transport_factory
        self._session_factory = session_factory
        self._retry_delay = retry_delay
        self._ping_interval = ping_interval
        self._initialize_timeout = initialize_timeout

        self._state = ConnectionState.DISCONNECTED
        self._transport_type: Optional[TransportType] = None
        self._session: Optional[ClientSession] = None
        self._capabilities: Optional[ServerCapabilities] = None
        self._supports_subscribe = False

        self._connected = asyncio.Event()
        self._stop = asyncio.Event()
        self._notifications: asyncio.Queue = asyncio.Queue()
        self._runner: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None

    # Lifecycle

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport_type(self) -> Optional[TransportType]:
        return self._transport_type

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def capabilities(self) -> Dict[str, Any]:
        if self._capabilities is None:
            return {}
        return self._capabilities.model_dump(mode="json", exclude_none=True)

    @property
    def supports_resource_subscribe(self) -> bool:
        return self._supports_subscribe

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.info(f"MCP client state {self._state.value} -> {state.value}")
            self._state = state

    async def start(self) -> None:
        """Start negotiating a connection in the background."""
        if self._runner is None or self._runner.done():
            self._stop.clear()
            self._runner = asyncio.create_task(self._run(), name="mcp-host-client")
            logger.info(f"MCP client starting for {self.server_url}")

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """
        Wait until the client reaches `connected`.

        Raises:
            MCPConnectionError: If the timeout elapses first
        """
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            raise MCPConnectionError(
                f"Not connected to {self.server_url} after {timeout}s (state: {self._state.value})",
                server_url=self.server_url,
                transport_type=self._transport_type.value if self._transport_type else None,
            ) from None

    async def stop(self) -> None:
        """Close the connection and stop all background tasks."""
        self._stop.set()
        background = [t for t in (self._ping_task, self._dispatch_task) if t]
        for task in background:
            task.cancel()

        if self._runner and not self.is_connected:
            self._runner.cancel()
        if self._runner:
            background.append(self._runner)

        if background:
            await asyncio.gather(*background, return_exceptions=True)

        self._runner = self._ping_task = self._dispatch_task = None
        self._session = None
        self._connected.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("MCP client stopped")

    async def _run(self) -> None:
        transport = TransportType.STREAMABLE_HTTP
        self._set_state(ConnectionState.CONNECTING_PRIMARY)

        while not self._stop.is_set():
            try:
                async with self._transport_factory.create_transport(transport, self.server_url) as (reader, writer):
                    async with self._session_factory(
                        reader,
                        writer,
                        sampling_callback=self._sampling_callback,
                        list_roots_callback=self._list_roots,
                        message_handler=self._on_message,
                    ) as session:
                        init = await asyncio.wait_for(session.initialize(), timeout=self._initialize_timeout)
                        self._transport_type = transport
                        logger.info(f"Connected using {transport.value} transport")
                        await self.bind_session(session, init.capabilities)
                        await self._stop.wait()
                        return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stop.is_set():
                    return
                if self.is_connected:
                    logger.error(f"MCP connection lost: {e}")
                    self._session = None
                    self._connected.clear()
                    self._set_state(ConnectionState.DISCONNECTED)
                    return

                error = classify_transport_error(e, transport, self.server_url)
                if transport is TransportType.STREAMABLE_HTTP and error.is_client_error:
                    logger.warning(
                        "Streamable HTTP returned 4xx, falling back to SSE transport",
                        status_code=error.status_code
                    )
                    transport = TransportType.SSE
                    self._set_state(ConnectionState.CONNECTING_FALLBACK)
                    continue

                logger.error(f"{transport.value} transport error, retrying in {self._retry_delay}s: {error.message}")
                await self._sleep_unless_stopped(self._retry_delay)

    async def _sleep_unless_stopped(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def bind_session(self, session: Any, capabilities: Optional[ServerCapabilities]) -> None:
        """
        Adopt an initialized session: discover capabilities, then start
        notification dispatch and the liveness ping.
        """
        self._session = session
        self._capabilities = capabilities
        self._supports_subscribe = bool(
            capabilities is not None
            and capabilities.resources is not None
            and capabilities.resources.subscribe
        )

        await self.discover()

        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="mcp-host-notifications")
        if self._ping_interval > 0 and (self._ping_task is None or self._ping_task.done()):
            self._ping_task = asyncio.create_task(self._ping_loop(), name="mcp-host-ping")
            logger.info(f"Scheduled ping every {self._ping_interval}s")

        self._set_state(ConnectionState.CONNECTED)
        self._connected.set()

    def _require_session(self, operation: str) -> ClientSession:
        if self._session is None:
            raise MCPNotConnectedError(operation)
        return self._session

    # Discovery

    async def discover(self) -> None:
        """Run the four discovery calls; a failed category degrades to an empty list."""
        self._require_session("discover")
        self.cache.set_tools(await self._discover("tools", self.list_tools))
        self.cache.set_prompts(await self._discover("prompts", self.list_prompts))
        self.cache.set_resources(await self._discover("resources", self.list_resources))
        self.cache.set_templates(await self._discover("resource templates", self.list_resource_templates))
        logger.info(
            "Discovery complete",
            tools=len(self.cache.tools()),
            prompts=len(self.cache.prompts()),
            resources=len(self.cache.resources()),
            templates=len(self.cache.templates()),
        )

    async def _discover(self, label: str, call: Callable[[], Awaitable[List[Any]]]) -> List[Any]:
        try:
            return await call()
        except Exception as e:
            logger.warning(f"Discovery of {label} failed: {e}")
            return []

    async def list_tools(self) -> List[Tool]:
        session = self._require_session("list_tools")
        return list((await session.list_tools()).tools)

    async def list_prompts(self) -> List[Prompt]:
        session = self._require_session("list_prompts")
        return list((await session.list_prompts()).prompts)

    async def list_resources(self) -> List[Resource]:
        session = self._require_session("list_resources")
        return list((await session.list_resources()).resources)

    async def list_resource_templates(self) -> List[ResourceTemplate]:
        session = self._require_session("list_resource_templates")
        return list((await session.list_resource_templates()).resourceTemplates)

    async def refresh_tools(self) -> None:
        self.cache.set_tools(await self.list_tools())

    async def refresh_prompts(self) -> None:
        self.cache.set_prompts(await self.list_prompts())

    async def current_tools(self) -> List[Dict[str, Any]]:
        """Tool rows with enable flags, re-listing first if the server reported a change."""
        await self._refresh_if_stale()
        return self.cache.tools()

    async def enabled_tools(self) -> List[Tool]:
        await self._refresh_if_stale()
        return self.cache.enabled_tools()

    async def current_prompts(self) -> List[Any]:
        if self.cache.prompts_stale and self._session is not None:
            try:
                await self.refresh_prompts()
            except Exception as e:
                logger.warning(f"Refreshing prompts failed: {e}")
        return self.cache.prompts()

    async def _refresh_if_stale(self) -> None:
        if self.cache.tools_stale and self._session is not None:
            try:
                await self.refresh_tools()
            except Exception as e:
                logger.warning(f"Refreshing tools failed: {e}")

    def set_tool_enabled(self, name: str, enabled: bool) -> Optional[Dict[str, Any]]:
        return self.cache.set_tool_enabled(name, enabled)

    def server_info(self) -> Dict[str, Any]:
        return {
            "servers": [{
                "url": self.server_url,
                "state": self._state.value,
                "transport": self._transport_type.value if self._transport_type else None,
                "capabilities": self.capabilities,
                **self.cache.snapshot(),
            }]
        }

    # Notifications

    async def _on_message(self, message: Any) -> None:
        # Runs inside the SDK receive loop: queue only, never await the server here
        if isinstance(message, Exception):
            logger.error(f"MCP transport error: {message}")
        elif isinstance(message, ServerNotification):
            self._notifications.put_nowait(message.root)
        else:
            logger.debug(f"Unhandled MCP message: {type(message).__name__}")

    async def _dispatch_loop(self) -> None:
        while True:
            notification = await self._notifications.get()
            try:
                await self.handle_notification(notification)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Notification handler for {getattr(notification, 'method', '?')} failed: {e}")

    async def handle_notification(self, notification: Any) -> None:
        """Apply one server notification to the cache and republish it."""
        params = getattr(notification, "params", None)
        payload = params.model_dump(mode="json", exclude_none=True) if params is not None else {}
        logger.debug(f"MCP notification: {getattr(notification, 'method', type(notification).__name__)}")

        if isinstance(notification, ProgressNotification):
            self.broadcaster.publish(PROGRESS, payload)
        elif isinstance(notification, ResourceUpdatedNotification):
            uri = str(notification.params.uri)
            logger.info(f"Invalidating cache for resource: {uri}")
            self.cache.invalidate(uri)
            self.broadcaster.publish(RESOURCES_CHANGE, payload)
        elif isinstance(notification, ResourceListChangedNotification):
            await self.refresh_resource_list()
        elif isinstance(notification, PromptListChangedNotification):
            self.cache.mark_prompts_stale()
            self.broadcaster.publish(PROMPTS_LIST_CHANGED, payload)
        elif isinstance(notification, ToolListChangedNotification):
            self.cache.mark_tools_stale()
            self.broadcaster.publish(TOOLS_LIST_CHANGED, payload)
        elif isinstance(notification, LoggingMessageNotification):
            logger.info(f"Server log: {notification.params.data}", server_level=notification.params.level)
        else:
            logger.debug(f"Ignoring notification {getattr(notification, 'method', notification)}")

    async def refresh_resource_list(self) -> Dict[str, List[str]]:
        """Re-list resources, unsubscribe dropped ones and publish the diff."""
        added, removed = self.cache.set_resources(await self.list_resources())

        if self._supports_subscribe:
            for uri in removed:
                try:
                    await self.unsubscribe(uri)
                except Exception as e:
                    logger.debug(f"Unsubscribe from {uri} failed: {e}")

        change = {"resources": self.cache.resource_uris(), "added": added, "removed": removed}
        self.broadcaster.publish(RESOURCES_LIST_CHANGED, change)
        logger.info("Resource list changed", added=added, removed=removed)
        return change

    # Operations

    @with_progress(lambda name, arguments=None, **_: f"Tool call: {name}")
    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[Callable] = None
    ) -> CallToolResult:
        session = self._require_session("call_tool")
        return await session.call_tool(name, arguments or {}, progress_callback=progress_callback)

    @with_progress(lambda uri, **_: f"Read resource: {uri}")
    async def read_resource(self, uri: str, progress_callback: Optional[Callable] = None) -> ReadResourceResult:
        session = self._require_session("read_resource")
        request = ClientRequest(
            ReadResourceRequest(method="resources/read", params=ReadResourceRequestParams(uri=AnyUrl(str(uri))))
        )
        return await session.send_request(request, ReadResourceResult, progress_callback=progress_callback)

    async def read_template(self, uri_template: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Read a resource template with its arguments; never cached."""
        result = await self.read_resource(expand_template(uri_template, arguments))
        return contents_to_text(result.contents)

    async def read_cached(self, uri: str) -> str:
        """Cached content when present and fresh, otherwise a live refresh."""
        content = self.cache.get_fresh(uri)
        if content is not None:
            return content
        return await self.refresh(uri)

    async def refresh(self, uri: str) -> str:
        """Read `uri` live, overwrite its cache entry, subscribe on first read."""
        result = await self.read_resource(uri)
        content = contents_to_text(result.contents)
        self.cache.store(uri, content)

        if self._supports_subscribe and self.cache.claim_subscription(uri):
            try:
                await self.subscribe(uri)
            except Exception as e:
                logger.warning(f"Subscribing to {uri} failed: {e}")
        return content

    def invalidate(self, uri: str) -> bool:
        return self.cache.invalidate(uri)

    async def subscribe(self, uri: str) -> None:
        session = self._require_session("subscribe_resource")
        await session.subscribe_resource(AnyUrl(uri))
        logger.info(f"Subscribed to resource {uri}")

    async def unsubscribe(self, uri: str) -> None:
        session = self._require_session("unsubscribe_resource")
        await session.unsubscribe_resource(AnyUrl(uri))

    async def get_prompt(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Fetch a prompt and return the text of its first message ('' if none)."""
        session = self._require_session("get_prompt")
        args = {key: str(value) for key, value in (arguments or {}).items()}
        result = await session.get_prompt(name, arguments=args)
        messages = getattr(result, "messages", None) or []
        if not messages:
            return ""
        content = messages[0].content
        if isinstance(content, str):
            return content
        text = getattr(content, "text", None)
        if isinstance(text, str):
            return text
        return contents_to_text([content])

    async def ping(self) -> None:
        session = self._require_session("ping")
        await session.send_ping()

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await self.ping()
                logger.debug("Ping successful")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Ping error: {e}")

    # Roots

    async def _list_roots(self, context: Any) -> ListRootsResult:
        return self.roots.as_result()

    async def add_root(self, name: str, uri: str) -> List[Dict[str, str]]:
        root = self.roots.add(name, uri)
        return await self._roots_changed(added=[root], removed=[])

    async def remove_root(self, name: str) -> Optional[List[Dict[str, str]]]:
        root = self.roots.remove(name)
        if root is None:
            return None
        return await self._roots_changed(added=[], removed=[root])

    async def _roots_changed(self, added: List[Dict[str, str]], removed: List[Dict[str, str]]) -> List[Dict[str, str]]:
        roots = self.roots.list()
        self.broadcaster.publish(ROOTS_LIST_CHANGED, {"roots": roots, "added": added, "removed": removed})
        await self.notify_roots_changed()
        return roots

    async def notify_roots_changed(self) -> None:
        """Tell the server its roots changed; failures are logged, never raised."""
        if self._session is None:
            return
        try:
            await self._session.send_roots_list_changed()
        except Exception as e:
            logger.error(f"roots list_changed to server failed: {e}")
