"""Tests for transport error classification and negotiation with fallback."""

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace

import httpx
import pytest
from mcp import ClientSession
from mcp.types import ResourcesCapability, ServerCapabilities

from mcp_host.mcp.client import ConnectionState, MCPHostClient, default_session_factory
from mcp_host.mcp.exceptions import MCPConnectionError, MCPTransportError
from mcp_host.mcp.transport_factory import (
    MCPTransportFactory,
    ResponseStatusRecorder,
    TransportType,
    classify_transport_error,
    find_status_code,
)

from conftest import FakeSession


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://mcp.test/mcp")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"Client error '{status}'", request=request, response=response)


def not_found_client(headers=None, timeout=None, auth=None) -> httpx.AsyncClient:
    """httpx client for a server that answers every request with 404"""
    return httpx.AsyncClient(
        headers=headers,
        timeout=timeout,
        auth=auth,
        transport=httpx.MockTransport(lambda request: httpx.Response(404, request=request)),
    )


class TestStatusClassification:

    def test_httpx_status_error(self):
        assert find_status_code(http_status_error(404)) == 404

    def test_status_inside_exception_group(self):
        group = ExceptionGroup("unhandled errors in a TaskGroup", [http_status_error(405)])
        assert find_status_code(group) == 405

    def test_status_in_cause_chain(self):
        try:
            try:
                raise http_status_error(400)
            except httpx.HTTPStatusError as e:
                raise RuntimeError("connect failed") from e
        except RuntimeError as wrapped:
            assert find_status_code(wrapped) == 400

    @pytest.mark.parametrize("message,status", [
        ("Error POSTing to endpoint (HTTP 405): Method Not Allowed", 405),
        ("Unexpected response HTTP 404 from server", 404),
        ("Client error '400 Bad Request' for url", 400),
    ])
    def test_status_from_message(self, message, status):
        assert find_status_code(RuntimeError(message)) == status

    def test_no_status_for_network_errors(self):
        assert find_status_code(ConnectionRefusedError("connection refused")) is None

    def test_server_errors_are_not_client_errors(self):
        error = classify_transport_error(http_status_error(503), TransportType.STREAMABLE_HTTP)
        assert error.status_code == 503
        assert error.is_client_error is False

    def test_classified_error_carries_transport(self):
        error = classify_transport_error(http_status_error(404), TransportType.STREAMABLE_HTTP, "http://x")
        assert error.is_client_error is True
        assert error.transport_type == "streamable_http"
        assert error.details["url"] == "http://x"

    def test_unsupported_transport_type(self):
        with pytest.raises(MCPTransportError):
            MCPTransportFactory.create_transport("websocket", "http://mcp.test")


class ScriptedTransports:
    """Transport factory that fails according to a script, then connects."""

    def __init__(self, failures):
        self.failures = list(failures)
        self.attempts = []

    def create_transport(self, transport_type, url, headers=None, timeout=None):
        self.attempts.append(transport_type)
        failure = self.failures.pop(0) if self.failures else None

        @asynccontextmanager
        async def transport():
            if failure is not None:
                raise failure
            yield object(), object()

        return transport()


def session_factory(session: FakeSession):
    def build(reader, writer, **callbacks):
        session.callbacks = callbacks
        return session
    return build


async def connect(broadcaster, transports, session, **kwargs):
    client = MCPHostClient(
        "http://mcp.test/mcp",
        broadcaster,
        transport_factory=transports,
        session_factory=session_factory(session),
        retry_delay=0.01,
        ping_interval=0,
        **kwargs
    )
    await client.start()
    await client.wait_connected(timeout=2)
    return client


class TestNegotiation:

    @pytest.mark.asyncio
    async def test_primary_transport_connects(self, broadcaster):
        transports = ScriptedTransports([])
        session = FakeSession()
        client = await connect(broadcaster, transports, session)

        assert client.state is ConnectionState.CONNECTED
        assert client.transport_type is TransportType.STREAMABLE_HTTP
        assert transports.attempts == [TransportType.STREAMABLE_HTTP]
        assert set(session.callbacks) == {"sampling_callback", "list_roots_callback", "message_handler"}

        await client.stop()
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_client_error_falls_back_to_sse(self, broadcaster):
        transports = ScriptedTransports([http_status_error(405)])
        client = await connect(broadcaster, transports, FakeSession())

        assert client.transport_type is TransportType.SSE
        assert transports.attempts == [TransportType.STREAMABLE_HTTP, TransportType.SSE]
        await client.stop()

    @pytest.mark.asyncio
    async def test_grouped_client_error_falls_back_to_sse(self, broadcaster):
        failure = ExceptionGroup("unhandled errors in a TaskGroup", [RuntimeError("Session terminated (HTTP 404)")])
        transports = ScriptedTransports([failure])
        client = await connect(broadcaster, transports, FakeSession())

        assert client.transport_type is TransportType.SSE
        await client.stop()

    @pytest.mark.asyncio
    async def test_other_errors_retry_primary(self, broadcaster):
        transports = ScriptedTransports([ConnectionRefusedError("refused"), http_status_error(502)])
        client = await connect(broadcaster, transports, FakeSession())

        assert transports.attempts == [TransportType.STREAMABLE_HTTP] * 3
        assert client.transport_type is TransportType.STREAMABLE_HTTP
        await client.stop()

    @pytest.mark.asyncio
    async def test_fallback_keeps_retrying_sse(self, broadcaster):
        transports = ScriptedTransports([http_status_error(404), ConnectionRefusedError("refused")])
        client = await connect(broadcaster, transports, FakeSession())

        assert transports.attempts == [TransportType.STREAMABLE_HTTP, TransportType.SSE, TransportType.SSE]
        await client.stop()

    @pytest.mark.asyncio
    async def test_capabilities_from_initialize(self, broadcaster):
        session = FakeSession()
        capabilities = ServerCapabilities(resources=ResourcesCapability(subscribe=True))
        session.initialize.return_value = SimpleNamespace(capabilities=capabilities)

        client = await connect(broadcaster, ScriptedTransports([]), session)

        assert client.supports_resource_subscribe is True
        assert client.capabilities["resources"]["subscribe"] is True
        session.list_tools.assert_awaited_once()
        await client.stop()

    @pytest.mark.asyncio
    async def test_wait_connected_times_out(self, broadcaster):
        transports = ScriptedTransports([ConnectionRefusedError("refused")] * 1000)
        client = MCPHostClient(
            "http://mcp.test/mcp",
            broadcaster,
            transport_factory=transports,
            session_factory=session_factory(FakeSession()),
            retry_delay=0.01,
        )
        await client.start()

        with pytest.raises(MCPConnectionError) as excinfo:
            await client.wait_connected(timeout=0.05)
        assert excinfo.value.server_url == "http://mcp.test/mcp"
        await client.stop()

    @pytest.mark.asyncio
    async def test_stop_while_retrying(self, broadcaster):
        transports = ScriptedTransports([ConnectionRefusedError("refused")] * 1000)
        client = MCPHostClient(
            "http://mcp.test/mcp",
            broadcaster,
            transport_factory=transports,
            session_factory=session_factory(FakeSession()),
            retry_delay=0.01,
        )
        await client.start()
        await asyncio.sleep(0.05)

        assert client.state is ConnectionState.CONNECTING_PRIMARY
        await client.stop()
        assert client.state is ConnectionState.DISCONNECTED


class TestNotFoundOnInitialize:

    @pytest.mark.asyncio
    async def test_initialize_error_carries_recorded_status(self):
        with pytest.raises(MCPTransportError) as excinfo:
            async with MCPTransportFactory.create_http_transport(
                "http://mcp.test/mcp", httpx_client_factory=not_found_client
            ) as (reader, writer):
                async with ClientSession(reader, writer) as session:
                    await asyncio.wait_for(session.initialize(), timeout=5)

        assert excinfo.value.status_code == 404
        assert excinfo.value.is_client_error is True
        assert excinfo.value.transport_type == "streamable_http"

    @pytest.mark.asyncio
    async def test_recorder_keeps_first_client_error(self):
        responses = iter([200, 404, 405])
        recorder = ResponseStatusRecorder(lambda headers=None, timeout=None, auth=None: httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(next(responses)))
        ))

        async with recorder() as http:
            for _ in range(3):
                await http.get("http://mcp.test/mcp")

        assert recorder.status_code == 404

    @pytest.mark.asyncio
    async def test_client_falls_back_to_sse(self, broadcaster):
        sse_session = FakeSession()
        attempts = []

        class NotFoundThenSse:
            def create_transport(self, transport_type, url, headers=None, timeout=None):
                attempts.append(transport_type)
                if transport_type is TransportType.STREAMABLE_HTTP:
                    return MCPTransportFactory.create_http_transport(url, httpx_client_factory=not_found_client)

                @asynccontextmanager
                async def sse():
                    yield "sse-reader", "sse-writer"
                return sse()

        def build_session(reader, writer, **callbacks):
            if reader == "sse-reader":
                return sse_session
            return default_session_factory(reader, writer, **callbacks)

        client = MCPHostClient(
            "http://mcp.test/mcp",
            broadcaster,
            transport_factory=NotFoundThenSse(),
            session_factory=build_session,
            retry_delay=0.01,
            ping_interval=0,
        )
        await client.start()
        await client.wait_connected(timeout=5)

        assert client.transport_type is TransportType.SSE
        assert attempts == [TransportType.STREAMABLE_HTTP, TransportType.SSE]
        sse_session.initialize.assert_awaited_once()
        await client.stop()
