"""Tests for agent session initiation, prompt rendering and the agent socket."""

from contextlib import asynccontextmanager

import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from agentbridge.agent import AgentSessionInitiator
from agentbridge.config import AgentConfig, FlowConfig, FlowsConfig
from agentbridge.core.events import Direction
from agentbridge.core.exceptions import UpstreamConnectError
from agentbridge.directory import ContextRecord
from agentbridge.prompts import PromptBuilder
from agentbridge.transports.base import TransportClosed
from agentbridge.transports.websocket import WebSocketClientTransport

JAN = ContextRecord.model_validate({
    "debtor": {"first_name": "Jan", "last_name": "Kowalski"},
    "case": {
        "case_number": "C-100",
        "debt_amount": 1000,
        "currency": "PLN",
        "case_description": "Unpaid invoice",
    },
})


async def _echo(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type != WSMsgType.TEXT:
            continue
        if msg.data == "bye":
            await ws.close(code=1000, message=b"done")
            break
        await ws.send_str(msg.data)
    return ws


@asynccontextmanager
async def agent_backend(status=200, body=None):
    """Signed-URL endpoint plus the WebSocket it hands out."""
    seen = []

    async def signed_url(request):
        seen.append((dict(request.query), request.headers.get("xi-api-key")))
        if body is not None:
            return web.json_response(body, status=status)
        ws_url = str(request.url.with_path("/ws").with_query(token="secret")).replace("http", "ws", 1)
        return web.json_response({"signed_url": ws_url}, status=status)

    app = web.Application()
    app.router.add_get("/signed-url", signed_url)
    app.router.add_get("/ws", _echo)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("/signed-url")), seen
    finally:
        await server.close()


def _initiator(endpoint="http://127.0.0.1:1/signed-url"):
    agent = AgentConfig(api_key="xi-key", agent_id="agent_1", signed_url_endpoint=endpoint)
    return AgentSessionInitiator(agent, FlowsConfig(), timeout=2.0)


class TestPromptBuilder:

    def test_inbound_prompt_with_record(self):
        builder = PromptBuilder(FlowsConfig().inbound)
        prompt = builder.prompt(JAN, "+48123", {})
        assert "Name: Jan Kowalski" in prompt
        assert "Case Number: C-100" in prompt
        assert "Debt Amount: 1000 PLN" in prompt
        assert "Caller Phone: +48123" in prompt
        assert "Case Description: Unpaid invoice" in prompt

    def test_inbound_prompt_names_sms_tool(self):
        prompt = PromptBuilder(FlowsConfig().inbound).prompt(JAN, "+48123", {})
        assert "1. debtor_panel:" in prompt
        assert "USE ELEVENLABS TOOLS TO SEND SMS - it is named debtor_panel" in prompt

    def test_outbound_prompt_appends_custom_prompt(self):
        builder = PromptBuilder(FlowsConfig().outbound)
        prompt = builder.prompt(JAN, "+48123", {"prompt": "Offer a payment plan."})
        assert prompt.endswith("Offer a payment plan.")

    def test_first_message(self):
        builder = PromptBuilder(FlowsConfig().inbound)
        assert builder.first_message(JAN, "+48123", {}) == (
            "Hi Jan! I see you're calling about your C-100. How can I help you today?"
        )

    def test_generic_fallbacks(self):
        builder = PromptBuilder(FlowsConfig().outbound)
        assert builder.prompt(None, "+48123", {}) == "You are a customer service representative"
        assert builder.prompt(None, "+48123", {"prompt": "Say hi"}) == "Say hi"
        assert builder.first_message(None, "+48123", {}) == "Hello, do you have a moment to talk?"

    def test_unknown_placeholders_render_empty(self):
        flow = FlowConfig(prompt_template="Hello {caller_name}{nickname}!")
        assert PromptBuilder(flow).prompt(JAN, "+48123", {}) == "Hello Jan Kowalski!"

    def test_variables(self):
        assert PromptBuilder.variables(JAN, "+48123") == {
            "caller_phone": "+48123",
            "caller_name": "Jan Kowalski",
            "case_number": "C-100",
            "debt_amount": "1000 PLN",
            "case_description": "Unpaid invoice",
        }


class TestAgentSessionInitiator:

    def test_initial_config_with_record(self):
        config = _initiator().build_initial_config(JAN, "+48123", {}, Direction.INBOUND)
        assert config["type"] == "conversation_initiation_client_data"
        agent = config["conversation_config_override"]["agent"]
        assert "Jan Kowalski" in agent["prompt"]["prompt"]
        assert agent["first_message"].startswith("Hi Jan!")
        assert config["client_data"]["dynamic_variables"]["debt_amount"] == "1000 PLN"

    def test_initial_config_without_record(self):
        config = _initiator().build_initial_config(None, "+48123", {}, Direction.OUTBOUND)
        agent = config["conversation_config_override"]["agent"]
        assert agent["prompt"]["prompt"] == "You are a customer service representative"
        assert agent["first_message"] == "Hello, do you have a moment to talk?"
        assert "client_data" not in config

    @pytest.mark.asyncio
    async def test_resolve_endpoint(self):
        async with agent_backend() as (endpoint, seen):
            initiator = _initiator(endpoint)
            url = await initiator.resolve_endpoint()
            await initiator.close()

        assert url.startswith("ws://")
        assert seen == [({"agent_id": "agent_1"}, "xi-key")]

    @pytest.mark.asyncio
    async def test_resolve_endpoint_error_status(self):
        async with agent_backend(status=401, body={"detail": "bad key"}) as (endpoint, _):
            initiator = _initiator(endpoint)
            with pytest.raises(UpstreamConnectError):
                await initiator.resolve_endpoint()
            await initiator.close()

    @pytest.mark.asyncio
    async def test_resolve_endpoint_without_signed_url(self):
        async with agent_backend(body={"something": "else"}) as (endpoint, _):
            initiator = _initiator(endpoint)
            with pytest.raises(UpstreamConnectError):
                await initiator.resolve_endpoint()
            await initiator.close()

    @pytest.mark.asyncio
    async def test_resolve_endpoint_unreachable(self):
        initiator = _initiator()
        with pytest.raises(UpstreamConnectError):
            await initiator.resolve_endpoint()
        await initiator.close()

    @pytest.mark.asyncio
    async def test_connect_opens_agent_socket(self):
        async with agent_backend() as (endpoint, _):
            initiator = _initiator(endpoint)
            transport = await initiator.connect()
            try:
                assert transport.is_connected()
                await transport.send('{"type": "pong", "event_id": 1}')
                assert await transport.recv() == '{"type": "pong", "event_id": 1}'

                await transport.send("bye")
                with pytest.raises(TransportClosed) as exc_info:
                    await transport.recv()
                assert exc_info.value.code == 1000
                assert exc_info.value.is_normal
                assert not transport.is_connected()
            finally:
                await transport.disconnect()
                await initiator.close()


class TestWebSocketClientTransport:

    @pytest.mark.asyncio
    async def test_connect_requires_url(self):
        with pytest.raises(ValueError):
            await WebSocketClientTransport().connect()

    @pytest.mark.asyncio
    async def test_recv_before_connect_is_closed(self):
        with pytest.raises(TransportClosed) as exc_info:
            await WebSocketClientTransport("ws://localhost/none").recv()
        assert exc_info.value.code == 1006
        assert not exc_info.value.is_normal

    @pytest.mark.asyncio
    async def test_send_before_connect_raises(self):
        with pytest.raises(RuntimeError):
            await WebSocketClientTransport("ws://localhost/none").send("x")
