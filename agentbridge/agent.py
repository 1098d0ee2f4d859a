"""Conversational AI session initiation.

Opening an agent session is a two-step affair: fetch a one-time signed
WebSocket URL over HTTPS, connect to it, then send the
``conversation_initiation_client_data`` frame that carries the persona
prompt, opening line and dynamic variables for this particular caller.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from loguru import logger

from agentbridge.config import AgentConfig, FlowsConfig
from agentbridge.core.events import Direction
from agentbridge.core.exceptions import UpstreamConnectError
from agentbridge.directory import ContextRecord
from agentbridge.prompts import PromptBuilder
from agentbridge.transports.websocket import WebSocketClientTransport


class AgentSessionInitiator:
    """Resolves the agent endpoint and builds the session-configuration frame."""

    def __init__(
        self,
        agent: AgentConfig,
        flows: FlowsConfig,
        timeout: float = 10.0,
    ) -> None:
        self.agent = agent
        self.flows = flows
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    async def resolve_endpoint(self) -> str:
        """Fetch a one-time WebSocket URL for a new conversation.

        Raises:
            UpstreamConnectError: On a non-2xx status, a transport failure or
                a response without ``signed_url``.
        """
        try:
            session = await self._get_session()
            async with session.get(
                self.agent.signed_url_endpoint,
                params={"agent_id": self.agent.agent_id},
                headers={"xi-api-key": self.agent.api_key},
            ) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise UpstreamConnectError(
                        f"Failed to get signed URL: {resp.status} {body}"
                    )
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamConnectError(f"Failed to get signed URL: {e}") from e

        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not signed_url:
            raise UpstreamConnectError("Signed URL response did not contain 'signed_url'")
        return signed_url

    def build_initial_config(
        self,
        context_record: ContextRecord | None,
        caller_identity: str,
        custom_params: dict[str, Any],
        direction: Direction,
    ) -> dict[str, Any]:
        """Build the ``conversation_initiation_client_data`` payload.

        Without a context record the flow's generic prompt and greeting are
        used and no dynamic variables are sent.
        """
        builder = PromptBuilder(self.flows.for_direction(direction))

        config: dict[str, Any] = {
            "type": "conversation_initiation_client_data",
            "conversation_config_override": {
                "agent": {
                    "prompt": {
                        "prompt": builder.prompt(context_record, caller_identity, custom_params),
                    },
                    "first_message": builder.first_message(
                        context_record, caller_identity, custom_params
                    ),
                },
            },
        }
        if context_record is not None:
            config["client_data"] = {
                "dynamic_variables": builder.variables(context_record, caller_identity),
            }
        return config

    async def connect(self) -> WebSocketClientTransport:
        """Resolve the endpoint and open the agent socket.

        Raises:
            UpstreamConnectError: If either step fails.
        """
        url = await self.resolve_endpoint()
        transport = WebSocketClientTransport(url=url)
        try:
            await transport.connect()
        except Exception as e:
            raise UpstreamConnectError(f"Failed to open agent socket: {e}") from e
        logger.info("[ElevenLabs] Connected to Conversational AI")
        return transport

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
