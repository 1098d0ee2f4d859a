"""agentbridge - telephony to conversational-agent call bridge.

AgentBridge is the long-lived object the host process owns: configuration,
the session store and the HTTP collaborators. For every telephony media
stream it runs a CallBridge, the per-call state machine.

A CallBridge runs these tasks per call:
1. telephony reader: Twilio socket -> queue
2. agent reader: agent socket -> queue (once the agent socket is open)
3. agent connect: resolve signed URL, open socket, send session config
4. processing loop: the only code that mutates the call's state

Frames from both sockets are funnelled into one asyncio.Queue, so every
state transition happens sequentially, in arrival order per socket.
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from agentbridge.agent import AgentSessionInitiator
from agentbridge.config import BridgeConfig, FlowConfig, load_config
from agentbridge.core.events import (
    AgentAudio,
    AgentEndOfConversation,
    AgentInterruption,
    AgentPing,
    AgentSessionMetadata,
    AgentUnknown,
    Direction,
    Media,
    Start,
    Stop,
)
from agentbridge.core.exceptions import DecodeError, DeliveryError, DuplicateSessionError, UpstreamConnectError
from agentbridge.directory import DirectoryClient
from agentbridge.notifications import NotificationDispatcher, NotificationRecord
from agentbridge.serializers.registry import serializer_registry
from agentbridge.session import CallSession, SessionStore, TeardownState
from agentbridge.transports.base import BaseTransport, TransportClosed

# Queue item sources
_TELEPHONY = "telephony"
_TELEPHONY_CLOSED = "telephony_closed"
_AGENT = "agent"
_AGENT_READY = "agent_ready"
_AGENT_CLOSED = "agent_closed"


class CallBridge:
    """One bridged call: owns both sockets and drives the teardown sequence.

    States follow ``CallSession.teardown_state``:
    - ACTIVE: both directions flow freely
    - DISCONNECTING: teardown running; only telephony ``stop`` is honoured
    - CLOSED: terminal
    """

    def __init__(
        self,
        telephony: BaseTransport,
        direction: Direction,
        sessions: SessionStore,
        directory: DirectoryClient,
        notifier: NotificationDispatcher,
        initiator: AgentSessionInitiator,
        flow: FlowConfig,
        close_grace_seconds: float = 1.0,
    ) -> None:
        self.telephony = telephony
        self.direction = direction
        self.sessions = sessions
        self.directory = directory
        self.notifier = notifier
        self.initiator = initiator
        self.flow = flow
        self.close_grace_seconds = close_grace_seconds

        self.session: CallSession | None = None
        self.twilio = serializer_registry.create("twilio")
        self.elevenlabs = serializer_registry.create("elevenlabs")

        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._rejected = False
        self._telephony_reader: asyncio.Task | None = None
        self._agent_reader: asyncio.Task | None = None
        self._agent_connect: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Process events until the telephony socket closes."""
        self._telephony_reader = asyncio.create_task(self._read_telephony())
        try:
            while True:
                source, item = await self._queue.get()
                if source == _TELEPHONY_CLOSED:
                    await self._on_telephony_closed()
                    break
                try:
                    await self._dispatch(source, item)
                except Exception:
                    logger.exception(f"[Bridge] Error handling {source} event")
        finally:
            await self._cleanup()

    async def _dispatch(self, source: str, item: Any) -> None:
        if source == _TELEPHONY:
            await self._on_telephony_frame(item)
        elif source == _AGENT:
            await self._on_agent_frame(item)
        elif source == _AGENT_READY:
            await self._on_agent_ready(item)
        elif source == _AGENT_CLOSED:
            await self._on_agent_closed(item)

    async def _read_telephony(self) -> None:
        try:
            while True:
                raw = await self.telephony.recv()
                await self._queue.put((_TELEPHONY, raw))
        except TransportClosed:
            pass
        except Exception as e:
            logger.warning(f"[Twilio] Receive error: {e}")
        await self._queue.put((_TELEPHONY_CLOSED, None))

    async def _read_agent(self, transport: BaseTransport) -> None:
        try:
            while True:
                raw = await transport.recv()
                await self._queue.put((_AGENT, raw))
        except TransportClosed as e:
            await self._queue.put((_AGENT_CLOSED, e))
        except Exception as e:
            logger.error(f"[ElevenLabs] Receive error: {e}")
            await self._queue.put((_AGENT_CLOSED, TransportClosed()))

    # ------------------------------------------------------------------
    # Telephony side
    # ------------------------------------------------------------------

    async def _on_telephony_frame(self, raw: str | bytes) -> None:
        try:
            event = self.twilio.deserialize(raw)
        except DecodeError as e:
            logger.warning(f"[Twilio] Discarding malformed frame: {e}")
            return

        logger.debug(f"[Twilio] Handling event: {event.event_type.value}")

        if isinstance(event, Stop):
            await self._on_stop()
            return

        if self._rejected:
            return

        if self.session and not self.session.is_active:
            logger.debug(f"[Twilio] Ignoring event during disconnect: {event.event_type.value}")
            return

        if isinstance(event, Start):
            await self._on_start(event)
        elif isinstance(event, Media):
            await self._on_media(event)
        else:
            logger.debug(f"[Twilio] Unhandled event: {event.raw_type}")

    async def _on_start(self, event: Start) -> None:
        if self.session is not None:
            logger.warning(f"[Twilio] Duplicate start for stream {event.stream_id}; ignoring")
            return

        logger.info(
            f"[Twilio] Stream started - StreamSid: {event.stream_id}, "
            f"CallSid: {event.call_id or 'n/a'}, Phone: {event.caller_identity}"
        )

        result = await self.directory.check_caller(event.caller_identity)
        if self.flow.require_authorization and not result.authorized:
            logger.warning(f"[Auth] Rejecting unauthorized caller {event.caller_identity}")
            self._rejected = True
            await self._send_telephony(self.twilio.build_reject_message(self.flow.reject_message))
            self._schedule_telephony_close()
            return

        session = CallSession(
            stream_id=event.stream_id,
            direction=self.direction,
            call_id=event.call_id,
            caller_identity=event.caller_identity,
            context_record=result.record,
            custom_params=event.custom_params,
            telephony_transport=self.telephony,
        )
        try:
            self.sessions.put(event.stream_id, session)
        except DuplicateSessionError as e:
            logger.error(f"[Bridge] {e}")
            self._rejected = True
            await self._send_telephony(self.twilio.build_hangup_message())
            self._schedule_telephony_close()
            return

        self.session = session
        self._agent_connect = asyncio.create_task(self._connect_agent(session))

    async def _on_media(self, event: Media) -> None:
        session = self.session
        if session is None or not session.agent_ready:
            # Dropped, never buffered: audio before the agent is up is lost
            return
        session.media_frames_in += 1
        await self._send_agent(self.elevenlabs.build_user_audio_message(event.payload))

    async def _on_stop(self) -> None:
        logger.info("[Twilio] Stream stopped")
        session = self.session
        if session is not None and session.agent_ready:
            await self._send_agent(self.elevenlabs.build_end_conversation_message())
            await session.agent_transport.disconnect()
        await self.teardown()

    async def _on_telephony_closed(self) -> None:
        logger.info("[Twilio] Client disconnected")
        if self._close_task and not self._close_task.done():
            self._close_task.cancel()
        if self.session is not None and self.session.agent_ready:
            await self.session.agent_transport.disconnect()

    # ------------------------------------------------------------------
    # Agent side
    # ------------------------------------------------------------------

    async def _connect_agent(self, session: CallSession) -> None:
        try:
            transport = await self.initiator.connect()
        except UpstreamConnectError as e:
            logger.error(f"[ElevenLabs] {e}; call continues without agent audio")
            return

        config = self.initiator.build_initial_config(
            session.context_record,
            session.caller_identity,
            session.custom_params,
            session.direction,
        )
        try:
            await transport.send(self.elevenlabs.build_initiation_message(config))
        except Exception as e:
            logger.error(f"[ElevenLabs] Failed to send session config: {e}")
            await transport.disconnect()
            return
        logger.debug(f"[ElevenLabs] Sent session config: {config}")
        await self._queue.put((_AGENT_READY, transport))

    async def _on_agent_ready(self, transport: BaseTransport) -> None:
        session = self.session
        if session is None or not session.is_active:
            logger.info("[ElevenLabs] Call ended before the agent connected; closing agent socket")
            await transport.disconnect()
            return
        session.agent_transport = transport
        self._agent_reader = asyncio.create_task(self._read_agent(transport))

    async def _on_agent_frame(self, raw: str | bytes) -> None:
        session = self.session
        if session is None:
            return
        try:
            event = self.elevenlabs.deserialize(raw)
        except DecodeError as e:
            logger.warning(f"[ElevenLabs] Discarding malformed frame: {e}")
            return

        if not session.is_active:
            logger.debug(f"[ElevenLabs] Ignoring event during disconnect: {event.event_type.value}")
            return

        if isinstance(event, AgentAudio):
            if event.payload and session.stream_id:
                session.audio_frames_out += 1
                await self._send_telephony(self.twilio.build_media_message(event.payload))

        elif isinstance(event, AgentInterruption):
            await self._send_telephony(self.twilio.build_clear_message())

        elif isinstance(event, AgentPing):
            await self._send_agent(self.elevenlabs.build_pong_message(event.event_id))

        elif isinstance(event, AgentSessionMetadata):
            if session.set_conversation_id(event.conversation_id):
                logger.info(f"[ElevenLabs] Stored conversation ID: {event.conversation_id}")
            else:
                logger.warning(
                    f"[ElevenLabs] Ignoring conversation ID {event.conversation_id}; "
                    f"already set to {session.conversation_id}"
                )

        elif isinstance(event, AgentEndOfConversation):
            logger.info("[ElevenLabs] End of conversation received")
            await self.teardown()

        elif isinstance(event, AgentUnknown):
            logger.debug(f"[ElevenLabs] Unhandled message type: {event.raw_type}")

    async def _on_agent_closed(self, closed: TransportClosed) -> None:
        logger.info(f"[ElevenLabs] Disconnected with code: {closed.code} ({closed.reason or 'no reason'})")
        if closed.is_normal:
            await self.teardown()
        else:
            # Left to the telephony side to end the call
            logger.warning(f"[ElevenLabs] Abnormal closure (code: {closed.code}), not ending call")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def teardown(self) -> None:
        """End the call on both sides and report it. Safe to call repeatedly."""
        session = self.session
        if session is None or not session.advance(TeardownState.DISCONNECTING):
            return

        logger.info(f"[Twilio] Initiating call disconnect for stream {session.stream_id}")

        if session.conversation_id:
            record = NotificationRecord(
                conversation_id=session.conversation_id,
                phone_number=session.caller_identity,
                call_sid=session.call_sid,
            )
            try:
                await self.notifier.dispatch(record)
            except DeliveryError as e:
                logger.warning(f"[Webhook] Notification not delivered, continuing teardown: {e}")

        await self._send_telephony(self.twilio.build_mark_done_message())
        await self._send_telephony(self.twilio.build_clear_message())
        await self._send_telephony(self.twilio.build_hangup_message())

        self._schedule_telephony_close()
        self.sessions.remove(session.stream_id)
        session.advance(TeardownState.CLOSED)

    def _schedule_telephony_close(self) -> None:
        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close_telephony_after_grace())

    async def _close_telephony_after_grace(self) -> None:
        await asyncio.sleep(self.close_grace_seconds)
        if self.telephony.is_connected():
            await self.telephony.disconnect()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send_telephony(self, data: str) -> None:
        try:
            await self.telephony.send(data)
        except Exception as e:
            logger.warning(f"[Twilio] Send failed: {e}")

    async def _send_agent(self, data: str) -> None:
        session = self.session
        if session is None or not session.agent_ready:
            return
        try:
            await session.agent_transport.send(data)
        except Exception as e:
            logger.warning(f"[ElevenLabs] Send failed: {e}")

    async def _cleanup(self) -> None:
        for task in (self._telephony_reader, self._agent_reader, self._agent_connect, self._close_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        # An agent socket may have opened after the loop stopped reading
        while not self._queue.empty():
            source, item = self._queue.get_nowait()
            if source == _AGENT_READY:
                await item.disconnect()

        session = self.session
        if session is not None and self.sessions.get(session.stream_id) is session:
            # Telephony went away without a stop: forget the call, no notification
            self.sessions.remove(session.stream_id)
        if session is not None and session.agent_transport is not None:
            if session.agent_transport.is_connected():
                await session.agent_transport.disconnect()


class AgentBridge:
    """Host-level bridge: configuration, session store and collaborators.

    Usage:
        bridge = AgentBridge("bridge.yaml")

        # inside a WebSocket endpoint
        await bridge.handle_telephony_connection(transport, Direction.INBOUND)
    """

    def __init__(
        self,
        config: BridgeConfig | dict | str,
        sessions: SessionStore | None = None,
        directories: dict[Direction, DirectoryClient] | None = None,
        notifiers: dict[Direction, NotificationDispatcher] | None = None,
        initiator: AgentSessionInitiator | None = None,
    ) -> None:
        self.config = load_config(config)
        timeout = self.config.session.http_timeout_seconds
        self.sessions = sessions or SessionStore(self.config.session.retained_records)
        self.directories = directories or {
            direction: DirectoryClient(self.config.flows.for_direction(direction).lookup_url, timeout)
            for direction in Direction
        }
        self.notifiers = notifiers or {
            direction: NotificationDispatcher(self.config.flows.for_direction(direction).webhook, timeout)
            for direction in Direction
        }
        self.initiator = initiator or AgentSessionInitiator(
            self.config.agent, self.config.flows, timeout
        )

    def create_call(self, telephony: BaseTransport, direction: Direction) -> CallBridge:
        return CallBridge(
            telephony=telephony,
            direction=direction,
            sessions=self.sessions,
            directory=self.directories[direction],
            notifier=self.notifiers[direction],
            initiator=self.initiator,
            flow=self.config.flows.for_direction(direction),
            close_grace_seconds=self.config.session.close_grace_seconds,
        )

    async def handle_telephony_connection(self, telephony: BaseTransport, direction: Direction) -> None:
        """Bridge one accepted telephony media stream until it closes."""
        logger.info(f"[Server] Twilio connected to {direction.value} media stream")
        await self.create_call(telephony, direction).run()

    async def close(self) -> None:
        """Close the HTTP sessions held by the collaborators."""
        for client in (*self.directories.values(), *self.notifiers.values(), self.initiator):
            await client.close()
