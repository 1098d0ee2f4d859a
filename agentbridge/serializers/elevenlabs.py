"""ElevenLabs Conversational AI WebSocket serializer.

Frames on this socket are JSON objects with a ``type`` field. Agent speech
arrives as base64 text in ``audio_event.audio_base_64`` (older agents send
``audio.chunk``) and is forwarded to Twilio without decoding.

Protocol reference:
    https://elevenlabs.io/docs/conversational-ai/api-reference/conversational-ai/websocket
"""

from __future__ import annotations

import json
from typing import Any

from agentbridge.core.events import (
    AgentAudio,
    AgentEndOfConversation,
    AgentEvent,
    AgentInterruption,
    AgentPing,
    AgentSessionMetadata,
    AgentUnknown,
)
from agentbridge.serializers.base import BaseSerializer


class ElevenLabsSerializer(BaseSerializer):
    """Serializer for the ElevenLabs Conversational AI socket."""

    @property
    def name(self) -> str:
        return "elevenlabs"

    def deserialize(self, raw: bytes | str | dict) -> AgentEvent:
        """Parse one agent frame.

        Message types handled:
            * ``audio``                            -> :class:`AgentAudio`
            * ``interruption``                     -> :class:`AgentInterruption`
            * ``ping``                             -> :class:`AgentPing`
            * ``end_of_conversation``              -> :class:`AgentEndOfConversation`
            * ``conversation_initiation_metadata`` -> :class:`AgentSessionMetadata`

        Anything else becomes :class:`AgentUnknown`.
        """
        msg = self._parse_message(raw)
        msg_type = self._require(msg, "type", "frame")

        if msg_type == "audio":
            return self._build(AgentAudio, payload=self._audio_payload(msg))

        if msg_type == "interruption":
            return AgentInterruption()

        if msg_type == "ping":
            ping = self._require(msg, "ping_event", "frame")
            return self._build(AgentPing, event_id=self._require(ping, "event_id", "ping_event"))

        if msg_type == "end_of_conversation":
            return AgentEndOfConversation()

        if msg_type == "conversation_initiation_metadata":
            meta = self._require(msg, "conversation_initiation_metadata_event", "frame")
            return self._build(
                AgentSessionMetadata,
                conversation_id=str(
                    self._require(meta, "conversation_id", "conversation_initiation_metadata_event")
                )
            )

        return AgentUnknown(raw_type=str(msg_type))

    @staticmethod
    def _audio_payload(msg: dict[str, Any]) -> str:
        audio_event = msg.get("audio_event")
        if isinstance(audio_event, dict) and audio_event.get("audio_base_64"):
            return audio_event["audio_base_64"]
        audio = msg.get("audio")
        if isinstance(audio, dict) and audio.get("chunk"):
            return audio["chunk"]
        return ""

    # ------------------------------------------------------------------
    # Outgoing frames (bridge -> agent)
    # ------------------------------------------------------------------

    def build_user_audio_message(self, payload: str) -> str:
        return json.dumps({"user_audio_chunk": payload})

    def build_pong_message(self, event_id: Any) -> str:
        return json.dumps({"type": "pong", "event_id": event_id})

    def build_end_conversation_message(self) -> str:
        return json.dumps({"type": "end_conversation"})

    def build_initiation_message(self, config: dict[str, Any]) -> str:
        """Serialize a ``conversation_initiation_client_data`` frame."""
        return json.dumps(config)
