"""Internal event vocabulary for agentbridge.

Both wire protocols (Twilio Media Streams on the telephony side, ElevenLabs
Conversational AI on the agent side) are decoded into these events. The call
bridge only ever reasons about these types, never about raw JSON.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EventType(str, Enum):
    # Telephony side
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    TELEPHONY_UNKNOWN = "telephony_unknown"
    # Agent side
    AGENT_AUDIO = "agent_audio"
    AGENT_INTERRUPTION = "agent_interruption"
    AGENT_PING = "agent_ping"
    AGENT_SESSION_METADATA = "agent_session_metadata"
    AGENT_END_OF_CONVERSATION = "agent_end_of_conversation"
    AGENT_UNKNOWN = "agent_unknown"


class Event(BaseModel):
    """Base event that all agentbridge events inherit from."""

    event_type: EventType
    timestamp: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Telephony → bridge
# ---------------------------------------------------------------------------


class Start(Event):
    """The telephony stream started; carries the call's identity."""

    event_type: EventType = EventType.START
    stream_id: str
    call_id: str = ""
    caller_identity: str = "Unknown"
    custom_params: dict[str, Any] = Field(default_factory=dict)


class Media(Event):
    """Caller audio. ``payload`` is the base64 text exactly as received."""

    event_type: EventType = EventType.MEDIA
    payload: str


class Stop(Event):
    """The telephony stream ended."""

    event_type: EventType = EventType.STOP


class TelephonyUnknown(Event):
    """A telephony frame with an event type the bridge does not act on."""

    event_type: EventType = EventType.TELEPHONY_UNKNOWN
    raw_type: str = ""


# ---------------------------------------------------------------------------
# Agent → bridge
# ---------------------------------------------------------------------------


class AgentAudio(Event):
    """Synthesized agent speech, base64 text passed through untouched."""

    event_type: EventType = EventType.AGENT_AUDIO
    payload: str = ""


class AgentInterruption(Event):
    """The caller barged in; queued playback must be discarded."""

    event_type: EventType = EventType.AGENT_INTERRUPTION


class AgentPing(Event):
    """Liveness heartbeat. Must be answered with a pong carrying ``event_id``."""

    event_type: EventType = EventType.AGENT_PING
    event_id: Any


class AgentSessionMetadata(Event):
    """The agent side assigned a conversation identifier."""

    event_type: EventType = EventType.AGENT_SESSION_METADATA
    conversation_id: str


class AgentEndOfConversation(Event):
    event_type: EventType = EventType.AGENT_END_OF_CONVERSATION


class AgentUnknown(Event):
    event_type: EventType = EventType.AGENT_UNKNOWN
    raw_type: str = ""


TelephonyEvent = Union[Start, Media, Stop, TelephonyUnknown]

AgentEvent = Union[
    AgentAudio,
    AgentInterruption,
    AgentPing,
    AgentSessionMetadata,
    AgentEndOfConversation,
    AgentUnknown,
]

AnyEvent = Union[TelephonyEvent, AgentEvent]
