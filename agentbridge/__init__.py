"""agentbridge - bridge live phone calls to a conversational AI agent.

Twilio Media Streams on one side, an ElevenLabs Conversational AI session on
the other. Each call runs as its own state machine that translates frames in
both directions and hangs up cleanly when either side ends the conversation.

Quick start:
    $ pip install agentbridge
    $ agentbridge init          # generates bridge.yaml
    $ agentbridge run --config bridge.yaml
"""

__version__ = "0.1.0"

from agentbridge.agent import AgentSessionInitiator
from agentbridge.bridge import AgentBridge, CallBridge
from agentbridge.config import BridgeConfig, FlowConfig, load_config
from agentbridge.directory import AuthorizationResult, ContextRecord, DirectoryClient
from agentbridge.notifications import NotificationDispatcher, NotificationRecord
from agentbridge.session import CallRecord, CallSession, SessionStore, TeardownState

from agentbridge.core.events import (
    AgentAudio,
    AgentEndOfConversation,
    AgentInterruption,
    AgentPing,
    AgentSessionMetadata,
    AgentUnknown,
    Direction,
    Event,
    EventType,
    Media,
    Start,
    Stop,
    TelephonyUnknown,
)
from agentbridge.core.exceptions import (
    BridgeError,
    CallPlacementError,
    DecodeError,
    DeliveryError,
    DuplicateSessionError,
    UpstreamConnectError,
)

__all__ = [
    # Core
    "AgentBridge",
    "CallBridge",
    "BridgeConfig",
    "FlowConfig",
    "load_config",
    "CallSession",
    "CallRecord",
    "SessionStore",
    "TeardownState",
    # Collaborators
    "AgentSessionInitiator",
    "DirectoryClient",
    "AuthorizationResult",
    "ContextRecord",
    "NotificationDispatcher",
    "NotificationRecord",
    # Events
    "Event",
    "EventType",
    "Direction",
    "Start",
    "Media",
    "Stop",
    "TelephonyUnknown",
    "AgentAudio",
    "AgentInterruption",
    "AgentPing",
    "AgentSessionMetadata",
    "AgentEndOfConversation",
    "AgentUnknown",
    # Errors
    "BridgeError",
    "DecodeError",
    "UpstreamConnectError",
    "DeliveryError",
    "DuplicateSessionError",
    "CallPlacementError",
]
