"""Exceptions raised by agentbridge.

Every failure here is scoped to a single call. The bridge logs them and
carries on; none of them is allowed to reach the host process.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for agentbridge."""


class ConfigurationError(BridgeError):
    """Raised when required configuration is missing or invalid."""


class DecodeError(BridgeError):
    """A frame could not be parsed. The frame is discarded, the socket kept."""

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class UpstreamConnectError(BridgeError):
    """Resolving the agent endpoint or opening the agent socket failed."""


class DeliveryError(BridgeError):
    """The call-summary webhook rejected the notification or was unreachable."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message)


class DuplicateSessionError(BridgeError):
    """A session is already registered for this stream identifier."""


class CallPlacementError(BridgeError):
    """Raised when the telephony provider refuses to place an outbound call."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")
