"""Base transport interface for agentbridge.

Transports own one live socket: sending, receiving and closing it. They know
nothing about the frames they carry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

# Close codes meaning "clean shutdown" and "no status given"
NORMAL_CLOSE_CODES = (1000, 1005)
ABNORMAL_CLOSE_CODE = 1006


class TransportClosed(Exception):
    """Raised by :meth:`BaseTransport.recv` once the peer has gone away."""

    def __init__(self, code: int = ABNORMAL_CLOSE_CODE, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"Connection closed (code={code}, reason={reason or 'n/a'})")

    @property
    def is_normal(self) -> bool:
        return self.code in NORMAL_CLOSE_CODES


class BaseTransport(ABC):
    """Abstract base class for socket connections.

    Transports manage the network connection to either the telephony provider
    or the conversational agent. They handle connection lifecycle and raw
    message I/O.
    """

    @abstractmethod
    async def connect(self, **kwargs) -> None:
        """Establish the transport connection."""
        ...

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send data over the transport."""
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next message from the transport.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport connection gracefully."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the transport is currently connected."""
        ...
