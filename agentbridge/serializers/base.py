"""Base serializer interface for agentbridge.

Serializers are pure message translators with no I/O: they turn one side's
JSON envelopes into internal events and build that side's outgoing frames.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import ValidationError

from agentbridge.core.events import AnyEvent, Event
from agentbridge.core.exceptions import DecodeError

E = TypeVar("E", bound=Event)


class BaseSerializer(ABC):
    """Abstract base class for the two socket protocols.

    Key principles:
    - Serializers do NO I/O (no network calls, no file access)
    - Per-call state is kept to the minimum needed to address outgoing frames
    - A malformed frame raises :class:`DecodeError`; it never closes a socket
    """

    @abstractmethod
    def deserialize(self, raw: bytes | str | dict) -> AnyEvent:
        """Parse a raw frame into exactly one internal event.

        Raises:
            DecodeError: If the frame is not JSON, not an object, or misses
                a field the event type requires.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this serializer (e.g. 'twilio')."""
        ...

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise the raw WebSocket frame into a dict."""
        if isinstance(raw, dict):
            return raw
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            msg = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Invalid JSON frame: {e}", raw=raw) from e
        if not isinstance(msg, dict):
            raise DecodeError("Frame is not a JSON object", raw=raw)
        return msg

    @staticmethod
    def _require(container: Any, key: str, where: str) -> Any:
        """Fetch a required field, raising DecodeError if it is absent."""
        if not isinstance(container, dict) or container.get(key) in (None, ""):
            raise DecodeError(f"Missing required field '{where}.{key}'")
        return container[key]

    @staticmethod
    def _build(event_cls: type[E], **fields: Any) -> E:
        """Construct an event, reporting wrongly typed fields as DecodeError."""
        try:
            return event_cls(**fields)
        except ValidationError as e:
            raise DecodeError(f"Invalid {event_cls.__name__} frame: {e}") from e
