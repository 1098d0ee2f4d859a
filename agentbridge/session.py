"""Call session management for agentbridge.

Each bridged call gets a CallSession holding its identity, both socket
handles and its teardown state. The SessionStore maps stream ids to live
sessions and keeps a bounded history of call records for late lookups.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel

from agentbridge.core.events import Direction
from agentbridge.core.exceptions import DuplicateSessionError
from agentbridge.directory import ContextRecord
from agentbridge.transports.base import BaseTransport


class TeardownState(int, Enum):
    # Ordered: a session may only move to a higher value
    ACTIVE = 0
    DISCONNECTING = 1
    CLOSED = 2


class CallRecord(BaseModel):
    """Snapshot of a call, retained after the live session is gone."""

    call_id: str
    stream_id: str
    direction: Direction
    caller_identity: str
    conversation_id: str | None = None
    context_record: ContextRecord | None = None
    started_at: float
    ended_at: float | None = None


@dataclass
class CallSession:
    """Represents a single call flowing through the bridge."""

    stream_id: str
    direction: Direction = Direction.INBOUND

    # Call identifier from the provider (may be empty)
    call_id: str = ""

    # Call metadata
    caller_identity: str = "Unknown"
    context_record: ContextRecord | None = None
    custom_params: dict[str, Any] = field(default_factory=dict)

    # Transports
    telephony_transport: BaseTransport | None = None
    agent_transport: BaseTransport | None = None

    # State
    teardown_state: TeardownState = TeardownState.ACTIVE
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    media_frames_in: int = 0
    audio_frames_out: int = 0

    _conversation_id: str | None = None

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    def set_conversation_id(self, conversation_id: str) -> bool:
        """Record the agent's conversation id. Only the first value sticks."""
        if self._conversation_id is not None:
            return False
        self._conversation_id = conversation_id
        return True

    def advance(self, state: TeardownState) -> bool:
        """Move the teardown state forward. Returns False if it would not advance."""
        if state <= self.teardown_state:
            return False
        self.teardown_state = state
        if self.ended_at is None:
            self.ended_at = time.time()
        return True

    @property
    def is_active(self) -> bool:
        return self.teardown_state == TeardownState.ACTIVE

    @property
    def agent_ready(self) -> bool:
        return self.agent_transport is not None and self.agent_transport.is_connected()

    @property
    def call_sid(self) -> str:
        """The identifier reported downstream: the call SID, else the stream SID."""
        return self.call_id or self.stream_id

    @property
    def duration_ms(self) -> int:
        """Call duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)

    def to_record(self) -> CallRecord:
        return CallRecord(
            call_id=self.call_sid,
            stream_id=self.stream_id,
            direction=self.direction,
            caller_identity=self.caller_identity,
            conversation_id=self.conversation_id,
            context_record=self.context_record,
            started_at=self.started_at,
            ended_at=self.ended_at,
        )


class SessionStore:
    """Thread-safe store for active call sessions.

    Live sessions are keyed by stream id. Every registered call also leaves a
    CallRecord keyed by call id, kept after removal (oldest evicted first) so
    transcript lookups still work once the call has ended.
    """

    def __init__(self, retained_records: int = 1000) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, CallSession] = {}
        self._records: OrderedDict[str, CallRecord] = OrderedDict()
        self._retained_records = retained_records

    def put(self, stream_id: str, session: CallSession) -> None:
        """Register a session.

        Raises:
            DuplicateSessionError: If ``stream_id`` already has a live session.
        """
        with self._lock:
            if stream_id in self._sessions:
                raise DuplicateSessionError(f"Session already registered for stream {stream_id}")
            self._sessions[stream_id] = session
            self._retain(session.to_record())
        logger.info(f"Session registered: stream={stream_id} (call: {session.call_sid})")

    def get(self, stream_id: str) -> CallSession | None:
        with self._lock:
            return self._sessions.get(stream_id)

    def get_by_call_id(self, call_id: str) -> CallSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.call_sid == call_id:
                    return session
        return None

    def remove(self, stream_id: str) -> CallSession | None:
        """Remove a session, refreshing its retained record."""
        with self._lock:
            session = self._sessions.pop(stream_id, None)
            if session:
                self._retain(session.to_record())
        if session:
            logger.info(
                f"Session removed: stream={stream_id} "
                f"(duration: {session.duration_ms}ms)"
            )
        return session

    def record(self, call_id: str) -> CallRecord | None:
        """Latest record for a call: live snapshot if running, else retained."""
        live = self.get_by_call_id(call_id)
        if live:
            return live.to_record()
        with self._lock:
            return self._records.get(call_id)

    def _retain(self, record: CallRecord) -> None:
        # Caller holds the lock
        self._records[record.call_id] = record
        self._records.move_to_end(record.call_id)
        while len(self._records) > self._retained_records:
            self._records.popitem(last=False)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def all_sessions(self) -> list[CallSession]:
        with self._lock:
            return list(self._sessions.values())
