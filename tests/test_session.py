"""Tests for call sessions and the session store."""

import pytest

from agentbridge.core.events import Direction
from agentbridge.core.exceptions import DuplicateSessionError
from agentbridge.session import CallSession, SessionStore, TeardownState


class _Socket:
    def __init__(self, connected=True):
        self.connected = connected

    def is_connected(self):
        return self.connected


class TestCallSession:

    def test_session_defaults(self):
        session = CallSession(stream_id="MZ1")
        assert session.is_active is True
        assert session.conversation_id is None
        assert session.caller_identity == "Unknown"
        assert session.direction == Direction.INBOUND
        assert session.ended_at is None

    def test_conversation_id_set_once(self):
        session = CallSession(stream_id="MZ1")
        assert session.set_conversation_id("conv_1") is True
        assert session.set_conversation_id("conv_2") is False
        assert session.conversation_id == "conv_1"

    def test_advance_is_forward_only(self):
        session = CallSession(stream_id="MZ1")
        assert session.advance(TeardownState.DISCONNECTING) is True
        assert session.is_active is False
        ended_at = session.ended_at
        assert ended_at is not None

        assert session.advance(TeardownState.DISCONNECTING) is False
        assert session.advance(TeardownState.ACTIVE) is False
        assert session.advance(TeardownState.CLOSED) is True
        assert session.ended_at == ended_at
        assert session.advance(TeardownState.DISCONNECTING) is False
        assert session.teardown_state == TeardownState.CLOSED

    def test_call_sid_falls_back_to_stream_id(self):
        assert CallSession(stream_id="MZ1").call_sid == "MZ1"
        assert CallSession(stream_id="MZ1", call_id="CA1").call_sid == "CA1"

    def test_agent_ready_follows_socket(self):
        session = CallSession(stream_id="MZ1")
        assert session.agent_ready is False
        socket = _Socket()
        session.agent_transport = socket
        assert session.agent_ready is True
        socket.connected = False
        assert session.agent_ready is False

    def test_to_record(self):
        session = CallSession(stream_id="MZ1", call_id="CA1", caller_identity="+48123")
        session.set_conversation_id("conv_1")
        record = session.to_record()
        assert record.call_id == "CA1"
        assert record.stream_id == "MZ1"
        assert record.conversation_id == "conv_1"
        assert record.caller_identity == "+48123"


class TestSessionStore:

    def test_put_and_get(self):
        store = SessionStore()
        session = CallSession(stream_id="MZ1", call_id="CA1")
        store.put("MZ1", session)
        assert store.get("MZ1") is session
        assert store.get_by_call_id("CA1") is session
        assert store.active_count == 1

    def test_duplicate_put_raises(self):
        store = SessionStore()
        store.put("MZ1", CallSession(stream_id="MZ1"))
        with pytest.raises(DuplicateSessionError):
            store.put("MZ1", CallSession(stream_id="MZ1"))
        assert store.active_count == 1

    def test_remove_keeps_record(self):
        store = SessionStore()
        session = CallSession(stream_id="MZ1", call_id="CA1")
        store.put("MZ1", session)
        session.set_conversation_id("conv_1")
        session.advance(TeardownState.CLOSED)

        assert store.remove("MZ1") is session
        assert store.get("MZ1") is None
        assert store.remove("MZ1") is None

        record = store.record("CA1")
        assert record is not None
        assert record.conversation_id == "conv_1"
        assert record.ended_at is not None

    def test_record_prefers_live_session(self):
        store = SessionStore()
        session = CallSession(stream_id="MZ1", call_id="CA1")
        store.put("MZ1", session)
        session.set_conversation_id("conv_live")
        assert store.record("CA1").conversation_id == "conv_live"

    def test_unknown_record(self):
        assert SessionStore().record("CA404") is None

    def test_retained_records_are_bounded(self):
        store = SessionStore(retained_records=2)
        for i in range(3):
            store.put(f"MZ{i}", CallSession(stream_id=f"MZ{i}", call_id=f"CA{i}"))
            store.remove(f"MZ{i}")
        assert store.record("CA0") is None
        assert store.record("CA1") is not None
        assert store.record("CA2") is not None

    def test_all_sessions(self):
        store = SessionStore()
        store.put("MZ1", CallSession(stream_id="MZ1"))
        store.put("MZ2", CallSession(stream_id="MZ2"))
        assert {s.stream_id for s in store.all_sessions} == {"MZ1", "MZ2"}
