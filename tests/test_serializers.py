"""Tests for agentbridge serializers."""

import json

import pytest

from agentbridge.core.events import (
    AgentAudio,
    AgentEndOfConversation,
    AgentInterruption,
    AgentPing,
    AgentSessionMetadata,
    AgentUnknown,
    EventType,
    Media,
    Start,
    Stop,
    TelephonyUnknown,
)
from agentbridge.core.exceptions import DecodeError
from agentbridge.serializers.base import BaseSerializer
from agentbridge.serializers.elevenlabs import ElevenLabsSerializer
from agentbridge.serializers.registry import SerializerRegistry
from agentbridge.serializers.twilio import TwilioSerializer


# ==========================================================================
# Twilio Serializer Tests
# ==========================================================================


class TestTwilioSerializer:

    @pytest.fixture
    def serializer(self):
        return TwilioSerializer()

    def test_start_event(self, serializer):
        msg = {
            "event": "start",
            "start": {
                "streamSid": "MZ123",
                "callSid": "CA456",
                "accountSid": "AC789",
                "customParameters": {"caller_phone": "+48123456789"},
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
            },
        }
        event = serializer.deserialize(msg)
        assert isinstance(event, Start)
        assert event.stream_id == "MZ123"
        assert event.call_id == "CA456"
        assert event.caller_identity == "+48123456789"
        assert serializer.stream_sid == "MZ123"
        assert serializer.call_sid == "CA456"

    def test_start_outbound_uses_number(self, serializer):
        msg = {
            "event": "start",
            "start": {
                "streamSid": "MZ1",
                "customParameters": {"number": "+48500100200", "prompt": "Be brief"},
            },
        }
        event = serializer.deserialize(json.dumps(msg))
        assert event.caller_identity == "+48500100200"
        assert event.call_id == ""
        assert event.custom_params["prompt"] == "Be brief"

    def test_start_without_caller_is_unknown(self, serializer):
        event = serializer.deserialize({"event": "start", "start": {"streamSid": "MZ1"}})
        assert event.caller_identity == "Unknown"
        assert event.custom_params == {}

    def test_second_start_keeps_addressing(self, serializer):
        serializer.deserialize({"event": "start", "start": {"streamSid": "MZ1", "callSid": "CA1"}})
        event = serializer.deserialize({"event": "start", "start": {"streamSid": "MZ2"}})
        assert event.stream_id == "MZ2"
        assert serializer.stream_sid == "MZ1"
        assert serializer.call_sid == "CA1"

    def test_start_without_stream_sid_raises(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"event": "start", "start": {"callSid": "CA1"}})

    def test_media_event_keeps_payload_text(self, serializer):
        msg = json.dumps({"event": "media", "streamSid": "MZ1", "media": {"payload": "QUJD"}})
        event = serializer.deserialize(msg)
        assert isinstance(event, Media)
        assert event.payload == "QUJD"
        assert event.event_type == EventType.MEDIA

    def test_media_without_payload_raises(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"event": "media", "media": {}})

    def test_stop_event(self, serializer):
        assert isinstance(serializer.deserialize({"event": "stop", "streamSid": "MZ1"}), Stop)

    def test_unknown_event(self, serializer):
        event = serializer.deserialize({"event": "connected", "protocol": "Call"})
        assert isinstance(event, TelephonyUnknown)
        assert event.raw_type == "connected"

    def test_bytes_frame(self, serializer):
        event = serializer.deserialize(b'{"event": "stop"}')
        assert isinstance(event, Stop)

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"streamSid": "MZ1"}',
            b"\xff\xfe",
            {"event": "start", "start": {"streamSid": 123}},
            {"event": "media", "media": {"payload": {"x": 1}}},
        ],
    )
    def test_malformed_frames_raise(self, serializer, raw):
        with pytest.raises(DecodeError):
            serializer.deserialize(raw)

    def test_wrongly_typed_start_leaves_addressing_unset(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"event": "start", "start": {"streamSid": 123, "callSid": "CA1"}})
        assert serializer.stream_sid == ""
        assert serializer.call_sid == ""

    def test_build_media_message(self, serializer):
        serializer.stream_sid = "MZ123"
        parsed = json.loads(serializer.build_media_message("QUJD"))
        assert parsed == {"event": "media", "streamSid": "MZ123", "media": {"payload": "QUJD"}}

    def test_build_control_messages(self, serializer):
        serializer.stream_sid = "MZ123"
        assert json.loads(serializer.build_clear_message()) == {"event": "clear", "streamSid": "MZ123"}
        assert json.loads(serializer.build_mark_done_message()) == {
            "event": "mark_done",
            "streamSid": "MZ123",
        }

    def test_build_hangup_message(self, serializer):
        serializer.stream_sid = "MZ123"
        parsed = json.loads(serializer.build_hangup_message())
        assert parsed["event"] == "twiml"
        assert parsed["streamSid"] == "MZ123"
        assert parsed["twiml"].startswith("<Response>")
        assert "<Hangup" in parsed["twiml"]

    def test_build_reject_message(self, serializer):
        serializer.stream_sid = "MZ123"
        parsed = json.loads(serializer.build_reject_message("Go away."))
        assert "<Say>Go away.</Say>" in parsed["twiml"]
        assert "<Hangup" in parsed["twiml"]

    def test_properties(self, serializer):
        assert serializer.name == "twilio"


# ==========================================================================
# ElevenLabs Serializer Tests
# ==========================================================================


class TestElevenLabsSerializer:

    @pytest.fixture
    def serializer(self):
        return ElevenLabsSerializer()

    def test_audio_event(self, serializer):
        event = serializer.deserialize({"type": "audio", "audio_event": {"audio_base_64": "QUJD"}})
        assert isinstance(event, AgentAudio)
        assert event.payload == "QUJD"

    def test_audio_chunk_shape(self, serializer):
        event = serializer.deserialize({"type": "audio", "audio": {"chunk": "REVG"}})
        assert event.payload == "REVG"

    def test_audio_without_payload(self, serializer):
        event = serializer.deserialize({"type": "audio"})
        assert isinstance(event, AgentAudio)
        assert event.payload == ""

    def test_interruption(self, serializer):
        assert isinstance(serializer.deserialize({"type": "interruption"}), AgentInterruption)

    def test_ping(self, serializer):
        event = serializer.deserialize({"type": "ping", "ping_event": {"event_id": 7}})
        assert isinstance(event, AgentPing)
        assert event.event_id == 7

    def test_ping_without_event_id_raises(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"type": "ping", "ping_event": {}})

    def test_end_of_conversation(self, serializer):
        event = serializer.deserialize('{"type": "end_of_conversation"}')
        assert isinstance(event, AgentEndOfConversation)

    def test_session_metadata(self, serializer):
        event = serializer.deserialize({
            "type": "conversation_initiation_metadata",
            "conversation_initiation_metadata_event": {"conversation_id": "conv_1"},
        })
        assert isinstance(event, AgentSessionMetadata)
        assert event.conversation_id == "conv_1"

    def test_session_metadata_without_id_raises(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"type": "conversation_initiation_metadata"})

    def test_unknown_type(self, serializer):
        event = serializer.deserialize({"type": "agent_response", "agent_response_event": {}})
        assert isinstance(event, AgentUnknown)
        assert event.raw_type == "agent_response"

    def test_missing_type_raises(self, serializer):
        with pytest.raises(DecodeError):
            serializer.deserialize({"audio_event": {}})

    @pytest.mark.parametrize(
        "raw",
        [
            {"type": "audio", "audio_event": {"audio_base_64": {"x": 1}}},
            {"type": "audio", "audio": {"chunk": [1, 2]}},
            {"type": "conversation_initiation_metadata", "conversation_initiation_metadata_event": []},
        ],
    )
    def test_wrongly_typed_frames_raise(self, serializer, raw):
        with pytest.raises(DecodeError):
            serializer.deserialize(raw)

    def test_outgoing_frames(self, serializer):
        assert json.loads(serializer.build_user_audio_message("QUJD")) == {"user_audio_chunk": "QUJD"}
        assert json.loads(serializer.build_pong_message(7)) == {"type": "pong", "event_id": 7}
        assert json.loads(serializer.build_end_conversation_message()) == {"type": "end_conversation"}

    def test_properties(self, serializer):
        assert serializer.name == "elevenlabs"


# ==========================================================================
# Registry Tests
# ==========================================================================


class TestSerializerRegistry:

    def test_available(self):
        assert SerializerRegistry().available == ["elevenlabs", "twilio"]

    def test_create(self):
        registry = SerializerRegistry()
        assert isinstance(registry.create("twilio"), TwilioSerializer)
        assert isinstance(registry.create("elevenlabs"), ElevenLabsSerializer)

    def test_create_returns_fresh_instances(self):
        registry = SerializerRegistry()
        assert registry.create("twilio") is not registry.create("twilio")

    def test_unknown_raises(self):
        with pytest.raises(KeyError):
            SerializerRegistry().get("nonexistent")

    def test_register_custom(self):
        class MySerializer(BaseSerializer):
            @property
            def name(self):
                return "mine"

            def deserialize(self, raw):
                return Stop()

        registry = SerializerRegistry()
        registry.register("mine", MySerializer)
        assert "mine" in registry.available
        assert registry.create("mine").name == "mine"

    def test_register_non_serializer_raises(self):
        with pytest.raises(TypeError):
            SerializerRegistry().register("bad", dict)
