"""Twilio Media Streams WebSocket serializer.

Translates between Twilio's Media Streams WebSocket protocol and the internal
event vocabulary. Audio is base64-encoded mu-law and is passed through as
text: it is never decoded here.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import json

from agentbridge.core.events import Media, Start, Stop, TelephonyEvent, TelephonyUnknown
from agentbridge.serializers.base import BaseSerializer
from agentbridge.telephony import hangup_twiml, reject_twiml


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams WebSocket protocol.

    Twilio sends JSON messages with an ``event`` field that indicates the
    message type.

    State kept across the lifetime of a single stream:
        stream_sid: The unique identifier for the media stream.
        call_sid:   The Twilio Call SID associated with this stream.
    """

    def __init__(self) -> None:
        self.stream_sid: str = ""
        self.call_sid: str = ""

    @property
    def name(self) -> str:
        return "twilio"

    # ------------------------------------------------------------------
    # Deserialization (Twilio -> events)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> TelephonyEvent:
        """Parse a Twilio Media Streams message.

        Message types handled:
            * ``start`` -- stream metadata; produces :class:`Start`.
            * ``media`` -- audio payload; produces :class:`Media`.
            * ``stop``  -- stream ended; produces :class:`Stop`.

        Everything else (``connected``, ``mark``, ``dtmf``...) is surfaced as
        :class:`TelephonyUnknown`.
        """
        msg = self._parse_message(raw)
        event_type = self._require(msg, "event", "frame")

        if event_type == "start":
            return self._handle_start(msg)

        if event_type == "media":
            media = self._require(msg, "media", "frame")
            return self._build(Media, payload=self._require(media, "payload", "media"))

        if event_type == "stop":
            return Stop()

        return TelephonyUnknown(raw_type=str(event_type))

    def _handle_start(self, msg: dict) -> Start:
        start_data = self._require(msg, "start", "frame")
        stream_sid = self._require(start_data, "streamSid", "start")
        call_sid = start_data.get("callSid") or ""

        custom_params = start_data.get("customParameters") or {}
        if not isinstance(custom_params, dict):
            custom_params = {}

        # Inbound streams carry the caller as caller_phone, outbound as the
        # dialed number.
        caller = custom_params.get("caller_phone") or custom_params.get("number") or "Unknown"

        event = self._build(
            Start,
            stream_id=stream_sid,
            call_id=call_sid,
            caller_identity=caller,
            custom_params=custom_params,
        )
        # Outgoing frames stay addressed to the first stream
        if not self.stream_sid:
            self.stream_sid = event.stream_id
            self.call_sid = event.call_id
        return event

    # ------------------------------------------------------------------
    # Outgoing frames (bridge -> Twilio)
    # ------------------------------------------------------------------

    def build_media_message(self, payload: str) -> str:
        """Build a ``media`` message carrying agent audio to the caller."""
        return json.dumps(
            {
                "event": "media",
                "streamSid": self.stream_sid,
                "media": {"payload": payload},
            }
        )

    def build_clear_message(self) -> str:
        """Build a Twilio ``clear`` control message.

        Instructs Twilio to discard any buffered audio that has not yet
        been played to the caller. Used for barge-in and on teardown.
        """
        return json.dumps({"event": "clear", "streamSid": self.stream_sid})

    def build_mark_done_message(self) -> str:
        return json.dumps({"event": "mark_done", "streamSid": self.stream_sid})

    def build_hangup_message(self) -> str:
        """Build the inline TwiML directive that hangs the call up."""
        return json.dumps(
            {
                "event": "twiml",
                "streamSid": self.stream_sid,
                "twiml": hangup_twiml(),
            }
        )

    def build_reject_message(self, text: str) -> str:
        """Build an inline TwiML directive that apologises, then hangs up."""
        return json.dumps(
            {
                "event": "twiml",
                "streamSid": self.stream_sid,
                "twiml": reject_twiml(text),
            }
        )
