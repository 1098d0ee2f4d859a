"""Twilio REST client and TwiML builders.

Placing outbound calls is the only REST operation the host process needs;
the bridge itself only ever sends TwiML inline over the media stream.
"""

from __future__ import annotations

import asyncio
from functools import partial

from loguru import logger
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from agentbridge.core.exceptions import CallPlacementError, ConfigurationError


def hangup_twiml() -> str:
    """Minimal TwiML document that ends the call."""
    response = VoiceResponse()
    response.hangup()
    return response.to_xml(xml_declaration=False)


def reject_twiml(text: str, xml_declaration: bool = False) -> str:
    """TwiML that tells the caller they are refused, then hangs up."""
    response = VoiceResponse()
    response.say(text)
    response.hangup()
    return response.to_xml(xml_declaration=xml_declaration)


def stream_twiml(url: str, parameters: dict[str, str]) -> str:
    """TwiML that connects the call to a bidirectional media stream.

    Each entry of ``parameters`` becomes a ``<Parameter>`` that Twilio echoes
    back in the stream's ``start.customParameters``.
    """
    response = VoiceResponse()
    connect = Connect()
    stream = connect.stream(url=url)
    for name, value in parameters.items():
        stream.parameter(name=name, value=value)
    response.append(connect)
    return str(response)


class TwilioCallPlacer:
    """Places outbound voice calls via the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        if not account_sid or not auth_token:
            raise ConfigurationError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN are required")
        self.from_number = from_number
        self._client = Client(account_sid, auth_token)

    async def place_call(self, from_number: str | None, to_number: str, callback_url: str) -> str:
        """Dial ``to_number``; Twilio fetches call-control TwiML from ``callback_url``.

        ``from_number`` defaults to the configured caller id when empty.

        Returns:
            The Twilio call SID.

        Raises:
            CallPlacementError: If Twilio rejects the request.
        """
        loop = asyncio.get_running_loop()
        try:
            call = await loop.run_in_executor(
                None,
                partial(
                    self._client.calls.create,
                    from_=from_number or self.from_number,
                    to=to_number,
                    url=callback_url,
                ),
            )
        except Exception as exc:
            raise CallPlacementError("twilio", f"Failed to initiate call: {exc}") from exc

        logger.info(f"Outbound call placed: sid={call.sid} to={to_number}")
        return call.sid
