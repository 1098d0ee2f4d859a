"""Built-in HTTP/WebSocket server for agentbridge.

Provides a FastAPI application that answers Twilio's call webhooks with TwiML,
places outbound calls, accepts the media-stream WebSockets for both
directions and exposes health, status and transcript lookup endpoints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlencode

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response
from fastapi.websockets import WebSocketState
from loguru import logger
from pydantic import BaseModel

from agentbridge.bridge import AgentBridge
from agentbridge.config import BridgeConfig, load_config
from agentbridge.core.events import Direction
from agentbridge.core.exceptions import CallPlacementError, ConfigurationError
from agentbridge.telephony import TwilioCallPlacer, reject_twiml, stream_twiml
from agentbridge.transports.base import BaseTransport, TransportClosed


class OutboundCallRequest(BaseModel):
    number: str = ""
    prompt: str = ""


def create_app(
    config: BridgeConfig | dict | str,
    bridge: AgentBridge | None = None,
    call_placer: TwilioCallPlacer | None = None,
) -> FastAPI:
    """Create a FastAPI application serving the bridge.

    Args:
        config: Bridge configuration (YAML path, dict, or BridgeConfig).
        bridge: Pre-built bridge (tests inject fakes here).
        call_placer: Outbound call client; built from ``config.twilio`` on
            first use when omitted.
    """
    bridge_config = load_config(config)
    bridge = bridge or AgentBridge(bridge_config)
    placer: dict[str, TwilioCallPlacer | None] = {"client": call_placer}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await bridge.close()

    app = FastAPI(
        title="agentbridge",
        description="Telephony to conversational AI call bridge",
        version="0.1.0",
        lifespan=lifespan,
    )

    def public_host(request: Request) -> str:
        return bridge_config.server.public_host or request.headers.get("host", "localhost")

    def get_placer() -> TwilioCallPlacer:
        if placer["client"] is None:
            twilio = bridge_config.twilio
            placer["client"] = TwilioCallPlacer(
                twilio.account_sid, twilio.auth_token, twilio.phone_number
            )
        return placer["client"]

    @app.get("/health")
    async def health():
        return JSONResponse({"status": "ok", "active_calls": bridge.sessions.active_count})

    @app.get("/status")
    async def status():
        sessions = []
        for s in bridge.sessions.all_sessions:
            sessions.append({
                "stream_id": s.stream_id,
                "call_id": s.call_sid,
                "direction": s.direction.value,
                "caller": s.caller_identity,
                "conversation_id": s.conversation_id,
                "state": s.teardown_state.name,
                "agent_connected": s.agent_ready,
                "duration_ms": s.duration_ms,
            })
        return JSONResponse({"active_calls": bridge.sessions.active_count, "sessions": sessions})

    @app.api_route("/incoming-call", methods=["GET", "POST"])
    async def incoming_call(request: Request):
        params: dict[str, Any] = dict(request.query_params)
        if request.method == "POST":
            params.update(await request.form())
        caller = str(params.get("From", ""))
        logger.info(f"[Twilio] Incoming call from: {caller}")

        flow = bridge_config.flows.inbound
        result = await bridge.directories[Direction.INBOUND].check_caller(caller)
        if flow.require_authorization and not result.authorized:
            twiml = reject_twiml(flow.reject_message, xml_declaration=True)
        else:
            twiml = stream_twiml(
                f"wss://{public_host(request)}{bridge_config.server.inbound_path}",
                {"caller_phone": caller},
            )
        return Response(content=twiml, media_type="text/xml")

    @app.post("/outbound-call")
    async def outbound_call(body: OutboundCallRequest, request: Request):
        if not body.number:
            return JSONResponse({"error": "Phone number is required"}, status_code=400)

        query = urlencode({"prompt": body.prompt, "number": body.number})
        callback_url = f"https://{public_host(request)}/outbound-call-twiml?{query}"
        try:
            call_sid = await get_placer().place_call(None, body.number, callback_url)
        except (CallPlacementError, ConfigurationError) as e:
            logger.error(f"Error initiating outbound call: {e}")
            return JSONResponse(
                {"success": False, "error": "Failed to initiate call"}, status_code=500
            )
        return JSONResponse({"success": True, "message": "Call initiated", "callSid": call_sid})

    @app.api_route("/outbound-call-twiml", methods=["GET", "POST"])
    async def outbound_call_twiml(request: Request, prompt: str = "", number: str = ""):
        twiml = stream_twiml(
            f"wss://{public_host(request)}{bridge_config.server.outbound_path}",
            {"prompt": prompt, "number": number},
        )
        return Response(content=twiml, media_type="text/xml")

    @app.get("/transcript/{call_sid}")
    async def transcript(call_sid: str):
        record = bridge.sessions.record(call_sid)
        if record is None:
            return JSONResponse({"error": "Transcript not found"}, status_code=404)
        return JSONResponse(record.model_dump(mode="json"))

    async def media_stream(websocket: WebSocket, direction: Direction) -> None:
        await websocket.accept()
        logger.info(f"Telephony WebSocket connected: {websocket.client}")
        transport = _FastAPIWebSocketAdapter(websocket)
        await bridge.handle_telephony_connection(transport, direction)

    @app.websocket(bridge_config.server.inbound_path)
    async def inbound_media_stream(websocket: WebSocket):
        await media_stream(websocket, Direction.INBOUND)

    @app.websocket(bridge_config.server.outbound_path)
    async def outbound_media_stream(websocket: WebSocket):
        await media_stream(websocket, Direction.OUTBOUND)

    return app


class _FastAPIWebSocketAdapter(BaseTransport):
    """Adapter to make FastAPI's WebSocket work with the transport interface."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._connected = True

    async def connect(self, **kwargs) -> None:
        pass  # Already accepted by FastAPI

    async def send(self, data: bytes | str) -> None:
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def recv(self) -> bytes | str:
        msg = await self._ws.receive()
        if msg["type"] == "websocket.disconnect":
            self._connected = False
            raise TransportClosed(msg.get("code", 1000), msg.get("reason") or "")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise RuntimeError("Unexpected WebSocket message type")

    async def disconnect(self) -> None:
        if not self.is_connected():
            return
        self._connected = False
        await self._ws.close()

    def is_connected(self) -> bool:
        return (
            self._connected
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )


def run_server(config: BridgeConfig | dict | str, host: str | None = None, port: int | None = None) -> None:
    """Run the agentbridge server with uvicorn.

    Args:
        config: Bridge configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    import uvicorn

    bridge_config = load_config(config)
    app = create_app(bridge_config)

    uvicorn.run(
        app,
        host=host or bridge_config.server.listen_host,
        port=port or bridge_config.server.listen_port,
    )
