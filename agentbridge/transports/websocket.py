"""WebSocket client transport for agentbridge.

The bridge connects out to the conversational agent as a client using the
``websockets`` library with asyncio.
"""

from __future__ import annotations

from typing import Any

import websockets.asyncio.client
from loguru import logger
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from agentbridge.transports.base import ABNORMAL_CLOSE_CODE, BaseTransport, TransportClosed


class WebSocketClientTransport(BaseTransport):
    """WebSocket client transport for connecting to a remote endpoint.

    Used for the agent-side connection: the bridge connects as a client to
    the one-time signed URL issued for each conversation.
    """

    def __init__(self, url: str | None = None, **ws_kwargs: Any) -> None:
        self._url = url
        self._ws: Any | None = None
        self._ws_kwargs = ws_kwargs

    async def connect(self, **kwargs) -> None:
        url = kwargs.get("url", self._url)
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url
        # Signed URLs embed a token; keep it out of the logs
        logger.info(f"Connecting to WebSocket: {url.split('?', 1)[0]}")
        self._ws = await websockets.asyncio.client.connect(url, **self._ws_kwargs)

    async def send(self, data: bytes | str) -> None:
        if not self._ws:
            raise RuntimeError("Not connected")
        await self._ws.send(data)

    async def recv(self) -> bytes | str:
        if not self._ws:
            raise TransportClosed()
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else ABNORMAL_CLOSE_CODE
            reason = e.rcvd.reason if e.rcvd else ""
            raise TransportClosed(code, reason) from e

    async def disconnect(self) -> None:
        if self._ws:
            await self._ws.close()
            logger.info("WebSocket client disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN
