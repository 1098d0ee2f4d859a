"""End-of-call notification delivery.

Once a call with a known conversation id ends, a small summary is POSTed to a
webhook so downstream automation can fetch the transcript. Delivery is
at-most-once: a failure is reported to the caller and never retried.
"""

from __future__ import annotations

import asyncio

import aiohttp
from loguru import logger
from pydantic import BaseModel

from agentbridge.config import WebhookConfig
from agentbridge.core.exceptions import DeliveryError


class NotificationRecord(BaseModel):
    conversation_id: str
    phone_number: str
    call_sid: str


class NotificationDispatcher:
    """Single-shot webhook client for call summaries."""

    def __init__(self, webhook: WebhookConfig, timeout: float = 10.0) -> None:
        self.webhook = webhook
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._session

    def _auth_header(self) -> dict[str, str]:
        if not self.webhook.auth_token:
            return {}
        if self.webhook.auth_scheme:
            return {"Authorization": f"{self.webhook.auth_scheme} {self.webhook.auth_token}"}
        return {"Authorization": self.webhook.auth_token}

    async def dispatch(self, record: NotificationRecord) -> None:
        """POST the record to the webhook.

        Raises:
            DeliveryError: On a non-2xx response or a transport failure.
        """
        if not self.webhook.url:
            logger.warning(
                f"[Webhook] No webhook URL configured; dropping notification "
                f"for conversation {record.conversation_id}"
            )
            return

        payload = record.model_dump()
        logger.info(f"[Webhook] Sending payload: {payload}")

        try:
            session = await self._get_session()
            async with session.post(
                self.webhook.url,
                json=payload,
                headers=self._auth_header(),
            ) as resp:
                logger.info(f"[Webhook] Response status: {resp.status}")
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    logger.error(f"[Webhook] Error response: {body}")
                    raise DeliveryError(
                        f"Webhook returned {resp.status}", status=resp.status, body=body
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[Webhook] Error: {e}")
            raise DeliveryError(f"Webhook unreachable: {e}") from e

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
