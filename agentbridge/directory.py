"""Caller directory lookup.

The directory answers one question: is this phone number known, and if so,
what is its context record? Any non-200 answer, or no answer at all, means
"unauthorized" as far as the bridge is concerned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import aiohttp
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def _stringify(value: Any) -> Any:
    # Directory workflows send ids and names as numbers as often as strings
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class Debtor(BaseModel):
    model_config = ConfigDict(extra="allow")

    first_name: str = ""
    last_name: str = ""

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _stringify(value)


class Case(BaseModel):
    model_config = ConfigDict(extra="allow")

    case_number: str = ""
    # Smallest currency unit (1000 == 10.00 PLN)
    debt_amount: int | float | str = 0
    currency: str = ""
    case_description: str = ""

    @field_validator("case_number", "currency", "case_description", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        return _stringify(value)


class ContextRecord(BaseModel):
    """Caller-specific data used to personalise the agent's prompt."""

    model_config = ConfigDict(extra="allow")

    debtor: Debtor = Field(default_factory=Debtor)
    case: Case = Field(default_factory=Case)

    @property
    def full_name(self) -> str:
        return f"{self.debtor.first_name} {self.debtor.last_name}".strip()


@dataclass
class AuthorizationResult:
    authorized: bool
    record: ContextRecord | None = None


class DirectoryClient:
    """Looks callers up by phone number over HTTP."""

    def __init__(self, lookup_url: str, timeout: float = 10.0) -> None:
        self.lookup_url = lookup_url
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Content-Type": "application/json"},
            )
        return self._session

    async def check_caller(self, phone: str) -> AuthorizationResult:
        """POST ``{"phone": phone}`` to the directory.

        Returns an authorized result carrying the parsed record on HTTP 200,
        and an unauthorized one for anything else.
        """
        if not self.lookup_url:
            logger.warning("Directory lookup URL not configured; treating caller as unauthorized")
            return AuthorizationResult(authorized=False)

        try:
            session = await self._get_session()
            async with session.post(self.lookup_url, json={"phone": phone}) as resp:
                if resp.status != 200:
                    logger.info(f"[Auth] Caller {phone} not authorized (status={resp.status})")
                    return AuthorizationResult(authorized=False)
                data: Any = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"[Auth] Error checking caller {phone}: {e}")
            return AuthorizationResult(authorized=False)

        return AuthorizationResult(authorized=True, record=parse_context_record(data))

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()


def parse_context_record(data: Any) -> ContextRecord | None:
    """Build a ContextRecord from a directory response body.

    Some directory workflows wrap the record in a single-element list.
    """
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None
    try:
        return ContextRecord.model_validate(data)
    except ValidationError as e:
        logger.warning(f"[Auth] Ignoring malformed context record: {e}")
        return None
