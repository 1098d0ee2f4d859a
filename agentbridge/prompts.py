"""Persona prompt rendering for the agent session."""

from __future__ import annotations

from typing import Any

from agentbridge.config import FlowConfig
from agentbridge.directory import ContextRecord


class _Defaults(dict):
    """format_map() mapping that renders unknown placeholders as empty."""

    def __missing__(self, key: str) -> str:
        return ""


class PromptBuilder:
    """Renders one flow's prompt, greeting and dynamic variables.

    Templates use ``str.format`` placeholders. Available fields:
    ``caller_name``, ``first_name``, ``last_name``, ``case_number``,
    ``debt_amount`` (amount and currency, e.g. ``"1000 PLN"``),
    ``caller_phone``, ``case_description`` and ``custom_prompt`` (the
    free-text prompt supplied when an outbound call was triggered).
    """

    def __init__(self, flow: FlowConfig) -> None:
        self.flow = flow

    @staticmethod
    def variables(record: ContextRecord, caller_phone: str) -> dict[str, str]:
        """Dynamic variables the agent can reference mid-conversation."""
        return {
            "caller_phone": caller_phone,
            "caller_name": record.full_name,
            "case_number": record.case.case_number,
            "debt_amount": f"{record.case.debt_amount} {record.case.currency}".strip(),
            "case_description": record.case.case_description,
        }

    def _fields(
        self, record: ContextRecord, caller_phone: str, custom_params: dict[str, Any]
    ) -> _Defaults:
        fields = _Defaults(self.variables(record, caller_phone))
        fields["first_name"] = record.debtor.first_name
        fields["last_name"] = record.debtor.last_name
        fields["custom_prompt"] = custom_params.get("prompt") or ""
        return fields

    def prompt(
        self,
        record: ContextRecord | None,
        caller_phone: str,
        custom_params: dict[str, Any],
    ) -> str:
        if record is None:
            return custom_params.get("prompt") or self.flow.generic_prompt
        fields = self._fields(record, caller_phone, custom_params)
        return self.flow.prompt_template.format_map(fields).strip()

    def first_message(
        self,
        record: ContextRecord | None,
        caller_phone: str,
        custom_params: dict[str, Any],
    ) -> str:
        if record is None:
            return self.flow.generic_first_message
        fields = self._fields(record, caller_phone, custom_params)
        return self.flow.first_message_template.format_map(fields)
