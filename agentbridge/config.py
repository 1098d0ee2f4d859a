"""Configuration system for agentbridge.

Supports loading from YAML files, dicts, or programmatic construction via
Pydantic models. Secrets (API keys, auth tokens) are normally supplied by the
environment or a ``.env`` file and fill in whatever the file leaves empty.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentbridge.core.events import Direction


class ServerConfig(BaseModel):
    """HTTP/WebSocket host process settings."""

    listen_host: str = "0.0.0.0"
    listen_port: int = 8000
    # Host name Twilio should use to reach us (defaults to the request Host)
    public_host: str = ""
    inbound_path: str = "/media-stream"
    outbound_path: str = "/outbound-media-stream"


class AgentConfig(BaseModel):
    """Conversational AI (agent socket) settings."""

    api_key: str = ""
    agent_id: str = ""
    signed_url_endpoint: str = "https://api.elevenlabs.io/v1/convai/conversation/get_signed_url"


class TwilioConfig(BaseModel):
    """Credentials used to place outbound calls."""

    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""


class WebhookConfig(BaseModel):
    """Target for the end-of-call summary notification."""

    url: str = ""
    auth_token: str = ""
    # "Bearer" sends "Authorization: Bearer <token>"; empty sends the bare token
    auth_scheme: str = "Bearer"


INBOUND_PROMPT_TEMPLATE = """\
You are an inbound call agent. Context about the caller:
Name: {caller_name}
Case Number: {case_number}
Debt Amount: {debt_amount}
Caller Phone: {caller_phone}
Case Description: {case_description}

AVAILABLE TOOLS
1. debtor_panel: Send SMS with URL to debtor panel where all information about debt as well as secure link to make payment is available. Use it always when the debtor wants to pay.
   USE ELEVENLABS TOOLS TO SEND SMS - it is named debtor_panel

Important: All monetary values are stored as integers representing the smallest currency unit (e.g., 1000 represents 10.00 PLN)."""

OUTBOUND_PROMPT_TEMPLATE = """\
You are an outbound call agent. Context about the person you're calling:
Name: {caller_name}
Case Number: {case_number}
Debt Amount: {debt_amount}
Caller Phone: {caller_phone}
Case Description: {case_description}

{custom_prompt}"""


class FlowConfig(BaseModel):
    """Per-direction behaviour of the call bridge."""

    # Directory endpoint answering {"phone": ...} with the caller's context record
    lookup_url: str = ""
    # Inbound calls are refused when the lookup does not authorize the caller;
    # outbound calls fall back to the generic prompt unless this is set.
    require_authorization: bool = False
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    prompt_template: str = INBOUND_PROMPT_TEMPLATE
    first_message_template: str = (
        "Hi {first_name}! I see you're calling about your {case_number}. "
        "How can I help you today?"
    )
    generic_prompt: str = "You are a customer service representative"
    generic_first_message: str = "Hello, do you have a moment to talk?"
    reject_message: str = "Sorry, you are not authorized to make this call."


def _default_inbound_flow() -> FlowConfig:
    return FlowConfig(require_authorization=True)


def _default_outbound_flow() -> FlowConfig:
    return FlowConfig(
        require_authorization=False,
        webhook=WebhookConfig(auth_scheme=""),
        prompt_template=OUTBOUND_PROMPT_TEMPLATE,
        first_message_template=(
            "Hi {first_name}! I'm calling about your {case_number}. "
            "Do you have a moment to talk?"
        ),
    )


class FlowsConfig(BaseModel):
    inbound: FlowConfig = Field(default_factory=_default_inbound_flow)
    outbound: FlowConfig = Field(default_factory=_default_outbound_flow)

    def for_direction(self, direction: Direction) -> FlowConfig:
        return self.inbound if direction == Direction.INBOUND else self.outbound


class SessionConfig(BaseModel):
    """Per-call timing and bookkeeping."""

    # Delay between the hangup directive and closing the telephony socket
    close_grace_seconds: float = 1.0
    http_timeout_seconds: float = 10.0
    # How many ended-call records are kept for transcript lookups
    retained_records: int = 1000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class EnvSettings(BaseSettings):
    """Secrets read from the environment (or ``.env``)."""

    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    n8n_auth_token: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


class BridgeConfig(BaseModel):
    """Top-level agentbridge configuration.

    Examples:
        # Programmatic
        config = BridgeConfig(agent=AgentConfig(api_key="...", agent_id="..."))

        # From YAML
        config = BridgeConfig.from_yaml("bridge.yaml")

        # Shorthand
        config = BridgeConfig.from_dict({
            "listen_port": 8000,
            "agent_id": "agent_123",
            "inbound_lookup_url": "https://directory.example.com/check-user",
        })
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    twilio: TwilioConfig = Field(default_factory=TwilioConfig)
    flows: FlowsConfig = Field(default_factory=FlowsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BridgeConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format.
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> BridgeConfig:
        """Normalize and construct config from a raw dict."""
        flat_mappings = {
            "listen_host": ("server", "listen_host"),
            "listen_port": ("server", "listen_port"),
            "public_host": ("server", "public_host"),
            "agent_api_key": ("agent", "api_key"),
            "agent_id": ("agent", "agent_id"),
            "twilio_phone_number": ("twilio", "phone_number"),
            "close_grace_seconds": ("session", "close_grace_seconds"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                data.setdefault(section, {})
                data[section][nested_key] = data.pop(flat_key)

        for direction in ("inbound", "outbound"):
            for key in ("lookup_url", "webhook_url"):
                flat_key = f"{direction}_{key}"
                if flat_key not in data:
                    continue
                flow = data.setdefault("flows", {}).setdefault(direction, {})
                if key == "webhook_url":
                    flow.setdefault("webhook", {})["url"] = data.pop(flat_key)
                else:
                    flow[key] = data.pop(flat_key)

        # Keep each direction's defaults for whatever the file leaves out
        flows = data.get("flows")
        if isinstance(flows, dict):
            defaults = FlowsConfig()
            for direction in ("inbound", "outbound"):
                if isinstance(flows.get(direction), dict):
                    base = getattr(defaults, direction).model_dump()
                    override = flows[direction]
                    if isinstance(override.get("webhook"), dict):
                        base["webhook"].update(override.pop("webhook"))
                    base.update(override)
                    flows[direction] = base

        return cls(**data)

    def with_env(self, env: EnvSettings | None = None) -> BridgeConfig:
        """Return a copy with empty secret fields filled from the environment."""
        env = env or EnvSettings()
        config = self.model_copy(deep=True)

        config.agent.api_key = config.agent.api_key or env.elevenlabs_api_key
        config.agent.agent_id = config.agent.agent_id or env.elevenlabs_agent_id
        config.twilio.account_sid = config.twilio.account_sid or env.twilio_account_sid
        config.twilio.auth_token = config.twilio.auth_token or env.twilio_auth_token
        config.twilio.phone_number = config.twilio.phone_number or env.twilio_phone_number
        for flow in (config.flows.inbound, config.flows.outbound):
            flow.webhook.auth_token = flow.webhook.auth_token or env.n8n_auth_token
        return config

    def missing_secrets(self) -> list[str]:
        """Names of the secrets the bridge cannot run without."""
        missing = []
        if not self.agent.api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.agent.agent_id:
            missing.append("ELEVENLABS_AGENT_ID")
        return missing


def load_config(source: str | Path | dict[str, Any] | BridgeConfig) -> BridgeConfig:
    """Load a BridgeConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, or an existing BridgeConfig.

    Returns:
        A BridgeConfig instance.
    """
    if isinstance(source, BridgeConfig):
        return source
    if isinstance(source, dict):
        return BridgeConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if path.suffix in (".yaml", ".yml"):
            return BridgeConfig.from_yaml(path)
        raise ValueError(f"Unsupported config file type: {path}")
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `agentbridge init`
DEFAULT_CONFIG_YAML = """\
# agentbridge configuration
# Secrets can be left empty here and supplied through the environment:
#   ELEVENLABS_API_KEY, ELEVENLABS_AGENT_ID, TWILIO_ACCOUNT_SID,
#   TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER, N8N_AUTH_TOKEN

server:
  listen_host: 0.0.0.0
  listen_port: 8000
  inbound_path: /media-stream
  outbound_path: /outbound-media-stream

agent:
  agent_id: ""

flows:
  inbound:
    lookup_url: https://directory.example.com/webhook/check-user
    require_authorization: true
    webhook:
      url: https://hooks.example.com/webhook/inbound-calls
      auth_scheme: Bearer
  outbound:
    lookup_url: https://directory.example.com/webhook/check-user
    require_authorization: false
    webhook:
      url: https://hooks.example.com/webhook/outbound-calls
      auth_scheme: ""

session:
  close_grace_seconds: 1.0
  http_timeout_seconds: 10.0

logging:
  level: INFO
"""
