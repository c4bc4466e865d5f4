"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings


class WhatsAppConfig(BaseModel):
    """WhatsApp channel configuration."""
    enabled: bool = False
    allow_from: list[str] = Field(default_factory=list)  # Owner phone numbers (E.164), "*" allows anyone


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""
    enabled: bool = False
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs or usernames


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


class AgentDefaults(BaseModel):
    """Default agent configuration."""
    workspace: str = "~/.clawreply/workspace"
    provider: str = "anthropic"
    model: str = "claude-opus-4-5"
    context_tokens: int = Field(default=200_000, ge=1)
    thinking: Literal["off", "minimal", "low", "medium", "high"] = "off"
    verbose: Literal["off", "on"] = "off"

    @field_validator("thinking", mode="before")
    @classmethod
    def normalize_thinking(cls, value: str) -> str:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized:
                return normalized
        return "off"


class SendPolicyMatch(BaseModel):
    """Match clause for a send policy rule. Empty fields match anything."""

    model_config = ConfigDict(populate_by_name=True)

    surface: str | None = None
    chat_type: str | None = Field(default=None, alias="chatType")
    key_prefix: str | None = Field(default=None, alias="keyPrefix")


class SendPolicyRule(BaseModel):
    """A single allow/deny rule evaluated against a session."""

    action: Literal["allow", "deny"] = "allow"
    match: SendPolicyMatch = Field(default_factory=SendPolicyMatch)

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class SendPolicyConfig(BaseModel):
    """Ambient send policy applied when a session has no override."""

    default: Literal["allow", "deny"] = "allow"
    rules: list[SendPolicyRule] = Field(default_factory=list)


class SessionConfig(BaseModel):
    """Session store and group behavior."""

    store: str = "~/.clawreply/sessions/sessions.json"
    group_activation: Literal["mention", "always"] = "mention"
    send_policy: SendPolicyConfig = Field(default_factory=SendPolicyConfig)

    @field_validator("group_activation", mode="before")
    @classmethod
    def normalize_group_activation(cls, value: str) -> str:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized in {"mention", "always"}:
                return normalized
        return "mention"


class CommandsConfig(BaseModel):
    """Control command behavior."""

    compaction_wait_timeout_ms: int = Field(default=15_000, ge=0, le=600_000)
    fail_compaction_on_run_timeout: bool = False
    mention_patterns: list[str] = Field(default_factory=list)
    restart_label: str = "clawreply"


class AuditConfig(BaseModel):
    """Audit logging configuration."""
    enabled: bool = False
    level: str = "standard"  # "minimal" | "standard" | "verbose"
    path: str = "~/.clawreply/audit/commands.jsonl"


class Config(BaseSettings):
    """Root configuration for clawreply."""
    agent: AgentDefaults = Field(default_factory=AgentDefaults)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.agent.workspace).expanduser()

    @property
    def session_store_path(self) -> Path:
        """Get expanded session store path."""
        return Path(self.session.store).expanduser()

    def owner_allow_list(self, surface: str) -> list[str]:
        """Raw allow list for a surface that has an owner concept."""
        channel = getattr(self.channels, (surface or "").strip().lower(), None)
        if channel is None:
            return []
        return list(getattr(channel, "allow_from", []) or [])

    class Config:
        env_prefix = "CLAWREPLY_"
        env_nested_delimiter = "__"
