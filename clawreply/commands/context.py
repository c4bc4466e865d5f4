"""Per-message command context."""

from __future__ import annotations

from dataclasses import dataclass, field

from clawreply.commands.auth import CommandAuthorization, resolve_command_authorization
from clawreply.commands.mentions import strip_mentions
from clawreply.config.schema import Config


@dataclass
class CommandContext:
    """Ephemeral facts about one inbound message, built before dispatch."""

    surface: str
    auth: CommandAuthorization
    raw_body_normalized: str
    command_body_normalized: str
    abort_key: str | None = None
    raw_body: str = ""
    mention_patterns: list[str] = field(default_factory=list)

    @property
    def is_authorized_sender(self) -> bool:
        return self.auth.is_authorized_sender

    @property
    def owner_list(self) -> list[str]:
        return self.auth.owner_list

    @property
    def sender_id(self) -> str | None:
        return self.auth.sender_id

    def strip_mentions(self, text: str) -> str:
        return strip_mentions(text, self.mention_patterns)


def build_command_context(
    config: Config,
    *,
    surface: str | None,
    sender: str | None,
    trigger_body_normalized: str,
    is_group: bool,
    session_key: str | None = None,
    raw_body: str | None = None,
    from_: str | None = None,
    to: str | None = None,
    command_authorized: bool = True,
) -> CommandContext:
    """
    Build the context the dispatcher runs against.

    Args:
        config: Loaded configuration.
        surface: Transport surface name.
        sender: Raw sender identity.
        trigger_body_normalized: Trimmed body with structural prefixes removed.
        is_group: Whether the conversation is a group chat.
        session_key: Session key, also used as the abort key when present.
        raw_body: Original message body, used for compaction instructions.
        from_: Conversation origin, abort key fallback.
        to: Conversation destination, second abort key fallback.
        command_authorized: Upstream authorization gate.
    """
    auth = resolve_command_authorization(
        config,
        surface=surface,
        sender=sender,
        from_=from_,
        to=to,
        command_authorized=command_authorized,
    )
    patterns = list(config.commands.mention_patterns)
    raw_normalized = (trigger_body_normalized or "").strip()
    command_body = strip_mentions(raw_normalized, patterns) if is_group else raw_normalized
    abort_key = session_key or from_ or to or None
    return CommandContext(
        surface=auth.surface,
        auth=auth,
        raw_body_normalized=raw_normalized,
        command_body_normalized=command_body,
        abort_key=abort_key,
        raw_body=raw_body if raw_body is not None else trigger_body_normalized,
        mention_patterns=patterns,
    )
