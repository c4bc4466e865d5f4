"""Sender authorization for control commands."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from clawreply.commands.classifier import Command, CommandKind
from clawreply.config.schema import Config

# Surfaces whose allow list doubles as an owner list.
OWNER_SCOPED_SURFACES = frozenset({"whatsapp"})


def normalize_e164(value: str | None) -> str:
    """Canonical `+<digits>` form of a phone number (empty if no digits)."""
    text = (value or "").strip()
    if text.lower().startswith("whatsapp:"):
        text = text[len("whatsapp:"):]
    digits = re.sub(r"[^\d]", "", text)
    return f"+{digits}" if digits else ""


@dataclass
class CommandAuthorization:
    """Who sent the message and what they may do."""

    surface: str = ""
    is_owner_scoped_surface: bool = False
    owner_list: list[str] = field(default_factory=list)
    sender_id: str | None = None
    is_authorized_sender: bool = False
    is_owner: bool = False
    from_: str | None = None
    to: str | None = None


def resolve_command_authorization(
    config: Config,
    *,
    surface: str | None,
    sender: str | None,
    from_: str | None = None,
    to: str | None = None,
    command_authorized: bool = True,
) -> CommandAuthorization:
    """
    Work out authorization facts for one inbound message.

    Args:
        config: Loaded configuration (owner lists come from channel allow lists).
        surface: Transport surface name, e.g. "whatsapp" or "telegram".
        sender: Raw sender identity from the transport.
        from_: Conversation origin address, if any.
        to: Conversation destination address, if any.
        command_authorized: Upstream gate result (e.g. channel allow list).

    Returns:
        The resolved authorization.
    """
    surface_name = (surface or "").strip().lower()
    owner_scoped = surface_name in OWNER_SCOPED_SURFACES
    raw_allow = config.owner_allow_list(surface_name) if owner_scoped else []
    allow_all = any(str(item).strip() == "*" for item in raw_allow)
    owner_list: list[str] = []
    for item in raw_allow:
        normalized = normalize_e164(str(item)) if str(item).strip() != "*" else ""
        if normalized and normalized not in owner_list:
            owner_list.append(normalized)

    if owner_scoped:
        sender_id = normalize_e164(sender or from_) or None
    else:
        sender_id = (sender or "").strip() or None

    is_owner = bool(sender_id) and sender_id in owner_list
    if not owner_scoped or allow_all or not owner_list:
        is_authorized = command_authorized
    else:
        is_authorized = command_authorized and is_owner

    return CommandAuthorization(
        surface=surface_name,
        is_owner_scoped_surface=owner_scoped,
        owner_list=owner_list,
        sender_id=sender_id,
        is_authorized_sender=is_authorized,
        is_owner=is_owner,
        from_=from_,
        to=to,
    )


class AuthDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_REQUIRED = "not_required"


def authorize(command: Command, auth: CommandAuthorization) -> AuthDecision:
    """
    Decide whether the sender may run a command.

    Denials are logged here and must produce no reply.
    """
    if command.kind in (CommandKind.NONE, CommandKind.ABORT):
        return AuthDecision.NOT_REQUIRED

    if command.kind is CommandKind.ACTIVATION:
        allowed = auth.is_authorized_sender
        if allowed and auth.is_owner_scoped_surface and auth.owner_list:
            sender = normalize_e164(auth.sender_id)
            allowed = bool(sender) and sender in auth.owner_list
        if not allowed:
            logger.debug(
                f"Ignoring /activation from unauthorized sender in group: {auth.sender_id or '<unknown>'}"
            )
            return AuthDecision.DENY
        return AuthDecision.ALLOW

    if not auth.is_authorized_sender:
        logger.debug(
            f"Ignoring {command.token or '/' + command.kind.value} from unauthorized sender: "
            f"{auth.sender_id or '<unknown>'}"
        )
        return AuthDecision.DENY
    return AuthDecision.ALLOW
