"""Ambient send policy evaluation."""

from __future__ import annotations

from typing import Literal

from clawreply.config.schema import Config
from clawreply.session.store import SessionEntry

SendPolicy = Literal["allow", "deny"]


def normalize_send_policy(raw: str | None) -> SendPolicy | None:
    value = (raw or "").strip().lower()
    if value in {"allow", "on"}:
        return "allow"
    if value in {"deny", "off"}:
        return "deny"
    return None


def resolve_send_policy(
    config: Config,
    entry: SessionEntry | None = None,
    session_key: str | None = None,
    surface: str | None = None,
    chat_type: str | None = None,
) -> SendPolicy:
    """
    Decide whether replies for a session may be sent.

    A per-session override wins. Otherwise rules are evaluated top-down: any
    matching deny rule denies, any matching allow rule allows, and the
    configured default applies when nothing matched.
    """
    override = normalize_send_policy(entry.send_policy if entry else None)
    if override:
        return override

    policy = config.session.send_policy
    surface_value = (surface or (entry.surface if entry else None) or "").strip().lower()
    chat_type_value = (chat_type or (entry.chat_type if entry else None) or "").strip().lower()
    key = session_key or ""

    allowed_match = False
    for rule in policy.rules:
        match = rule.match
        if match.surface and match.surface.strip().lower() != surface_value:
            continue
        if match.chat_type and match.chat_type.strip().lower() != chat_type_value:
            continue
        if match.key_prefix and not key.startswith(match.key_prefix):
            continue
        if rule.action == "deny":
            return "deny"
        allowed_match = True

    if allowed_match:
        return "allow"
    return normalize_send_policy(policy.default) or "allow"
