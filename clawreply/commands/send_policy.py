"""`/send` command parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from clawreply.session.send_policy import normalize_send_policy

SendPolicyMode = Literal["allow", "deny", "inherit"]

_SEND_RE = re.compile(r"^/send\b(?:\s+([a-zA-Z]+))?", re.IGNORECASE)
_INHERIT_TOKENS = frozenset({"inherit", "default", "reset"})


@dataclass(frozen=True)
class SendPolicyCommand:
    has_command: bool
    mode: SendPolicyMode | None = None


def parse_send_policy_command(raw: str | None) -> SendPolicyCommand:
    if not raw:
        return SendPolicyCommand(has_command=False)
    trimmed = raw.strip()
    if not trimmed:
        return SendPolicyCommand(has_command=False)
    match = _SEND_RE.match(trimmed)
    if not match:
        return SendPolicyCommand(has_command=False)
    token = (match.group(1) or "").strip().lower()
    if not token:
        return SendPolicyCommand(has_command=True)
    if token in _INHERIT_TOKENS:
        return SendPolicyCommand(has_command=True, mode="inherit")
    return SendPolicyCommand(has_command=True, mode=normalize_send_policy(token))


def send_policy_label(mode: SendPolicyMode) -> str:
    if mode == "inherit":
        return "inherit"
    return "on" if mode == "allow" else "off"
