"""Group activation mode parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

GroupActivationMode = Literal["mention", "always"]

_ACTIVATION_RE = re.compile(r"^/activation\b(?:\s+([a-zA-Z]+))?", re.IGNORECASE)


@dataclass(frozen=True)
class ActivationCommand:
    has_command: bool
    mode: GroupActivationMode | None = None


def normalize_group_activation(raw: str | None) -> GroupActivationMode | None:
    value = (raw or "").strip().lower()
    if value == "mention":
        return "mention"
    if value == "always":
        return "always"
    return None


def parse_activation_command(raw: str | None) -> ActivationCommand:
    """Parse `/activation [mention|always]`; an unknown mode still counts as the command."""
    if not raw:
        return ActivationCommand(has_command=False)
    trimmed = raw.strip()
    if not trimmed:
        return ActivationCommand(has_command=False)
    match = _ACTIVATION_RE.match(trimmed)
    if not match:
        return ActivationCommand(has_command=False)
    return ActivationCommand(has_command=True, mode=normalize_group_activation(match.group(1)))
