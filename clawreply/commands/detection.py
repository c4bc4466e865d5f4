"""Cheap check for whether a message carries any control command."""

from __future__ import annotations

import re

CONTROL_COMMAND_TOKENS = (
    "status",
    "help",
    "thinking",
    "think",
    "t",
    "verbose",
    "v",
    "elevated",
    "elev",
    "model",
    "queue",
    "activation",
    "send",
    "restart",
    "reset",
    "new",
    "compact",
)

CONTROL_COMMAND_RE = re.compile(
    r"(?:^|\s)/(?:" + "|".join(CONTROL_COMMAND_TOKENS) + r")(?=$|\s|:)",
    re.IGNORECASE,
)

CONTROL_COMMAND_EXACT = frozenset(
    {
        "/help",
        "/status",
        "/restart",
        "/activation",
        "/send",
        "/reset",
        "/new",
        "/compact",
    }
)


def has_control_command(text: str | None) -> bool:
    """True if the text is, or contains, a recognized slash command or directive."""
    if not text:
        return False
    trimmed = text.strip()
    if not trimmed:
        return False
    if trimmed.lower() in CONTROL_COMMAND_EXACT:
        return True
    return CONTROL_COMMAND_RE.search(text) is not None
