"""Plain-word abort triggers."""

from __future__ import annotations

ABORT_TRIGGERS = frozenset({"stop", "esc", "abort", "wait", "exit"})


def is_abort_trigger(text: str | None) -> bool:
    if not text:
        return False
    return text.strip().lower() in ABORT_TRIGGERS
