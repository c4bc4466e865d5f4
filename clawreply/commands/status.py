"""Plain-text help and status rendering."""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

from clawreply.session.store import SessionEntry


def _round_half_up(value: int | float, digits: int = 0) -> str:
    quantum = Decimal(1).scaleb(-digits)
    return str(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def format_token_count(value: int | float | None) -> str:
    if not value or value <= 0:
        return "0"
    if value >= 1_000_000:
        return f"{_round_half_up(value / 1_000_000, 1)}m"
    if value >= 1_000:
        return f"{_round_half_up(value / 1_000, 0 if value >= 10_000 else 1)}k"
    return _round_half_up(value)


def _format_usage(total: int | None, context: int | None) -> str:
    context_label = format_token_count(context) if context else "?"
    if total is None:
        return f"unknown/{context_label}"
    pct = f" ({min(999, int(_round_half_up(total * 100 / context)))}%)" if context else ""
    return f"{format_token_count(total)}/{context_label}{pct}"


def format_context_usage_short(total: int | None, context: int | None) -> str:
    """`Context 12k/200k (6%)`, with `unknown`/`?` for missing values."""
    return f"Context {_format_usage(total, context)}"


def entry_total_tokens(entry: SessionEntry | None) -> int | None:
    if entry is None:
        return None
    if entry.total_tokens is not None:
        total = entry.total_tokens
    else:
        total = int(entry.input_tokens or 0) + int(entry.output_tokens or 0)
    return total if total > 0 else None


def _format_age(updated_at_ms: int | None, now_ms: int | None = None) -> str:
    if not updated_at_ms:
        return "never"
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    seconds = max(0, (now - int(updated_at_ms)) // 1000)
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86_400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86_400}d ago"


def build_help_message() -> str:
    return "\n".join(
        [
            "ℹ️ Help",
            "Shortcuts: /new reset | /compact [instructions] | /restart relink",
            "Session: /status | /send on|off|inherit | /activation mention|always",
            "Options: /think <level> | /verbose on|off | /elevated on|off | /model <id>",
            "Say stop (or abort) to cancel the current reply.",
        ]
    )


@dataclass
class StatusInfo:
    """Inputs for the status message."""

    provider: str
    model: str
    context_tokens: int | None
    workspace_dir: Path
    session_key: str | None = None
    session_entry: SessionEntry | None = None
    store_path: Path | None = None
    group_activation: str | None = None
    think_level: str | None = None
    verbose_level: str | None = None
    send_policy: str | None = None


def build_status_message(info: StatusInfo, now_ms: int | None = None) -> str:
    entry = info.session_entry
    context = info.context_tokens or (entry.context_tokens if entry else None)
    lines = [
        "⚙️ Status",
        f"Model: {info.provider}/{info.model} • {format_context_usage_short(entry_total_tokens(entry), context)}",
        f"Workspace: {info.workspace_dir}",
    ]
    if info.session_key:
        updated = _format_age(entry.updated_at if entry else None, now_ms=now_ms)
        lines.append(f"Session: {info.session_key} • updated {updated}")
    if entry is not None:
        lines.append(f"Compactions: {entry.compaction_count}")
    options = [f"think {info.think_level or 'off'}", f"verbose {info.verbose_level or 'off'}"]
    if info.group_activation:
        options.append(f"activation {info.group_activation}")
    if info.send_policy:
        options.append(f"send {'on' if info.send_policy == 'allow' else 'off'}")
    lines.append("Options: " + " | ".join(options))
    if info.store_path:
        lines.append(f"Store: {info.store_path}")
    return "\n".join(lines)
