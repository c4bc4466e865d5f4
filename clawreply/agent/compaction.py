"""Compaction request/outcome types and the compactor call wrapper."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol

from loguru import logger


@dataclass
class CompactionRequest:
    """Everything the compactor needs to shrink one session transcript."""

    session_id: str
    session_key: str | None
    surface: str
    session_file: Path
    workspace_dir: Path
    provider: str
    model: str
    think_level: str | None = None
    custom_instructions: str | None = None
    owner_numbers: list[str] | None = None
    skills_snapshot: Any = None
    bash_elevated: dict[str, Any] = field(
        default_factory=lambda: {"enabled": False, "allowed": False, "default_level": "off"}
    )


@dataclass
class CompactionOutcome:
    """Result reported by a compactor."""

    ok: bool
    compacted: bool = False
    reason: str | None = None
    tokens_before: int | None = None
    tokens_after: int | None = None
    summary: str | None = None


class TranscriptCompactor(Protocol):
    async def compact(self, request: CompactionRequest) -> CompactionOutcome: ...


async def run_compaction(
    compactor: TranscriptCompactor,
    request: CompactionRequest,
) -> CompactionOutcome:
    """
    Invoke the compactor, turning any raised error into a failed outcome.

    The technical error is logged but never surfaced in the outcome reason.
    """
    try:
        return await compactor.compact(request)
    except Exception as e:
        logger.error(f"Compaction failed for session {request.session_id}: {e}")
        return CompactionOutcome(ok=False, compacted=False)


def compaction_label(outcome: CompactionOutcome, format_tokens: Callable[[int], str]) -> str:
    if not outcome.ok:
        return "Compaction failed"
    if not outcome.compacted:
        return "Compaction skipped"
    if outcome.tokens_before:
        return f"Compacted ({format_tokens(outcome.tokens_before)} before)"
    return "Compacted"
