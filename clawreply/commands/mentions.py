"""Strip transport envelopes and bot mentions from message bodies."""

from __future__ import annotations

import re
from functools import lru_cache

from loguru import logger

# "[WhatsApp +1555 2026-01-01 10:00] ..." style envelopes added upstream.
_ENVELOPE_RE = re.compile(r"^\s*\[[^\]\n]{1,200}\]\s*")
# "Alice (+1555): /status" speaker prefixes in group transcripts.
_SPEAKER_RE = re.compile(r"^\s*[^\n:/]{1,80}:\s+(?=/)")


def strip_structural_prefixes(text: str) -> str:
    stripped = _ENVELOPE_RE.sub("", text or "", count=1)
    return _SPEAKER_RE.sub("", stripped, count=1)


@lru_cache(maxsize=64)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Ignoring invalid mention pattern {pattern!r}: {e}")
        return None


def strip_mentions(text: str, patterns: list[str] | tuple[str, ...]) -> str:
    """Remove every configured mention pattern and collapse whitespace."""
    result = text or ""
    for pattern in patterns:
        compiled = _compile(pattern)
        if compiled is not None:
            result = compiled.sub(" ", result)
    return re.sub(r"\s+", " ", result).strip()
