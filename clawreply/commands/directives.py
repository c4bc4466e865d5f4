"""Inline directives that may accompany ordinary message text."""

from __future__ import annotations

import re
from dataclasses import dataclass

_STATUS_DIRECTIVE_RE = re.compile(r"(?:^|\s)/status(?=$|\s|:)", re.IGNORECASE)


@dataclass
class InlineDirectives:
    cleaned: str = ""
    has_status_directive: bool = False


def parse_inline_directives(body: str) -> InlineDirectives:
    """Detect and strip an inline `/status` directive."""
    text = body or ""
    if not _STATUS_DIRECTIVE_RE.search(text):
        return InlineDirectives(cleaned=text.strip())
    cleaned = _STATUS_DIRECTIVE_RE.sub(" ", text)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return InlineDirectives(cleaned=cleaned, has_status_directive=True)
