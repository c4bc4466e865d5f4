"""Short-lived system event lines surfaced to the agent on its next turn."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass

MAX_EVENTS = 20
DEFAULT_CHANNEL = "global"


@dataclass
class SystemEvent:
    text: str
    ts: float


class SystemEventQueue:
    """Per-session FIFO of system event lines, capped and de-duplicated."""

    def __init__(self, max_events: int = MAX_EVENTS):
        self.max_events = max(1, int(max_events))
        self._queues: dict[str, deque[SystemEvent]] = {}

    def enqueue(self, text: str, session_key: str | None = None) -> bool:
        """Add a line. Returns False when it was empty or repeats the last line."""
        cleaned = (text or "").strip()
        if not cleaned:
            return False
        key = session_key or DEFAULT_CHANNEL
        queue = self._queues.setdefault(key, deque(maxlen=self.max_events))
        if queue and queue[-1].text == cleaned:
            return False
        queue.append(SystemEvent(text=cleaned, ts=time.time()))
        return True

    def peek(self, session_key: str | None = None) -> list[str]:
        queue = self._queues.get(session_key or DEFAULT_CHANNEL)
        return [event.text for event in queue] if queue else []

    def drain(self, session_key: str | None = None) -> list[str]:
        queue = self._queues.pop(session_key or DEFAULT_CHANNEL, None)
        return [event.text for event in queue] if queue else []

    def has_events(self, session_key: str | None = None) -> bool:
        return bool(self._queues.get(session_key or DEFAULT_CHANNEL))
