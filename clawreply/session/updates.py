"""State transitions applied to session entries by control commands."""

from __future__ import annotations

from typing import Callable

from loguru import logger

from clawreply.session.store import SessionEntry, SessionStore


def apply_group_activation(mode: str) -> Callable[[SessionEntry], None]:
    def _mutate(entry: SessionEntry) -> None:
        entry.group_activation = mode
        entry.group_activation_needs_system_intro = True

    return _mutate


def apply_send_policy(mode: str) -> Callable[[SessionEntry], None]:
    """`inherit` clears the override; `allow`/`deny` set it."""

    def _mutate(entry: SessionEntry) -> None:
        entry.send_policy = None if mode == "inherit" else mode

    return _mutate


def mark_aborted(entry: SessionEntry) -> None:
    entry.aborted_last_run = True


def _bump_compaction(entry: SessionEntry) -> None:
    entry.compaction_count = max(0, int(entry.compaction_count or 0)) + 1


async def increment_compaction_count(
    store: SessionStore,
    session_key: str | None,
) -> int | None:
    """
    Increment the compaction counter for a session and persist it.

    Returns:
        The new count, or None when the session has no entry.
    """
    updated = await store.update_entry(session_key, _bump_compaction)
    if updated is None:
        return None
    logger.info(f"Session {session_key}: compaction count now {updated.compaction_count}")
    return updated.compaction_count


class AbortMemory:
    """In-process abort flags for conversations without a persisted entry."""

    def __init__(self) -> None:
        self._flags: dict[str, bool] = {}

    def set(self, key: str, value: bool = True) -> None:
        self._flags[key] = value

    def get(self, key: str | None) -> bool:
        if not key:
            return False
        return self._flags.get(key, False)

    def clear(self, key: str) -> None:
        self._flags.pop(key, None)
