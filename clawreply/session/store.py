"""Persistent session entry store keyed by session key."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from loguru import logger


class SessionStoreError(RuntimeError):
    """Raised when the session store cannot be persisted."""


def now_ms() -> int:
    return int(time.time() * 1000)


_FIELD_KEYS: dict[str, str] = {
    "session_id": "sessionId",
    "updated_at": "updatedAt",
    "group_activation": "groupActivation",
    "group_activation_needs_system_intro": "groupActivationNeedsSystemIntro",
    "send_policy": "sendPolicy",
    "aborted_last_run": "abortedLastRun",
    "compaction_count": "compactionCount",
    "input_tokens": "inputTokens",
    "output_tokens": "outputTokens",
    "total_tokens": "totalTokens",
    "context_tokens": "contextTokens",
    "chat_type": "chatType",
    "surface": "surface",
    "skills_snapshot": "skillsSnapshot",
}


@dataclass
class SessionEntry:
    """Persisted state for one conversation."""

    session_id: str = ""
    updated_at: int = field(default_factory=now_ms)
    group_activation: str | None = None
    group_activation_needs_system_intro: bool = False
    send_policy: str | None = None  # None means "inherit"
    aborted_last_run: bool = False
    compaction_count: int = 0
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    context_tokens: int | None = None
    chat_type: str | None = None
    surface: str | None = None
    skills_snapshot: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        for attr, key in _FIELD_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionEntry":
        def _int(value: Any) -> int | None:
            if value is None:
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                return None

        known = set(_FIELD_KEYS.values())
        send_policy = str(data.get("sendPolicy") or "").strip().lower() or None
        if send_policy not in {None, "allow", "deny"}:
            send_policy = None
        return cls(
            session_id=str(data.get("sessionId") or ""),
            updated_at=_int(data.get("updatedAt")) or 0,
            group_activation=data.get("groupActivation") or None,
            group_activation_needs_system_intro=bool(data.get("groupActivationNeedsSystemIntro", False)),
            send_policy=send_policy,
            aborted_last_run=bool(data.get("abortedLastRun", False)),
            compaction_count=max(0, _int(data.get("compactionCount")) or 0),
            input_tokens=_int(data.get("inputTokens")),
            output_tokens=_int(data.get("outputTokens")),
            total_tokens=_int(data.get("totalTokens")),
            context_tokens=_int(data.get("contextTokens")),
            chat_type=data.get("chatType") or None,
            surface=data.get("surface") or None,
            skills_snapshot=data.get("skillsSnapshot"),
            extra={k: v for k, v in data.items() if k not in known},
        )


class SessionStore:
    """
    Map of session key to SessionEntry, persisted as a single JSON document.

    Every mutation rewrites the whole map. Writers for the same key are
    serialized with a per-key lock; whole-map writes are serialized with a
    store-wide lock.
    """

    def __init__(self, path: Path, clock: Callable[[], int] = now_ms):
        self.path = Path(path).expanduser()
        self._clock = clock
        self._entries: dict[str, SessionEntry] | None = None
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _backup_path(path: Path) -> Path:
        return path.with_suffix(f"{path.suffix}.bak")

    def _read_path(self, path: Path) -> dict[str, SessionEntry]:
        raw = json.loads(path.read_text(encoding="utf-8") or "{}")
        if not isinstance(raw, dict):
            raise ValueError("session store root must be an object")
        return {
            str(key): SessionEntry.from_dict(value)
            for key, value in raw.items()
            if isinstance(value, dict)
        }

    def load(self, *, force: bool = False) -> dict[str, SessionEntry]:
        """Load the store from disk (cached after the first call)."""
        if self._entries is not None and not force:
            return self._entries
        if not self.path.exists():
            self._entries = {}
            return self._entries
        try:
            self._entries = self._read_path(self.path)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load session store {self.path}: {e}; trying backup")
            backup = self._backup_path(self.path)
            try:
                self._entries = self._read_path(backup) if backup.exists() else {}
                if backup.exists():
                    logger.warning(f"Recovered session store from backup file: {backup}")
            except (OSError, ValueError) as backup_error:
                logger.warning(f"Failed to load session store backup: {backup_error}")
                self._entries = {}
        return self._entries

    def get(self, key: str | None) -> SessionEntry | None:
        if not key:
            return None
        return self.load().get(key)

    def entries(self) -> dict[str, SessionEntry]:
        return dict(self.load())

    def put(self, key: str, entry: SessionEntry) -> None:
        """Insert or replace an entry in memory. Call save() to persist."""
        self.load()[key] = entry

    def save(self) -> None:
        """Atomically rewrite the whole store."""
        entries = self.load()
        payload = json.dumps(
            {key: entry.to_dict() for key, entry in entries.items()},
            ensure_ascii=False,
            indent=2,
            default=str,
        )
        try:
            self._write_payload(self.path, payload + "\n")
        except OSError as e:
            raise SessionStoreError(f"Failed to persist session store {self.path}: {e}") from e

    def _write_payload(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        backup_path = self._backup_path(path)
        tmp_path: Path | None = None
        had_existing = path.exists()
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(path.parent),
                prefix=f"{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())

            if had_existing:
                path.replace(backup_path)
            tmp_path.replace(path)
        except Exception:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
            if had_existing and backup_path.exists() and not path.exists():
                backup_path.replace(path)
            raise

    def _get_key_lock(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Hold the single-writer lock for one session key."""
        async with self._get_key_lock(key):
            yield

    async def update_entry(
        self,
        key: str | None,
        mutate: Callable[[SessionEntry], None],
    ) -> SessionEntry | None:
        """
        Apply a mutation to a copy of the entry, stamp it and persist.

        Args:
            key: Session key.
            mutate: Callback mutating the copied entry in place.

        Returns:
            The persisted entry, or None if no entry exists for the key.
        """
        if not key:
            return None
        async with self.lock(key):
            current = self.get(key)
            if current is None:
                return None
            updated = replace(current, extra=dict(current.extra))
            mutate(updated)
            updated.updated_at = max(self._clock(), int(current.updated_at or 0))
            async with self._write_lock:
                entries = self.load()
                entries[key] = updated
                try:
                    self.save()
                except SessionStoreError:
                    entries[key] = current
                    raise
            return updated


def resolve_session_transcript_path(session_id: str, sessions_dir: Path) -> Path:
    """Path of the JSONL transcript for an embedded agent session."""
    return Path(sessions_dir).expanduser() / f"{session_id}.jsonl"
