"""Structured audit logging of control commands to a JSON lines file."""

import json
import re
import time
from pathlib import Path
from typing import Any, Literal

from loguru import logger


class AuditLogger:
    """Structured JSON-lines audit logger."""

    _SENSITIVE_KEY_RE = re.compile(
        r"(token|secret|password|passwd|api[_-]?key|access[_-]?key|private[_-]?key|authorization|bearer)",
        re.IGNORECASE,
    )
    _INLINE_SECRET_RE = re.compile(r"(?i)\b(api[_-]?key|token|secret|password)\b\s*[:=]\s*([^\s,;]+)")

    def __init__(
        self,
        log_path: Path,
        level: Literal["minimal", "standard", "verbose"] = "standard",
    ):
        self.log_path = Path(log_path).expanduser()
        self.level = level
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, entry: dict[str, Any]) -> None:
        entry["ts"] = time.time()
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.warning(f"Audit write failed: {e}")

    @classmethod
    def _sanitize(cls, value: Any, max_len: int = 500) -> Any:
        if isinstance(value, dict):
            out: dict[str, Any] = {}
            for k, v in value.items():
                key = str(k)
                if cls._SENSITIVE_KEY_RE.search(key):
                    out[key] = "<redacted:sensitive>"
                else:
                    out[key] = cls._sanitize(v, max_len=max_len)
            return out
        if isinstance(value, list):
            return [cls._sanitize(v, max_len=max_len) for v in value]
        if isinstance(value, str):
            value = cls._INLINE_SECRET_RE.sub(lambda m: f"{m.group(1)}=<redacted:sensitive>", value)
            if len(value) > max_len:
                return value[:max_len] + f"... (truncated, {len(value) - max_len} more chars)"
            return value
        return value

    def log_command(
        self,
        command: str,
        outcome: Literal["replied", "continued", "dropped"],
        surface: str = "",
        sender: str | None = None,
        session_key: str | None = None,
    ) -> None:
        """Log the outcome of a recognized control command."""
        entry: dict[str, Any] = {
            "type": "command",
            "command": command,
            "outcome": outcome,
            "surface": surface,
        }
        if self.level in ("standard", "verbose"):
            if sender:
                entry["sender"] = sender
            if session_key:
                entry["session_key"] = session_key
        self._write(entry)

    def log_event(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Log a generic event."""
        entry: dict[str, Any] = {"type": "event", "event": event}
        if data:
            entry["data"] = self._sanitize(data)
        self._write(entry)
