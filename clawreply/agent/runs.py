"""Embedded agent run tracking and cancel-then-wait coordination."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

DEFAULT_RUN_END_TIMEOUT_MS = 15_000


class RunController(Protocol):
    """What the coordinator needs from whoever owns embedded runs."""

    def is_active(self, session_id: str) -> bool: ...

    def abort(self, session_id: str) -> bool: ...

    async def wait_for_end(self, session_id: str, timeout_ms: int) -> bool: ...


class EmbeddedRunRegistry:
    """
    Tracks the in-flight embedded run task for each agent session id.

    The registry does not start runs; the execution subsystem registers its
    task and the registry forgets it once the task finishes.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def register(self, session_id: str, task: asyncio.Task[Any]) -> None:
        previous = self._tasks.get(session_id)
        if previous is not None and previous is not task and not previous.done():
            logger.warning(f"Replacing active embedded run for session {session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda t: self._on_task_done(session_id, t))

    def _on_task_done(self, session_id: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(session_id) is task:
            self._tasks.pop(session_id, None)
        if task.cancelled():
            logger.debug(f"Embedded run for session {session_id} cancelled")

    def is_active(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def abort(self, session_id: str) -> bool:
        """Request cancellation of the active run. Returns False if none was running."""
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def wait_for_end(self, session_id: str, timeout_ms: int = DEFAULT_RUN_END_TIMEOUT_MS) -> bool:
        """Wait until the run finishes. Returns False if the timeout elapsed first."""
        task = self._tasks.get(session_id)
        if task is None or task.done():
            return True
        timeout = max(0, int(timeout_ms)) / 1000.0
        done, _pending = await asyncio.wait({task}, timeout=timeout)
        return task in done

    def active_session_ids(self) -> list[str]:
        return [sid for sid, task in self._tasks.items() if not task.done()]


@dataclass
class RunStopResult:
    """Outcome of stopping a run before a dependent operation."""

    was_active: bool = False
    ended: bool = True
    timed_out: bool = False


class RunCoordinator:
    """Cancels an in-flight run and waits, bounded, for it to stop."""

    def __init__(self, runs: RunController, timeout_ms: int = DEFAULT_RUN_END_TIMEOUT_MS):
        self.runs = runs
        self.timeout_ms = max(0, int(timeout_ms))

    def is_active(self, session_id: str) -> bool:
        return self.runs.is_active(session_id)

    async def stop_run(self, session_id: str, timeout_ms: int | None = None) -> RunStopResult:
        """
        Abort the run for a session and wait for it to end.

        Timeout expiry returns control to the caller instead of raising; the
        result reports `timed_out=True` so the caller can decide what to do.
        """
        if not self.runs.is_active(session_id):
            return RunStopResult()

        deadline_ms = self.timeout_ms if timeout_ms is None else max(0, int(timeout_ms))
        self.runs.abort(session_id)
        ended = await self.runs.wait_for_end(session_id, deadline_ms)
        if not ended:
            logger.warning(
                f"Embedded run for session {session_id} did not stop within {deadline_ms}ms; proceeding"
            )
        return RunStopResult(was_active=True, ended=ended, timed_out=not ended)

    def abort(self, session_id: str) -> bool:
        """Signal cancellation without waiting."""
        return self.runs.abort(session_id)
