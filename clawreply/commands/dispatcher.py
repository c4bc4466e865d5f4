"""Control command dispatch: classify, authorize, mutate, reply."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from clawreply.agent.compaction import (
    CompactionOutcome,
    CompactionRequest,
    TranscriptCompactor,
    compaction_label,
    run_compaction,
)
from clawreply.agent.runs import RunCoordinator
from clawreply.audit.logger import AuditLogger
from clawreply.commands.activation import normalize_group_activation
from clawreply.commands.auth import AuthDecision, authorize
from clawreply.commands.classifier import (
    Command,
    CommandKind,
    classify_command,
    extract_compact_instructions,
)
from clawreply.commands.context import CommandContext
from clawreply.commands.directives import InlineDirectives
from clawreply.commands.send_policy import send_policy_label
from clawreply.commands.status import (
    StatusInfo,
    build_help_message,
    build_status_message,
    entry_total_tokens,
    format_context_usage_short,
    format_token_count,
)
from clawreply.config.schema import Config
from clawreply.infra.restart import trigger_restart
from clawreply.infra.system_events import SystemEventQueue
from clawreply.session.send_policy import resolve_send_policy
from clawreply.session.store import SessionEntry, SessionStore, resolve_session_transcript_path
from clawreply.session.updates import (
    AbortMemory,
    apply_group_activation,
    apply_send_policy,
    increment_compaction_count,
    mark_aborted,
)

COMPACTION_MISSING_SESSION_REPLY = "⚙️ Compaction unavailable (missing session id)."
GROUP_ONLY_ACTIVATION_REPLY = "⚙️ Group activation only applies to group chats."
ACTIVATION_USAGE_REPLY = "⚙️ Usage: /activation mention|always"
SEND_POLICY_USAGE_REPLY = "⚙️ Usage: /send on|off|inherit"
ABORTED_REPLY = "⚙️ Agent was aborted."
RESTART_FAILED_REPLY = "⚙️ Restart failed."


@dataclass
class DispatchResult:
    """
    What the caller should do with a message.

    A reply means the message was a handled command. `should_continue`
    means normal agent processing should run. Neither means the message was
    dropped silently.
    """

    reply: str | None = None
    should_continue: bool = False

    @property
    def dropped(self) -> bool:
        return self.reply is None and not self.should_continue


@dataclass
class _Turn:
    ctx: CommandContext
    session_key: str | None
    entry: SessionEntry | None
    is_group: bool
    provider: str
    model: str
    context_tokens: int | None
    think_level: str | None
    verbose_level: str | None
    resolve_default_think_level: Callable[[], Awaitable[str | None]] | None


class CommandDispatcher:
    """
    Single entry point for control commands on inbound messages.

    At most one command runs per message, picked by classifier priority.
    Unauthorized senders get no reply at all.
    """

    def __init__(
        self,
        config: Config,
        sessions: SessionStore,
        runs: RunCoordinator,
        compactor: TranscriptCompactor | None = None,
        restarter: Callable[[], str] = trigger_restart,
        system_events: SystemEventQueue | None = None,
        abort_memory: AbortMemory | None = None,
        send_policy_resolver: Callable[..., str] = resolve_send_policy,
        audit_logger: AuditLogger | None = None,
    ):
        self.config = config
        self.sessions = sessions
        self.runs = runs
        self.compactor = compactor
        self.restarter = restarter
        self.system_events = system_events or SystemEventQueue()
        self.abort_memory = abort_memory or AbortMemory()
        self.send_policy_resolver = send_policy_resolver
        self.audit_logger = audit_logger
        self._compaction_locks: dict[str, asyncio.Lock] = {}
        self._handlers: dict[CommandKind, Callable[[Command, _Turn], Awaitable[DispatchResult]]] = {
            CommandKind.RESET: self._handle_reset,
            CommandKind.ACTIVATION: self._handle_activation,
            CommandKind.SEND_POLICY: self._handle_send_policy,
            CommandKind.RESTART: self._handle_restart,
            CommandKind.HELP: self._handle_help,
            CommandKind.STATUS: self._handle_status,
            CommandKind.COMPACT: self._handle_compact,
            CommandKind.ABORT: self._handle_abort,
            CommandKind.NONE: self._handle_none,
        }

    async def handle(
        self,
        ctx: CommandContext,
        *,
        session_key: str | None = None,
        is_group: bool = False,
        directives: InlineDirectives | None = None,
        provider: str | None = None,
        model: str | None = None,
        context_tokens: int | None = None,
        think_level: str | None = None,
        verbose_level: str | None = None,
        resolve_default_think_level: Callable[[], Awaitable[str | None]] | None = None,
    ) -> DispatchResult:
        """
        Classify and run the command carried by a message, if any.

        Raises:
            SessionStoreError: A mutating command could not persist its change.
        """
        command = classify_command(
            ctx.command_body_normalized,
            raw_body=ctx.raw_body_normalized,
            status_directive=bool(directives and directives.has_status_directive),
        )
        turn = _Turn(
            ctx=ctx,
            session_key=session_key,
            entry=self.sessions.get(session_key),
            is_group=is_group,
            provider=provider or self.config.agent.provider,
            model=model or self.config.agent.model,
            context_tokens=context_tokens,
            think_level=think_level,
            verbose_level=verbose_level,
            resolve_default_think_level=resolve_default_think_level,
        )
        result = await self._handlers[command.kind](command, turn)
        if command.matched:
            self._audit(command, turn, result)
        return result

    def _authorized(self, command: Command, turn: _Turn) -> bool:
        return authorize(command, turn.ctx.auth) is not AuthDecision.DENY

    async def _handle_reset(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        # The reset itself belongs to the caller's normal processing path.
        return await self._handle_none(command, turn)

    async def _handle_activation(self, command: Command, turn: _Turn) -> DispatchResult:
        if not turn.is_group:
            return DispatchResult(reply=GROUP_ONLY_ACTIVATION_REPLY)
        if not self._authorized(command, turn):
            return DispatchResult()
        if not command.mode:
            return DispatchResult(reply=ACTIVATION_USAGE_REPLY)
        if turn.entry is not None:
            await self.sessions.update_entry(turn.session_key, apply_group_activation(command.mode))
            logger.info(f"Session {turn.session_key}: group activation set to {command.mode}")
        return DispatchResult(reply=f"⚙️ Group activation set to {command.mode}.")

    async def _handle_send_policy(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        if not command.mode:
            return DispatchResult(reply=SEND_POLICY_USAGE_REPLY)
        if turn.entry is not None:
            await self.sessions.update_entry(turn.session_key, apply_send_policy(command.mode))
            logger.info(f"Session {turn.session_key}: send policy set to {command.mode}")
        return DispatchResult(reply=f"⚙️ Send policy set to {send_policy_label(command.mode)}.")

    async def _handle_restart(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        try:
            method = self.restarter()
        except Exception as e:
            logger.error(f"Restart failed: {e}")
            return DispatchResult(reply=RESTART_FAILED_REPLY)
        label = self.config.commands.restart_label
        return DispatchResult(
            reply=f"⚙️ Restarting {label} via {method}; give me a few seconds to come back online."
        )

    async def _handle_help(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        return DispatchResult(reply=build_help_message())

    async def _handle_status(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        entry = turn.entry
        group_activation = None
        if turn.is_group:
            group_activation = (
                normalize_group_activation(entry.group_activation if entry else None)
                or self.config.session.group_activation
            )
        info = StatusInfo(
            provider=turn.provider,
            model=turn.model,
            context_tokens=self._context_window(turn),
            workspace_dir=self.config.workspace_path,
            session_key=turn.session_key,
            session_entry=entry,
            store_path=self.sessions.path,
            group_activation=group_activation,
            think_level=await self._think_level(turn),
            verbose_level=turn.verbose_level or self.config.agent.verbose,
            send_policy=entry.send_policy if entry else None,
        )
        return DispatchResult(reply=build_status_message(info))

    async def _handle_compact(self, command: Command, turn: _Turn) -> DispatchResult:
        if not self._authorized(command, turn):
            return DispatchResult()
        entry = turn.entry
        if entry is None or not entry.session_id:
            return DispatchResult(reply=COMPACTION_MISSING_SESSION_REPLY)

        session_id = entry.session_id
        # One compaction per session at a time; concurrent requests queue here.
        async with self._compaction_lock(turn.session_key or session_id):
            outcome: CompactionOutcome | None = None
            if self.runs.is_active(session_id):
                stopped = await self.runs.stop_run(
                    session_id, timeout_ms=self.config.commands.compaction_wait_timeout_ms
                )
                if stopped.timed_out and self.config.commands.fail_compaction_on_run_timeout:
                    outcome = CompactionOutcome(ok=False, reason="run still active")

            if outcome is None:
                outcome = await self._compact(turn, entry)

            if outcome.ok and outcome.compacted:
                await increment_compaction_count(self.sessions, turn.session_key)

        total = entry_total_tokens(entry)
        summary = format_context_usage_short(total, self._context_window(turn))
        label = compaction_label(outcome, format_token_count)

        reason = (outcome.reason or "").strip()
        line = f"{label}: {reason} • {summary}" if reason else f"{label} • {summary}"
        self.system_events.enqueue(line, turn.session_key)
        return DispatchResult(reply=f"⚙️ {line}")

    async def _compact(self, turn: _Turn, entry: SessionEntry) -> CompactionOutcome:
        if self.compactor is None:
            logger.warning("Compaction requested but no compactor is configured")
            return CompactionOutcome(ok=False, reason="compaction unavailable")
        ctx = turn.ctx
        request = CompactionRequest(
            session_id=entry.session_id,
            session_key=turn.session_key,
            surface=ctx.surface,
            session_file=resolve_session_transcript_path(entry.session_id, self.sessions.path.parent),
            workspace_dir=self.config.workspace_path,
            provider=turn.provider,
            model=turn.model,
            think_level=await self._think_level(turn),
            custom_instructions=extract_compact_instructions(
                ctx.raw_body,
                is_group=turn.is_group,
                strip_mentions=ctx.strip_mentions,
            ),
            owner_numbers=list(ctx.owner_list) or None,
            skills_snapshot=entry.skills_snapshot,
        )
        return await run_compaction(self.compactor, request)

    async def _handle_abort(self, command: Command, turn: _Turn) -> DispatchResult:
        ctx = turn.ctx
        entry = turn.entry
        if entry is not None and turn.session_key:
            await self.sessions.update_entry(turn.session_key, mark_aborted)
            if entry.session_id and self.runs.is_active(entry.session_id):
                self.runs.abort(entry.session_id)
        elif ctx.abort_key:
            self.abort_memory.set(ctx.abort_key, True)
        logger.info(f"Abort requested for {turn.session_key or ctx.abort_key or 'unknown session'}")
        return DispatchResult(reply=ABORTED_REPLY)

    async def _handle_none(self, command: Command, turn: _Turn) -> DispatchResult:
        entry = turn.entry
        policy = self.send_policy_resolver(
            self.config,
            entry=entry,
            session_key=turn.session_key,
            surface=(entry.surface if entry else None) or turn.ctx.surface,
            chat_type=entry.chat_type if entry else None,
        )
        if policy == "deny":
            logger.debug(f"Send blocked by policy for session {turn.session_key or 'unknown'}")
            return DispatchResult()
        return DispatchResult(should_continue=True)

    def _compaction_lock(self, key: str) -> asyncio.Lock:
        lock = self._compaction_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._compaction_locks[key] = lock
        return lock

    def _context_window(self, turn: _Turn) -> int:
        entry_context = turn.entry.context_tokens if turn.entry else None
        return turn.context_tokens or entry_context or self.config.agent.context_tokens

    async def _think_level(self, turn: _Turn) -> str | None:
        if turn.think_level:
            return turn.think_level
        if turn.resolve_default_think_level is not None:
            resolved = await turn.resolve_default_think_level()
            if resolved:
                return resolved
        return self.config.agent.thinking

    def _audit(self, command: Command, turn: _Turn, result: DispatchResult) -> None:
        if self.audit_logger is None:
            return
        if result.reply is not None:
            outcome = "replied"
        elif result.should_continue:
            outcome = "continued"
        else:
            outcome = "dropped"
        self.audit_logger.log_command(
            command=command.kind.value,
            outcome=outcome,
            surface=turn.ctx.surface,
            sender=turn.ctx.sender_id,
            session_key=turn.session_key,
        )
