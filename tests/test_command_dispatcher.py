import asyncio
import json
from pathlib import Path

import pytest
from loguru import logger

from clawreply.agent.compaction import CompactionOutcome
from clawreply.agent.runs import EmbeddedRunRegistry, RunCoordinator
from clawreply.audit.logger import AuditLogger
from clawreply.commands.context import build_command_context
from clawreply.commands.directives import InlineDirectives
from clawreply.commands.dispatcher import (
    ABORTED_REPLY,
    ACTIVATION_USAGE_REPLY,
    COMPACTION_MISSING_SESSION_REPLY,
    GROUP_ONLY_ACTIVATION_REPLY,
    RESTART_FAILED_REPLY,
    SEND_POLICY_USAGE_REPLY,
    CommandDispatcher,
)
from clawreply.config.schema import Config, SendPolicyMatch, SendPolicyRule
from clawreply.infra.system_events import SystemEventQueue
from clawreply.session.store import SessionEntry, SessionStore, SessionStoreError
from clawreply.session.updates import AbortMemory

OWNER = "+15550001111"
STRANGER = "+15559999999"
GROUP_KEY = "whatsapp:group:120363@g.us"
DM_KEY = "main"


class FakeCompactor:
    def __init__(self, outcome: CompactionOutcome | None = None, error: Exception | None = None):
        self.outcome = outcome or CompactionOutcome(ok=True, compacted=True, tokens_before=12_000)
        self.error = error
        self.requests = []

    async def compact(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.outcome


class FakeRuns:
    """Run controller that records calls instead of owning tasks."""

    def __init__(self, active: bool = False, ends: bool = True):
        self.active = active
        self.ends = ends
        self.calls: list[tuple[str, str]] = []

    def is_active(self, session_id: str) -> bool:
        self.calls.append(("is_active", session_id))
        return self.active

    def abort(self, session_id: str) -> bool:
        self.calls.append(("abort", session_id))
        return self.active

    async def wait_for_end(self, session_id: str, timeout_ms: int) -> bool:
        self.calls.append(("wait_for_end", session_id))
        if self.ends:
            self.active = False
        return self.ends


class FakeRestarter:
    def __init__(self, method: str = "systemd", error: Exception | None = None):
        self.method = method
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.method


def _config() -> Config:
    config = Config()
    config.channels.whatsapp.allow_from = [OWNER]
    config.agent.workspace = "/tmp/clawreply-workspace"
    return config


def _entry(**overrides) -> SessionEntry:
    data = {
        "session_id": "sess-1",
        "updated_at": 1_000,
        "total_tokens": 12_000,
        "context_tokens": 200_000,
        "surface": "whatsapp",
    }
    data.update(overrides)
    return SessionEntry(**data)


def _store(tmp_path: Path, entries: dict[str, SessionEntry] | None = None, clock=None) -> SessionStore:
    path = tmp_path / "sessions" / "sessions.json"
    store = SessionStore(path, clock=clock) if clock else SessionStore(path)
    for key, entry in (entries or {}).items():
        store.put(key, entry)
    if entries:
        store.save()
    return store


def _ctx(
    config: Config,
    body: str,
    *,
    sender: str = OWNER,
    surface: str = "whatsapp",
    is_group: bool = False,
    session_key: str | None = DM_KEY,
    command_authorized: bool = True,
    from_: str | None = None,
):
    return build_command_context(
        config,
        surface=surface,
        sender=sender,
        trigger_body_normalized=body,
        is_group=is_group,
        session_key=session_key,
        from_=from_,
        command_authorized=command_authorized,
    )


def _dispatcher(config: Config, store: SessionStore, **kwargs) -> CommandDispatcher:
    kwargs.setdefault("runs", RunCoordinator(FakeRuns()))
    kwargs.setdefault("compactor", FakeCompactor())
    kwargs.setdefault("restarter", FakeRestarter())
    return CommandDispatcher(config, store, **kwargs)


def _reload(store: SessionStore, key: str) -> SessionEntry | None:
    return SessionStore(store.path).get(key)


@pytest.mark.parametrize(
    "body",
    ["/reset", "/new", "/send off", "/restart", "/help", "/status", "/compact", "/activation always"],
)
async def test_unauthorized_sender_gets_no_reply_and_no_effects(tmp_path: Path, body: str) -> None:
    config = _config()
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group")})
    runs = FakeRuns(active=True)
    compactor = FakeCompactor()
    restarter = FakeRestarter()
    dispatcher = _dispatcher(
        config, store, runs=RunCoordinator(runs), compactor=compactor, restarter=restarter
    )

    result = await dispatcher.handle(
        _ctx(config, body, sender=STRANGER, is_group=True, session_key=GROUP_KEY),
        session_key=GROUP_KEY,
        is_group=True,
    )

    assert result.reply is None
    assert result.should_continue is False
    assert result.dropped is True
    assert runs.calls == []
    assert compactor.requests == []
    assert restarter.calls == 0
    persisted = _reload(store, GROUP_KEY)
    assert persisted.updated_at == 1_000
    assert persisted.send_policy is None
    assert persisted.group_activation is None


async def test_unauthorized_attempt_is_logged(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = _dispatcher(config, store)
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{message}")
    try:
        await dispatcher.handle(_ctx(config, "/send off", sender=STRANGER), session_key=DM_KEY)
    finally:
        logger.remove(handler_id)

    assert any(f"Ignoring /send from unauthorized sender: {STRANGER}" in m for m in messages)


async def test_upstream_gate_denies_on_non_owner_surface(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {"telegram:42": _entry(surface="telegram")})
    dispatcher = _dispatcher(config, store)

    denied = await dispatcher.handle(
        _ctx(config, "/help", surface="telegram", sender="42", command_authorized=False,
             session_key="telegram:42"),
        session_key="telegram:42",
    )
    allowed = await dispatcher.handle(
        _ctx(config, "/help", surface="telegram", sender="42", session_key="telegram:42"),
        session_key="telegram:42",
    )

    assert denied.dropped is True
    assert allowed.reply is not None
    assert allowed.reply.startswith("ℹ️ Help")


async def test_activation_mention_persists_and_requests_intro(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group")})
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(
        _ctx(config, "/activation mention", is_group=True, session_key=GROUP_KEY),
        session_key=GROUP_KEY,
        is_group=True,
    )

    assert result.reply == "⚙️ Group activation set to mention."
    persisted = _reload(store, GROUP_KEY)
    assert persisted.group_activation == "mention"
    assert persisted.group_activation_needs_system_intro is True
    assert persisted.updated_at > 1_000


async def test_activation_without_mode_replies_usage_and_keeps_entry(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group")})
    dispatcher = _dispatcher(config, store)

    for body in ("/activation", "/activation loudly"):
        result = await dispatcher.handle(
            _ctx(config, body, is_group=True, session_key=GROUP_KEY),
            session_key=GROUP_KEY,
            is_group=True,
        )
        assert result.reply == ACTIVATION_USAGE_REPLY

    persisted = _reload(store, GROUP_KEY)
    assert persisted.updated_at == 1_000
    assert persisted.group_activation is None


async def test_activation_outside_group_replies_before_authorization(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(_ctx(config, "/activation always", sender=STRANGER), session_key=DM_KEY)

    assert result.reply == GROUP_ONLY_ACTIVATION_REPLY
    assert _reload(store, DM_KEY).group_activation is None


async def test_activation_with_mention_prefix_in_group(tmp_path: Path) -> None:
    config = _config()
    config.commands.mention_patterns = [r"@clawbot\b"]
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group")})
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(
        _ctx(config, "@clawbot /activation always", is_group=True, session_key=GROUP_KEY),
        session_key=GROUP_KEY,
        is_group=True,
    )

    assert result.reply == "⚙️ Group activation set to always."
    assert _reload(store, GROUP_KEY).group_activation == "always"


async def test_send_policy_off_then_inherit(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = _dispatcher(config, store)

    off = await dispatcher.handle(_ctx(config, "/send off"), session_key=DM_KEY)
    assert off.reply == "⚙️ Send policy set to off."
    assert _reload(store, DM_KEY).send_policy == "deny"

    inherit = await dispatcher.handle(_ctx(config, "/send inherit"), session_key=DM_KEY)
    assert inherit.reply == "⚙️ Send policy set to inherit."
    assert _reload(store, DM_KEY).send_policy is None
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert "sendPolicy" not in raw[DM_KEY]


async def test_send_policy_without_mode_replies_usage(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(_ctx(config, "/send sometimes"), session_key=DM_KEY)

    assert result.reply == SEND_POLICY_USAGE_REPLY
    assert _reload(store, DM_KEY).updated_at == 1_000


async def test_send_policy_without_entry_still_confirms(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path)
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(_ctx(config, "/send on"), session_key=DM_KEY)

    assert result.reply == "⚙️ Send policy set to on."
    assert store.get(DM_KEY) is None
    assert not store.path.exists()


async def test_abort_is_idempotent_and_cancels_active_run(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    runs = FakeRuns(active=True)
    dispatcher = _dispatcher(config, store, runs=RunCoordinator(runs))

    first = await dispatcher.handle(_ctx(config, "stop", sender=STRANGER), session_key=DM_KEY)
    second = await dispatcher.handle(_ctx(config, "STOP", sender=STRANGER), session_key=DM_KEY)

    assert first.reply == ABORTED_REPLY
    assert second.reply == ABORTED_REPLY
    assert _reload(store, DM_KEY).aborted_last_run is True
    assert ("abort", "sess-1") in runs.calls
    assert not any(name == "wait_for_end" for name, _ in runs.calls)


async def test_abort_without_entry_uses_abort_memory(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path)
    memory = AbortMemory()
    dispatcher = _dispatcher(config, store, abort_memory=memory)

    result = await dispatcher.handle(
        _ctx(config, "abort", session_key=None, from_="whatsapp:+15550001111"),
        session_key=None,
    )

    assert result.reply == ABORTED_REPLY
    assert memory.get("whatsapp:+15550001111") is True
    assert store.entries() == {}


async def test_compact_without_session_id_skips_run_coordination(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry(session_id="")})
    runs = FakeRuns(active=True)
    compactor = FakeCompactor()
    dispatcher = _dispatcher(config, store, runs=RunCoordinator(runs), compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == COMPACTION_MISSING_SESSION_REPLY
    assert runs.calls == []
    assert compactor.requests == []


async def test_compact_without_entry_replies_missing_session(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path)
    dispatcher = _dispatcher(config, store)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == COMPACTION_MISSING_SESSION_REPLY


async def test_compact_success_counts_and_enqueues_event(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry(skills_snapshot={"prompt": "skills"})})
    compactor = FakeCompactor()
    events = SystemEventQueue()
    dispatcher = _dispatcher(config, store, compactor=compactor, system_events=events)

    result = await dispatcher.handle(
        _ctx(config, "/compact: keep the todo list"),
        session_key=DM_KEY,
        think_level="low",
    )

    line = "Compacted (12k before) • Context 12k/200k (6%)"
    assert result.reply == f"⚙️ {line}"
    assert events.peek(DM_KEY) == [line]
    assert _reload(store, DM_KEY).compaction_count == 1

    request = compactor.requests[0]
    assert request.session_id == "sess-1"
    assert request.session_key == DM_KEY
    assert request.custom_instructions == "keep the todo list"
    assert request.session_file == store.path.parent / "sess-1.jsonl"
    assert request.owner_numbers == [OWNER]
    assert request.skills_snapshot == {"prompt": "skills"}
    assert request.think_level == "low"
    assert request.provider == "anthropic"


async def test_compact_skipped_with_reason(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    compactor = FakeCompactor(CompactionOutcome(ok=True, compacted=False, reason="nothing to compact"))
    dispatcher = _dispatcher(config, store, compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == "⚙️ Compaction skipped: nothing to compact • Context 12k/200k (6%)"
    assert _reload(store, DM_KEY).compaction_count == 0


async def test_compact_failure_from_compactor_exception(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry(total_tokens=None)})
    compactor = FakeCompactor(error=RuntimeError("model unavailable"))
    dispatcher = _dispatcher(config, store, compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == "⚙️ Compaction failed • Context unknown/200k"
    assert _reload(store, DM_KEY).compaction_count == 0


async def test_compact_in_group_strips_mentions_from_instructions(tmp_path: Path) -> None:
    config = _config()
    config.commands.mention_patterns = [r"@clawbot\b"]
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group")})
    compactor = FakeCompactor()
    dispatcher = _dispatcher(config, store, compactor=compactor)

    result = await dispatcher.handle(
        _ctx(config, "@clawbot /compact focus on decisions", is_group=True, session_key=GROUP_KEY),
        session_key=GROUP_KEY,
        is_group=True,
    )

    assert result.reply.startswith("⚙️ Compacted")
    assert compactor.requests[0].custom_instructions == "focus on decisions"


async def test_compact_stops_active_run_before_compacting(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    registry = EmbeddedRunRegistry()
    started = asyncio.Event()

    async def _run() -> None:
        started.set()
        await asyncio.sleep(3600)

    task = asyncio.create_task(_run())
    registry.register("sess-1", task)
    await started.wait()
    compactor = FakeCompactor()
    dispatcher = _dispatcher(config, store, runs=RunCoordinator(registry), compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert task.cancelled()
    assert registry.is_active("sess-1") is False
    assert len(compactor.requests) == 1
    assert result.reply.startswith("⚙️ Compacted")


async def test_compact_proceeds_when_run_outlives_timeout(tmp_path: Path) -> None:
    config = _config()
    config.commands.compaction_wait_timeout_ms = 20
    store = _store(tmp_path, {DM_KEY: _entry()})
    registry = EmbeddedRunRegistry()
    started = asyncio.Event()
    release = asyncio.Event()

    async def _stubborn_run() -> None:
        started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            await release.wait()

    task = asyncio.create_task(_stubborn_run())
    registry.register("sess-1", task)
    await started.wait()
    compactor = FakeCompactor()
    dispatcher = _dispatcher(config, store, runs=RunCoordinator(registry), compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert len(compactor.requests) == 1
    assert result.reply.startswith("⚙️ Compacted")
    assert registry.is_active("sess-1") is True

    release.set()
    await task


async def test_compact_can_fail_fast_when_run_outlives_timeout(tmp_path: Path) -> None:
    config = _config()
    config.commands.fail_compaction_on_run_timeout = True
    store = _store(tmp_path, {DM_KEY: _entry()})
    runs = FakeRuns(active=True, ends=False)
    compactor = FakeCompactor()
    dispatcher = _dispatcher(config, store, runs=RunCoordinator(runs), compactor=compactor)

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == "⚙️ Compaction failed: run still active • Context 12k/200k (6%)"
    assert compactor.requests == []
    assert [name for name, _ in runs.calls] == ["is_active", "is_active", "abort", "wait_for_end"]


async def test_compact_without_compactor(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = CommandDispatcher(config, store, RunCoordinator(FakeRuns()))

    result = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)

    assert result.reply == "⚙️ Compaction failed: compaction unavailable • Context 12k/200k (6%)"


async def test_restart_reports_method(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    restarter = FakeRestarter("launchd")
    dispatcher = _dispatcher(config, store, restarter=restarter)

    result = await dispatcher.handle(_ctx(config, "/restart"), session_key=DM_KEY)

    assert restarter.calls == 1
    assert result.reply == (
        "⚙️ Restarting clawreply via launchd; give me a few seconds to come back online."
    )


async def test_restart_failure_replies(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry()})
    dispatcher = _dispatcher(config, store, restarter=FakeRestarter(error=OSError("no launchctl")))

    result = await dispatcher.handle(_ctx(config, "/restart"), session_key=DM_KEY)

    assert result.reply == RESTART_FAILED_REPLY


async def test_help_mid_sentence(tmp_path: Path) -> None:
    config = _config()
    dispatcher = _dispatcher(config, _store(tmp_path))

    result = await dispatcher.handle(_ctx(config, "please /help now"), session_key=DM_KEY)

    assert result.reply.startswith("ℹ️ Help")
    assert result.should_continue is False


async def test_status_from_inline_directive(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group", group_activation="always", send_policy="deny")})
    dispatcher = _dispatcher(config, store)

    async def _default_think() -> str:
        return "medium"

    result = await dispatcher.handle(
        _ctx(config, "how are things", is_group=True, session_key=GROUP_KEY),
        session_key=GROUP_KEY,
        is_group=True,
        directives=InlineDirectives(cleaned="how are things", has_status_directive=True),
        resolve_default_think_level=_default_think,
    )

    assert result.reply.startswith("⚙️ Status")
    assert "Context 12k/200k (6%)" in result.reply
    assert "activation always" in result.reply
    assert "think medium" in result.reply


async def test_authorized_reset_continues_to_agent(tmp_path: Path) -> None:
    config = _config()
    dispatcher = _dispatcher(config, _store(tmp_path, {DM_KEY: _entry()}))

    result = await dispatcher.handle(_ctx(config, "/new"), session_key=DM_KEY)

    assert result.reply is None
    assert result.should_continue is True


async def test_plain_message_respects_send_policy(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry(), "muted": _entry(send_policy="deny")})
    dispatcher = _dispatcher(config, store)

    allowed = await dispatcher.handle(_ctx(config, "hello there"), session_key=DM_KEY)
    muted = await dispatcher.handle(_ctx(config, "hello there", session_key="muted"), session_key="muted")

    assert allowed.should_continue is True
    assert allowed.reply is None
    assert muted.dropped is True


async def test_plain_message_uses_config_rules(tmp_path: Path) -> None:
    config = _config()
    config.session.send_policy.rules = [
        SendPolicyRule(action="deny", match=SendPolicyMatch(chat_type="group")),
    ]
    store = _store(tmp_path, {GROUP_KEY: _entry(chat_type="group"), DM_KEY: _entry(chat_type="direct")})
    dispatcher = _dispatcher(config, store)

    group = await dispatcher.handle(
        _ctx(config, "hi all", is_group=True, session_key=GROUP_KEY), session_key=GROUP_KEY, is_group=True
    )
    direct = await dispatcher.handle(_ctx(config, "hi"), session_key=DM_KEY)

    assert group.dropped is True
    assert direct.should_continue is True


async def test_persistence_failure_propagates(tmp_path: Path) -> None:
    config = _config()
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = SessionStore(blocker / "sessions.json")
    store.put(DM_KEY, _entry())
    dispatcher = _dispatcher(config, store)

    with pytest.raises(SessionStoreError):
        await dispatcher.handle(_ctx(config, "/send off"), session_key=DM_KEY)

    assert store.get(DM_KEY).send_policy is None


async def test_commands_are_audited(tmp_path: Path) -> None:
    config = _config()
    audit_path = tmp_path / "audit" / "commands.jsonl"
    dispatcher = _dispatcher(
        config,
        _store(tmp_path, {DM_KEY: _entry()}),
        audit_logger=AuditLogger(audit_path, level="standard"),
    )

    await dispatcher.handle(_ctx(config, "/help"), session_key=DM_KEY)
    await dispatcher.handle(_ctx(config, "/status", sender=STRANGER), session_key=DM_KEY)
    await dispatcher.handle(_ctx(config, "just chatting"), session_key=DM_KEY)

    lines = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    assert [(line["command"], line["outcome"]) for line in lines] == [
        ("help", "replied"),
        ("status", "dropped"),
    ]
    assert lines[0]["sender"] == OWNER
    assert lines[0]["session_key"] == DM_KEY


async def test_restart_without_service_manager_replies_failure(tmp_path: Path, monkeypatch) -> None:
    from clawreply.infra import restart as restart_module

    launched: list[list[str]] = []
    monkeypatch.setattr(restart_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(restart_module.subprocess, "Popen", lambda args, **kwargs: launched.append(args))
    config = _config()
    dispatcher = CommandDispatcher(config, _store(tmp_path, {DM_KEY: _entry()}), RunCoordinator(FakeRuns()))

    result = await dispatcher.handle(_ctx(config, "/restart"), session_key=DM_KEY)

    assert result.reply == RESTART_FAILED_REPLY
    assert launched == []


async def test_compact_and_status_share_context_window_fallback(tmp_path: Path) -> None:
    config = _config()
    config.agent.context_tokens = 100_000
    store = _store(tmp_path, {DM_KEY: _entry(context_tokens=None)})
    dispatcher = _dispatcher(config, store)

    compact = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)
    status = await dispatcher.handle(_ctx(config, "/status"), session_key=DM_KEY)

    assert compact.reply == "⚙️ Compacted (12k before) • Context 12k/100k (12%)"
    assert "Context 12k/100k (12%)" in status.reply


async def test_status_prefers_entry_context_window_over_config(tmp_path: Path) -> None:
    config = _config()
    config.agent.context_tokens = 100_000
    dispatcher = _dispatcher(config, _store(tmp_path, {DM_KEY: _entry(context_tokens=200_000)}))

    compact = await dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY)
    status = await dispatcher.handle(_ctx(config, "/status"), session_key=DM_KEY)

    assert compact.reply.endswith("Context 12k/200k (6%)")
    assert "Context 12k/200k (6%)" in status.reply


class SlowCompactor:
    """Compactor that records how many compactions overlap."""

    def __init__(self) -> None:
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    async def compact(self, request):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
        finally:
            self.in_flight -= 1
        return CompactionOutcome(ok=True, compacted=True, tokens_before=12_000)


async def test_concurrent_compactions_for_one_session_run_one_at_a_time(tmp_path: Path) -> None:
    config = _config()
    store = _store(tmp_path, {DM_KEY: _entry(), "other": _entry(session_id="sess-2")})
    compactor = SlowCompactor()
    dispatcher = _dispatcher(config, store, compactor=compactor)

    results = await asyncio.gather(
        dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY),
        dispatcher.handle(_ctx(config, "/compact"), session_key=DM_KEY),
    )

    assert compactor.calls == 2
    assert compactor.max_in_flight == 1
    assert all(result.reply.startswith("⚙️ Compacted") for result in results)
    assert _reload(store, DM_KEY).compaction_count == 2

    other = SlowCompactor()
    parallel = _dispatcher(config, store, compactor=other)
    await asyncio.gather(
        parallel.handle(_ctx(config, "/compact"), session_key=DM_KEY),
        parallel.handle(_ctx(config, "/compact", session_key="other"), session_key="other"),
    )
    assert other.max_in_flight == 2
