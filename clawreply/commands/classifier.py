"""Classify a normalized message body into a single control command."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from clawreply.commands.abort import is_abort_trigger
from clawreply.commands.activation import parse_activation_command
from clawreply.commands.mentions import strip_structural_prefixes
from clawreply.commands.send_policy import parse_send_policy_command


class CommandKind(str, Enum):
    RESET = "reset"
    ACTIVATION = "activation"
    SEND_POLICY = "send"
    RESTART = "restart"
    HELP = "help"
    STATUS = "status"
    COMPACT = "compact"
    ABORT = "abort"
    NONE = "none"


@dataclass(frozen=True)
class Command:
    """A classified command. `mode` and `instructions` depend on the kind."""

    kind: CommandKind
    token: str = ""
    mode: str | None = None
    instructions: str | None = None

    @property
    def matched(self) -> bool:
        return self.kind is not CommandKind.NONE


NO_COMMAND = Command(kind=CommandKind.NONE)

_HELP_RE = re.compile(r"(?:^|\s)/help(?=$|\s|:)", re.IGNORECASE)
_COMPACT_RE = re.compile(r"^/compact(?=$|\s|:)", re.IGNORECASE)


@dataclass(frozen=True)
class _Input:
    body: str
    lowered: str
    raw_body: str
    status_directive: bool


def _match_reset(inp: _Input) -> Command | None:
    if inp.lowered in {"/reset", "/new"}:
        return Command(kind=CommandKind.RESET, token=inp.lowered)
    return None


def _match_activation(inp: _Input) -> Command | None:
    parsed = parse_activation_command(inp.body)
    if not parsed.has_command:
        return None
    return Command(kind=CommandKind.ACTIVATION, token="/activation", mode=parsed.mode)


def _match_send_policy(inp: _Input) -> Command | None:
    parsed = parse_send_policy_command(inp.body)
    if not parsed.has_command:
        return None
    return Command(kind=CommandKind.SEND_POLICY, token="/send", mode=parsed.mode)


def _match_restart(inp: _Input) -> Command | None:
    if inp.lowered == "/restart" or inp.lowered.startswith("/restart "):
        return Command(kind=CommandKind.RESTART, token="/restart")
    return None


def _match_help(inp: _Input) -> Command | None:
    if inp.lowered == "/help" or _HELP_RE.search(inp.body):
        return Command(kind=CommandKind.HELP, token="/help")
    return None


def _match_status(inp: _Input) -> Command | None:
    if inp.status_directive or inp.lowered == "/status" or inp.lowered.startswith("/status "):
        return Command(kind=CommandKind.STATUS, token="/status")
    return None


def _match_compact(inp: _Input) -> Command | None:
    if not _COMPACT_RE.match(inp.body):
        return None
    return Command(
        kind=CommandKind.COMPACT,
        token="/compact",
        instructions=_trailing_instructions(inp.body, "/compact"),
    )


def _match_abort(inp: _Input) -> Command | None:
    if is_abort_trigger(inp.raw_body):
        return Command(kind=CommandKind.ABORT)
    return None


# Evaluated top-down; the first match wins.
COMMAND_MATCHERS: tuple[tuple[CommandKind, Callable[[_Input], Command | None]], ...] = (
    (CommandKind.RESET, _match_reset),
    (CommandKind.ACTIVATION, _match_activation),
    (CommandKind.SEND_POLICY, _match_send_policy),
    (CommandKind.RESTART, _match_restart),
    (CommandKind.HELP, _match_help),
    (CommandKind.STATUS, _match_status),
    (CommandKind.COMPACT, _match_compact),
    (CommandKind.ABORT, _match_abort),
)

COMMAND_PRIORITY: tuple[CommandKind, ...] = tuple(kind for kind, _matcher in COMMAND_MATCHERS)


def classify_command(
    body: str | None,
    *,
    raw_body: str | None = None,
    status_directive: bool = False,
) -> Command:
    """
    Map a command-normalized body to the first matching command.

    Args:
        body: Trimmed body with mentions and prefixes stripped.
        raw_body: Body before mention stripping, used for abort triggers.
            Defaults to `body`.
        status_directive: Set when inline directive parsing found `/status`.

    Returns:
        The matched command, or NO_COMMAND.
    """
    text = (body or "").strip()
    inp = _Input(
        body=text,
        lowered=text.lower(),
        raw_body=(raw_body if raw_body is not None else text).strip(),
        status_directive=status_directive,
    )
    for _kind, matcher in COMMAND_MATCHERS:
        command = matcher(inp)
        if command is not None:
            return command
    return NO_COMMAND


def _trailing_instructions(text: str, token: str) -> str | None:
    if not text.lower().startswith(token):
        return None
    rest = text[len(token):].lstrip()
    if rest.startswith(":"):
        rest = rest[1:].lstrip()
    rest = rest.strip()
    return rest or None


def extract_compact_instructions(
    raw_body: str | None,
    *,
    is_group: bool,
    strip_mentions: Callable[[str], str] | None = None,
) -> str | None:
    """Custom compaction instructions from the raw message body, if any."""
    text = strip_structural_prefixes(raw_body or "")
    if is_group and strip_mentions is not None:
        text = strip_mentions(text)
    text = text.strip()
    if not text:
        return None
    return _trailing_instructions(text, "/compact")
