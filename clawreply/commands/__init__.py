"""Control command interpreter for clawreply."""

from clawreply.commands.classifier import Command, CommandKind, classify_command
from clawreply.commands.context import CommandContext, build_command_context
from clawreply.commands.detection import has_control_command
from clawreply.commands.dispatcher import CommandDispatcher, DispatchResult

__all__ = [
    "Command",
    "CommandKind",
    "CommandContext",
    "CommandDispatcher",
    "DispatchResult",
    "build_command_context",
    "classify_command",
    "has_control_command",
]
