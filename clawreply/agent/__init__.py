"""Agent run coordination module for clawreply."""

from clawreply.agent.compaction import CompactionOutcome, CompactionRequest, TranscriptCompactor
from clawreply.agent.runs import EmbeddedRunRegistry, RunCoordinator, RunStopResult

__all__ = [
    "CompactionOutcome",
    "CompactionRequest",
    "TranscriptCompactor",
    "EmbeddedRunRegistry",
    "RunCoordinator",
    "RunStopResult",
]
