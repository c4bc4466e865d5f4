"""Session state module for clawreply."""

from clawreply.session.store import SessionEntry, SessionStore, SessionStoreError
from clawreply.session.updates import AbortMemory

__all__ = ["SessionEntry", "SessionStore", "SessionStoreError", "AbortMemory"]
