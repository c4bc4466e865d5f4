"""Process-level helpers for clawreply."""
