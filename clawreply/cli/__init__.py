"""CLI module for clawreply."""
