"""Audit logging module for clawreply."""

from clawreply.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
