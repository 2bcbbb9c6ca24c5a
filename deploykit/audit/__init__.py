"""Audit trail — hash-chained record of every deployment state transition."""

from deploykit.audit.hasher import Hasher
from deploykit.audit.log import AuditEntry, AuditLog

__all__ = ["AuditEntry", "AuditLog", "Hasher"]
