# Audit Module
# Bounded in-memory audit trail shared by ledger, limit book and strategy registry

from .log import AuditEntry, AuditKind, AuditLog

__all__ = [
    "AuditEntry",
    "AuditKind",
    "AuditLog",
]
