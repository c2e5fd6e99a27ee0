"""Append-only audit trail."""

from anchor_recon.audit.service import (  # noqa: F401
    AuditAction,
    AuditFilters,
    AuditLog,
    EntityType,
    audit_log,
    suggestion_state,
    transaction_state,
)

__all__ = [
    "AuditAction",
    "AuditFilters",
    "AuditLog",
    "EntityType",
    "audit_log",
    "suggestion_state",
    "transaction_state",
]
