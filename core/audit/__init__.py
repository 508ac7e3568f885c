"""Core audit module - audit event tracking and persistence."""

from core.audit.events import (
    AuditEventType,
    create_audit_event,
    write_audit_event,
    query_audit_events,
)

__all__ = [
    "AuditEventType",
    "create_audit_event",
    "write_audit_event",
    "query_audit_events",
]
