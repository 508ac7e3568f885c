"""Audit event creation and persistence.

Audit rows live in the same SQLite database as the business records so an
import's audit entry is written inside the commit transaction.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.refs import AuditEvent, AuditSeverity


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Import events
    IMPORT_COMMITTED = "IMPORT_COMMITTED"
    IMPORT_FAILED = "IMPORT_FAILED"

    # Registry events (only on explicit caller request)
    VENDOR_CREATED = "VENDOR_CREATED"
    MATERIAL_CREATED = "MATERIAL_CREATED"


AUDIT_EVENTS_DDL = """
    CREATE TABLE IF NOT EXISTS audit_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        timestamp TEXT NOT NULL,
        event_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        import_id TEXT,
        file_name TEXT,
        document_type TEXT,
        workflow_id TEXT,
        message TEXT NOT NULL,
        details TEXT DEFAULT '{}',
        actor TEXT NOT NULL
    )
"""


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    import_id: Optional[str] = None,
    file_name: Optional[str] = None,
    document_type: Optional[str] = None,
    workflow_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.

    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        import_id: Associated import
        file_name: Source file name
        document_type: Document type the event concerns
        workflow_id: Temporal workflow ID
        details: Additional structured details
        actor: Who/what performed the action

    Returns:
        Configured AuditEvent ready for writing
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.utcnow(),
        event_type=event_type.value,
        severity=severity,
        import_id=import_id,
        file_name=file_name,
        document_type=document_type,
        workflow_id=workflow_id,
        message=message,
        details=details or {},
        actor=actor,
    )


def write_audit_event(conn: sqlite3.Connection, event: AuditEvent) -> None:
    """Insert an audit event using the caller's connection (and transaction)."""
    conn.execute("""
        INSERT INTO audit_events
        (event_id, timestamp, event_type, severity, import_id, file_name,
         document_type, workflow_id, message, details, actor)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        event.event_id,
        event.timestamp.isoformat(),
        event.event_type,
        event.severity.value,
        event.import_id,
        event.file_name,
        event.document_type,
        event.workflow_id,
        event.message,
        json.dumps(event.details, default=str),
        event.actor,
    ))


def query_audit_events(
    db_path: Path,
    import_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> List[AuditEvent]:
    """Query audit events, newest first."""
    clauses = []
    params: List[Any] = []
    if import_id:
        clauses.append("import_id = ?")
        params.append(import_id)
    if event_type:
        clauses.append("event_type = ?")
        params.append(event_type)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(limit)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(
            f"SELECT * FROM audit_events {where} ORDER BY id DESC LIMIT ?",
            params,
        ).fetchall()
    finally:
        conn.close()

    return [
        AuditEvent(
            event_id=row["event_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=row["event_type"],
            severity=AuditSeverity(row["severity"]),
            import_id=row["import_id"],
            file_name=row["file_name"],
            document_type=row["document_type"],
            workflow_id=row["workflow_id"],
            message=row["message"],
            details=json.loads(row["details"] or "{}"),
            actor=row["actor"],
        )
        for row in rows
    ]
