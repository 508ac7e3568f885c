"""Import History Store.

Append-only log of import attempts. Each attempt writes a ``pending`` row
when it starts and a ``completed`` or ``failed`` row when it ends; rows are
never updated. A partial unique index allows at most one ``completed`` row
per fingerprint, which is what makes duplicate detection hold across
processes.
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.config import DEFAULT_DB_PATH
from core.models.canonical import DocumentType
from core.models.refs import ImportHistoryEntry, ImportRecord, ImportStatus
from importer.db import connect


def _row_to_entry(row: sqlite3.Row) -> ImportHistoryEntry:
    return ImportHistoryEntry(
        id=row["id"],
        import_id=row["import_id"],
        file_name=row["file_name"],
        document_type=DocumentType(row["document_type"]),
        status=ImportStatus(row["status"]),
        records_created=row["records_created"],
        records_updated=row["records_updated"],
        fingerprint=row["fingerprint"],
        error=row["error"],
        actor=row["actor"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
    )


def insert_history_entry(conn: sqlite3.Connection, entry: ImportHistoryEntry) -> ImportHistoryEntry:
    """Insert a history row using the caller's connection (and transaction).

    Raises:
        sqlite3.IntegrityError: A completed row with this fingerprint exists
    """
    cursor = conn.execute("""
        INSERT INTO import_history
        (import_id, file_name, document_type, status, records_created,
         records_updated, fingerprint, error, actor, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        entry.import_id,
        entry.file_name,
        entry.document_type.value,
        entry.status.value,
        entry.records_created,
        entry.records_updated,
        entry.fingerprint,
        entry.error,
        entry.actor,
        entry.timestamp.isoformat(),
    ))
    return entry.model_copy(update={"id": cursor.lastrowid})


def insert_import_record(conn: sqlite3.Connection, record: ImportRecord) -> None:
    conn.execute("""
        INSERT INTO import_records
        (import_id, fingerprint, document_type, natural_key, source_file_name,
         actor, record_json, committed_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        record.import_id,
        record.fingerprint,
        record.document_type.value,
        record.natural_key,
        record.source_file_name,
        record.actor,
        record.model_dump_json(),
        record.committed_at.isoformat(),
    ))


class ImportHistoryStore:
    """Read/append access to import history and committed import records.

    Example:
        store = ImportHistoryStore(db_path)
        entries = store.list_entries(limit=20)
        existing = store.find_completed_record(fingerprint)
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = db_path

    def append(
        self,
        import_id: str,
        file_name: str,
        document_type: DocumentType,
        status: ImportStatus,
        records_created: int = 0,
        records_updated: int = 0,
        fingerprint: Optional[str] = None,
        error: Optional[str] = None,
        actor: str = "system",
    ) -> ImportHistoryEntry:
        """Append one history row in its own transaction."""
        entry = ImportHistoryEntry(
            import_id=import_id,
            file_name=file_name,
            document_type=document_type,
            status=status,
            records_created=records_created,
            records_updated=records_updated,
            fingerprint=fingerprint,
            error=error,
            actor=actor,
            timestamp=datetime.utcnow(),
        )
        conn = connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            saved = insert_history_entry(conn, entry)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return saved

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        conn = connect(self.db_path)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def find_completed(self, fingerprint: str) -> Optional[ImportHistoryEntry]:
        """The completed history row for a fingerprint, if any."""
        rows = self._query(
            "SELECT * FROM import_history WHERE fingerprint = ? AND status = 'completed'",
            (fingerprint,),
        )
        return _row_to_entry(rows[0]) if rows else None

    def get_record(self, import_id: str) -> Optional[ImportRecord]:
        rows = self._query("SELECT record_json FROM import_records WHERE import_id = ?", (import_id,))
        return ImportRecord.model_validate_json(rows[0]["record_json"]) if rows else None

    def find_completed_record(self, fingerprint: str) -> Optional[ImportRecord]:
        """The ImportRecord of the completed import with this fingerprint."""
        entry = self.find_completed(fingerprint)
        if entry is None:
            return None
        return self.get_record(entry.import_id)

    def list_entries(
        self,
        limit: int = 50,
        document_type: Optional[DocumentType] = None,
        status: Optional[ImportStatus] = None,
    ) -> List[ImportHistoryEntry]:
        """History rows, newest first.

        Args:
            limit: Maximum rows returned
            document_type: Only rows for this document type
            status: Only rows with this status
        """
        clauses = []
        params: List[Any] = []
        if document_type is not None:
            clauses.append("document_type = ?")
            params.append(document_type.value)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = self._query(
            f"SELECT * FROM import_history {where} ORDER BY id DESC LIMIT ?",
            params,
        )
        return [_row_to_entry(r) for r in rows]

    def entries_for(self, import_id: str) -> List[ImportHistoryEntry]:
        """All rows of one import attempt, oldest first."""
        rows = self._query(
            "SELECT * FROM import_history WHERE import_id = ? ORDER BY id",
            (import_id,),
        )
        return [_row_to_entry(r) for r in rows]

    def summary(self) -> Dict[str, Any]:
        """Counts of final outcomes per status and per document type.

        Pending rows are excluded; every attempt that finished also has a
        completed or failed row.
        """
        rows = self._query("""
            SELECT document_type, status, COUNT(*) AS n,
                   SUM(records_created) AS created, SUM(records_updated) AS updated
            FROM import_history
            WHERE status != 'pending'
            GROUP BY document_type, status
        """)
        by_status: Dict[str, int] = {s.value: 0 for s in ImportStatus if s != ImportStatus.PENDING}
        by_type: Dict[str, Dict[str, int]] = {}
        records_created = 0
        records_updated = 0
        for row in rows:
            by_status[row["status"]] += row["n"]
            counts = by_type.setdefault(row["document_type"], {"completed": 0, "failed": 0})
            counts[row["status"]] += row["n"]
            records_created += row["created"] or 0
            records_updated += row["updated"] or 0
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_document_type": by_type,
            "records_created": records_created,
            "records_updated": records_updated,
        }
