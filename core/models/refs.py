"""Match, import and audit models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict

from core.models.canonical import CanonicalBase, DocumentType, MatchMethod


class MatchCandidate(CanonicalBase):
    """Proposed link from an extracted name to a registry record.

    Attributes:
        entity_type: "vendor" or "material"
        entity_id: Registry id of the proposed record (None when nothing matched)
        entity_name: Display name of the proposed record
        match_score: Confidence of the link in [0, 1]
        match_method: How the link was found
        suggested: True when the candidate is a low-confidence fallback
            that needs human confirmation before commit
    """
    model_config = ConfigDict(frozen=True)

    entity_type: str
    entity_id: Optional[int] = None
    entity_name: Optional[str] = None
    match_score: float = Field(default=0.0, ge=0.0, le=1.0)
    match_method: MatchMethod
    suggested: bool = False


class ImportOptions(CanonicalBase):
    """Caller-chosen options applied by the Import Committer.

    Attributes:
        mark_as_received: Create the PO/invoice as received instead of draft
        update_inventory: Increment on-hand quantities (only with mark_as_received)
        link_to_po: Link invoices and customs documents to an existing PO
        vendor_id: Explicit vendor override (skips name lookup)
        create_vendor: Create the vendor from the document if it does not exist
        create_missing_materials: Create materials for unmatched line items
    """
    mark_as_received: bool = False
    update_inventory: bool = False
    link_to_po: bool = False
    vendor_id: Optional[int] = None
    create_vendor: bool = False
    create_missing_materials: bool = False


class EntityRef(CanonicalBase):
    """Reference to a business record written by a commit."""
    model_config = ConfigDict(frozen=True)

    entity_type: str
    entity_id: int


class ImportRecord(CanonicalBase):
    """The outcome of committing an ExtractionResult. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    import_id: str
    fingerprint: Optional[str] = None
    document_type: DocumentType
    natural_key: Optional[str] = None
    source_file_name: str
    actor: str
    created: List[EntityRef] = Field(default_factory=list)
    updated: List[EntityRef] = Field(default_factory=list)
    options: ImportOptions = Field(default_factory=ImportOptions)
    warnings: List[str] = Field(default_factory=list)
    committed_at: datetime


class ImportStatus(str, Enum):
    """Lifecycle status of one import attempt."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportHistoryEntry(CanonicalBase):
    """One row of the append-only import history."""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    import_id: str
    file_name: str
    document_type: DocumentType
    status: ImportStatus
    records_created: int = 0
    records_updated: int = 0
    fingerprint: Optional[str] = None
    error: Optional[str] = None
    actor: str = "system"
    timestamp: datetime


# =============================================================================
# Audit Event Models
# =============================================================================

class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking ingestion actions."""
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (IMPORT_COMMITTED, IMPORT_FAILED, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")

    # Context
    import_id: Optional[str] = Field(None, description="Associated import")
    file_name: Optional[str] = Field(None, description="Source file name")
    document_type: Optional[str] = Field(None, description="Document type")
    workflow_id: Optional[str] = Field(None, description="Temporal workflow ID")

    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")

    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
