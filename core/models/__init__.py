"""Core data models for document ingestion."""

from core.models.canonical import (
    # Base
    CanonicalBase,
    DecimalValue,
    MoneyValue,
    DateValue,

    # Enums
    DocumentType,
    DocumentOrigin,
    CustomsDocumentType,
    MatchMethod,

    # Documents
    RawDocument,
    LineItem,
    CustomsLineItem,
    PurchaseOrderPayload,
    VendorInvoicePayload,
    FreightInvoicePayload,
    CustomsDocumentPayload,
    DocumentPayload,
    PAYLOAD_MODELS,
    ExtractionResult,
)

from core.models.refs import (
    MatchCandidate,
    ImportOptions,
    EntityRef,
    ImportRecord,
    ImportStatus,
    ImportHistoryEntry,
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    "CanonicalBase",
    "DecimalValue",
    "MoneyValue",
    "DateValue",
    "DocumentType",
    "DocumentOrigin",
    "CustomsDocumentType",
    "MatchMethod",
    "RawDocument",
    "LineItem",
    "CustomsLineItem",
    "PurchaseOrderPayload",
    "VendorInvoicePayload",
    "FreightInvoicePayload",
    "CustomsDocumentPayload",
    "DocumentPayload",
    "PAYLOAD_MODELS",
    "ExtractionResult",
    "MatchCandidate",
    "ImportOptions",
    "EntityRef",
    "ImportRecord",
    "ImportStatus",
    "ImportHistoryEntry",
    "AuditEvent",
    "AuditSeverity",
]
