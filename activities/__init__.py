"""Activity definitions module."""

from activities.ingest import (
    classify_document,
    resolve_document,
    commit_document,
    set_ingest_services,
    get_ingest_services,
    IngestServices,
    ClassifyDocumentInput,
    ClassifyDocumentOutput,
    ResolveDocumentInput,
    ResolveDocumentOutput,
    CommitDocumentInput,
    CommitDocumentOutput,
)

__all__ = [
    # Activities
    "classify_document",
    "resolve_document",
    "commit_document",
    # Services
    "set_ingest_services",
    "get_ingest_services",
    "IngestServices",
    # I/O
    "ClassifyDocumentInput",
    "ClassifyDocumentOutput",
    "ResolveDocumentInput",
    "ResolveDocumentOutput",
    "CommitDocumentInput",
    "CommitDocumentOutput",
]
