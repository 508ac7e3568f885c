"""Error taxonomy for document ingestion.

Every error carries enough context (source file name, attempted document
type, offending field) for a reviewer to act without re-running extraction.

- UnsupportedFormat: fatal, caller must choose a different file
- ExtractionFailed: transient, caller may retry the whole classify call
- ValidationError: malformed or missing required field, surfaced to a reviewer
- NoVendorAvailable / MissingEntity: block commit until the entity exists
- DuplicateImport: non-fatal, carries the existing ImportRecord
- BatchCancelled: item was never started because the batch was cancelled
"""

from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from core.models.refs import ImportRecord


class IngestionError(Exception):
    """Base class for all ingestion errors."""

    retriable: bool = False

    def __init__(
        self,
        message: str,
        *,
        file_name: Optional[str] = None,
        document_type: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.file_name = file_name
        self.document_type = document_type
        self.field = field

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses and batch results."""
        data: Dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "retriable": self.retriable,
        }
        if self.file_name:
            data["file_name"] = self.file_name
        if self.document_type:
            data["document_type"] = self.document_type
        if self.field:
            data["field"] = self.field
        return data


class UnsupportedFormat(IngestionError):
    """MIME type outside the supported set, or content unreadable as its type."""

    def __init__(self, message: str, *, mime_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.mime_type = mime_type

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.mime_type:
            data["mime_type"] = self.mime_type
        return data


class ExtractionFailed(IngestionError):
    """The extraction call failed (network, timeout, rate limit exhausted)."""

    retriable = True


class ValidationError(IngestionError):
    """Payload is malformed or missing a required field."""


class NoVendorAvailable(IngestionError):
    """No vendor matched and no active vendor exists to suggest."""


class MissingEntity(IngestionError):
    """A referenced vendor or material does not exist."""

    def __init__(
        self,
        message: str,
        *,
        entity_type: str,
        entity_ref: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.entity_type = entity_type
        self.entity_ref = entity_ref

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["entity_type"] = self.entity_type
        if self.entity_ref is not None:
            data["entity_ref"] = self.entity_ref
        return data


class DuplicateImport(IngestionError):
    """A completed import with the same fingerprint already exists."""

    def __init__(self, message: str, *, existing_record: "ImportRecord", **kwargs):
        super().__init__(message, **kwargs)
        self.existing_record = existing_record

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["existing_record"] = self.existing_record.model_dump(mode="json")
        return data


class BatchCancelled(IngestionError):
    """Raised for batch items that had not started when cancellation was requested."""


# Error class names that must never be retried by a workflow engine.
NON_RETRYABLE_ERRORS = [
    UnsupportedFormat.__name__,
    ValidationError.__name__,
    NoVendorAvailable.__name__,
    MissingEntity.__name__,
    DuplicateImport.__name__,
]
