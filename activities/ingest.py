"""Ingestion activities.

Temporal activities wrapping the Classifier, Entity Resolver and Import
Committer for the durable single-document path (inbound email attachments,
cloud-drive files).

Pydantic models cross the activity boundary as camelCase JSON dicts.
DuplicateImport is returned as a normal outcome rather than raised, so a
re-delivered document does not fail the workflow.
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from temporalio import activity

from classifier import DocumentClassifier
from core.config import get_settings
from core.errors import DuplicateImport
from core.models.canonical import DocumentOrigin, DocumentType, ExtractionResult, RawDocument
from core.models.refs import ImportOptions
from core.observability.logging import with_correlation
from entity_resolver import EntityResolver, SQLiteRegistry
from extraction.client import OpenAIExtractionClient
from extraction.content import guess_mime_type
from importer import ImportCommitter, init_import_db


# =============================================================================
# Services
# =============================================================================

@dataclass
class IngestServices:
    """Collaborators used by the activities (swapped for fakes in tests)."""
    classifier: DocumentClassifier
    resolver: EntityResolver
    committer: ImportCommitter


_services: Optional[IngestServices] = None


def set_ingest_services(services: Optional[IngestServices]) -> None:
    global _services
    _services = services


def get_ingest_services() -> IngestServices:
    """Services for this worker process, built from settings on first use."""
    global _services
    if _services is None:
        settings = get_settings()
        init_import_db(settings.db_path)
        client = OpenAIExtractionClient(
            api_key=settings.openai_api_key,
            model=settings.model,
            timeout_s=settings.extraction_timeout_s,
        )
        _services = IngestServices(
            classifier=DocumentClassifier(client, max_ocr_pages=settings.max_ocr_pages),
            resolver=EntityResolver(SQLiteRegistry(settings.db_path)),
            committer=ImportCommitter(settings.db_path),
        )
    return _services


# =============================================================================
# Activity I/O
# =============================================================================

@dataclass
class ClassifyDocumentInput:
    """Input for classify_document activity.

    Attributes:
        file_path: Absolute path to the document on the worker
        mime_type: Declared MIME type (guessed from the extension when omitted)
        origin: direct_upload, cloud_drive or inbound_email
        document_type: Known document type, skips the first pass
    """
    file_path: str
    mime_type: Optional[str] = None
    origin: str = DocumentOrigin.CLOUD_DRIVE.value
    document_type: Optional[str] = None


@dataclass
class ClassifyDocumentOutput:
    extraction: dict
    document_type: str
    confidence: float


@dataclass
class ResolveDocumentInput:
    extraction: dict


@dataclass
class ResolveDocumentOutput:
    """Output from resolve_document activity.

    Attributes:
        extraction: Extraction with resolver-annotated line items
        vendor: Vendor MatchCandidate (camelCase dict) or None
        vendor_error: NoVendorAvailable message when no vendor could be proposed
        needs_confirmation: True when the vendor is missing or only suggested
    """
    extraction: dict
    vendor: Optional[dict] = None
    vendor_error: Optional[str] = None
    needs_confirmation: bool = True


@dataclass
class CommitDocumentInput:
    """Input for commit_document activity.

    Attributes:
        extraction: Confirmed extraction (camelCase dict)
        options: ImportOptions fields (camelCase or snake_case)
        actor: Who requested the commit
        workflow_id: Recorded on the audit event
        import_id: Deterministic import id chosen by the workflow
    """
    extraction: dict
    options: dict = field(default_factory=dict)
    actor: str = "workflow"
    workflow_id: Optional[str] = None
    import_id: Optional[str] = None


@dataclass
class CommitDocumentOutput:
    record: dict
    duplicate: bool = False


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def classify_document(input: ClassifyDocumentInput) -> ClassifyDocumentOutput:
    """Read a file and classify it.

    Raises:
        UnsupportedFormat: non-retryable
        ExtractionFailed: retried by the workflow's retry policy
    """
    path = Path(input.file_path)
    raw = RawDocument(
        content=path.read_bytes(),
        mime_type=input.mime_type or guess_mime_type(path),
        file_name=path.name,
        origin=DocumentOrigin(input.origin),
    )
    hint = DocumentType(input.document_type) if input.document_type else None

    activity.logger.info(f"Classifying {raw.file_name} ({raw.mime_type})")
    activity.heartbeat(f"Extracting {raw.file_name}")

    with with_correlation(workflow_id=activity.info().workflow_id, activity_name="classify_document"):
        extraction = await get_ingest_services().classifier.classify(raw, hint)

    activity.logger.info(f"{raw.file_name} classified as {extraction.document_type.value} ({extraction.confidence:.2f})")
    return ClassifyDocumentOutput(
        extraction=extraction.model_dump(mode="json", by_alias=True),
        document_type=extraction.document_type.value,
        confidence=extraction.confidence,
    )


@activity.defn
async def resolve_document(input: ResolveDocumentInput) -> ResolveDocumentOutput:
    """Annotate line items and propose a vendor."""
    extraction = ExtractionResult.model_validate(input.extraction)

    with with_correlation(workflow_id=activity.info().workflow_id, activity_name="resolve_document"):
        resolution = await asyncio.to_thread(get_ingest_services().resolver.resolve_document, extraction)

    return ResolveDocumentOutput(
        extraction=resolution.extraction.model_dump(mode="json", by_alias=True),
        vendor=resolution.vendor.model_dump(mode="json", by_alias=True) if resolution.vendor else None,
        vendor_error=resolution.vendor_error,
        needs_confirmation=resolution.needs_confirmation,
    )


@activity.defn
async def commit_document(input: CommitDocumentInput) -> CommitDocumentOutput:
    """Commit a confirmed extraction.

    Raises:
        ValidationError / MissingEntity: non-retryable
    """
    extraction = ExtractionResult.model_validate(input.extraction)
    options = ImportOptions.model_validate(input.options)

    with with_correlation(workflow_id=input.workflow_id, activity_name="commit_document"):
        try:
            record = await get_ingest_services().committer.commit(
                extraction,
                options,
                actor=input.actor,
                workflow_id=input.workflow_id,
                import_id=input.import_id,
            )
        except DuplicateImport as e:
            activity.logger.info(f"Duplicate of import {e.existing_record.import_id}, skipping")
            return CommitDocumentOutput(
                record=e.existing_record.model_dump(mode="json", by_alias=True),
                duplicate=True,
            )

    activity.logger.info(f"Committed import {record.import_id}")
    return CommitDocumentOutput(record=record.model_dump(mode="json", by_alias=True))
