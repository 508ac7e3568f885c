"""Document Import Workflow.

Durable single-document path for documents that arrive without a person
watching (inbound email attachments, cloud-drive drops):

CLASSIFY -> RESOLVE -> (auto-commit when allowed) -> DONE

Documents that are unknown, below the confidence threshold or without a
confirmed vendor stop at NEEDS_REVIEW; a reviewer commits them through
the HTTP API.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.ingest import (
        classify_document,
        resolve_document,
        commit_document,
        ClassifyDocumentInput,
        ResolveDocumentInput,
        CommitDocumentInput,
    )
    from core.errors import NON_RETRYABLE_ERRORS
    from core.models.canonical import DocumentType
    from workflows.batch import auto_commit_allowed


# Task queues
TASK_QUEUE_DEFAULT = "ingest-default"
TASK_QUEUE_LLM = "ingest-llm"

# Extraction failures are transient; everything else is not worth retrying
EXTRACTION_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=5),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(minutes=2),
    maximum_attempts=5,
    non_retryable_error_types=NON_RETRYABLE_ERRORS,
)

DB_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    maximum_attempts=3,
    non_retryable_error_types=NON_RETRYABLE_ERRORS,
)


class ImportStage:
    CLASSIFIED = "CLASSIFIED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    COMMITTED = "COMMITTED"
    DUPLICATE = "DUPLICATE"


@dataclass
class DocumentImportInput:
    """Input for Document Import Workflow.

    Attributes:
        file_path: Absolute path to the document on the worker
        mime_type: Declared MIME type (optional)
        origin: direct_upload, cloud_drive or inbound_email
        document_type: Known document type (optional)
        auto_commit: Commit without review when the rule allows it
        min_confidence: Confidence threshold for auto-commit
        options: ImportOptions fields used for the commit
        actor: Recorded on the ImportRecord and audit event
    """
    file_path: str
    mime_type: Optional[str] = None
    origin: str = "cloud_drive"
    document_type: Optional[str] = None
    auto_commit: bool = False
    min_confidence: float = 0.85
    options: dict = field(default_factory=dict)
    actor: str = "workflow"


@dataclass
class DocumentImportResult:
    stage: str
    document_type: str
    confidence: float
    extraction: dict
    vendor: Optional[dict] = None
    vendor_error: Optional[str] = None
    record: Optional[dict] = None


@workflow.defn
class DocumentImportWorkflow:
    """Classify, resolve and optionally commit one document."""

    @workflow.run
    async def run(self, input: DocumentImportInput) -> DocumentImportResult:
        workflow.logger.info(f"Starting document import for {input.file_path}")

        classified = await workflow.execute_activity(
            classify_document,
            ClassifyDocumentInput(
                file_path=input.file_path,
                mime_type=input.mime_type,
                origin=input.origin,
                document_type=input.document_type,
            ),
            task_queue=TASK_QUEUE_LLM,
            start_to_close_timeout=timedelta(minutes=5),  # LLM calls can be slow
            heartbeat_timeout=timedelta(minutes=3),
            retry_policy=EXTRACTION_RETRY_POLICY,
        )

        document_type = DocumentType(classified.document_type)
        if document_type == DocumentType.UNKNOWN:
            workflow.logger.info("Document not recognized, sending to review")
            return DocumentImportResult(
                stage=ImportStage.NEEDS_REVIEW,
                document_type=classified.document_type,
                confidence=classified.confidence,
                extraction=classified.extraction,
            )

        resolved = await workflow.execute_activity(
            resolve_document,
            ResolveDocumentInput(extraction=classified.extraction),
            task_queue=TASK_QUEUE_DEFAULT,
            start_to_close_timeout=timedelta(seconds=60),
            retry_policy=DB_RETRY_POLICY,
        )

        result = DocumentImportResult(
            stage=ImportStage.CLASSIFIED,
            document_type=classified.document_type,
            confidence=classified.confidence,
            extraction=resolved.extraction,
            vendor=resolved.vendor,
            vendor_error=resolved.vendor_error,
        )

        allowed = auto_commit_allowed(
            document_type,
            classified.confidence,
            input.min_confidence,
            not resolved.needs_confirmation,
        )
        if not input.auto_commit:
            return result
        if not allowed:
            workflow.logger.info("Auto-commit not allowed, sending to review")
            result.stage = ImportStage.NEEDS_REVIEW
            return result

        options = dict(input.options)
        if not resolved.needs_confirmation and "vendorId" not in options and "vendor_id" not in options:
            options["vendorId"] = resolved.vendor.get("entityId")

        committed = await workflow.execute_activity(
            commit_document,
            CommitDocumentInput(
                extraction=resolved.extraction,
                options=options,
                actor=input.actor,
                workflow_id=workflow.info().workflow_id,
                import_id=f"imp-{workflow.uuid4().hex[:16]}",
            ),
            task_queue=TASK_QUEUE_DEFAULT,
            start_to_close_timeout=timedelta(seconds=60),
            retry_policy=DB_RETRY_POLICY,
        )

        result.record = committed.record
        result.stage = ImportStage.DUPLICATE if committed.duplicate else ImportStage.COMMITTED
        workflow.logger.info(f"Document import finished: {result.stage}")
        return result
