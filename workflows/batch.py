"""Batch Orchestrator.

Drives the Classifier and the Entity Resolver over a set of documents (for
example a folder of files) with bounded concurrency:

- At most ``concurrency`` items run at once, which bounds concurrent
  extraction calls
- One item's failure is captured in its own BatchResult; siblings keep going
- Results come back in input order regardless of completion order
- ``run_batch`` never raises
- Cancellation is cooperative: items that have not started when the event
  is set become BatchCancelled results, in-flight items finish

An optional AutoCommitPolicy commits confidently classified items whose
vendor match is not a suggestion. Commits made earlier in a batch are never
rolled back by a later cancellation.

Run over a folder:
    python -m workflows.batch ./inbox --auto-commit
"""

import argparse
import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from classifier import DocumentClassifier
from core.errors import BatchCancelled, DuplicateImport, IngestionError
from core.models.canonical import DocumentOrigin, DocumentType, ExtractionResult, RawDocument
from core.models.refs import ImportOptions, ImportRecord, MatchCandidate
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from entity_resolver import EntityResolver
from extraction.content import guess_mime_type
from importer import ImportCommitter


logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 3


# =============================================================================
# Results
# =============================================================================

@dataclass
class BatchResult:
    """Outcome for one source document.

    Attributes:
        source: The input document
        success: False when classification, resolution or an auto-commit failed
        extraction: Classifier output (resolver-annotated when resolution ran)
        vendor: Vendor candidate from the resolver
        vendor_error: NoVendorAvailable message, if any
        record: ImportRecord when the item was auto-committed (or the
            existing record for a duplicate)
        error: The captured error
        duration_ms: Wall time spent on this item
    """
    source: RawDocument
    success: bool
    extraction: Optional[ExtractionResult] = None
    vendor: Optional[MatchCandidate] = None
    vendor_error: Optional[str] = None
    record: Optional[ImportRecord] = None
    error: Optional[Exception] = None
    duration_ms: float = 0.0

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, BatchCancelled)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.source.file_name,
            "success": self.success,
            "extraction": self.extraction.model_dump(mode="json", by_alias=True) if self.extraction else None,
            "vendor": self.vendor.model_dump(mode="json", by_alias=True) if self.vendor else None,
            "vendor_error": self.vendor_error,
            "record": self.record.model_dump(mode="json", by_alias=True) if self.record else None,
            "error": _error_dict(self.error) if self.error else None,
            "duration_ms": round(self.duration_ms, 1),
        }


def _error_dict(error: Exception) -> Dict[str, Any]:
    if isinstance(error, IngestionError):
        return error.to_dict()
    return {"kind": type(error).__name__, "message": str(error), "retriable": False}


def summarize(results: Sequence[BatchResult]) -> Dict[str, Any]:
    """Aggregate counts for a finished batch."""
    by_type: Dict[str, int] = {}
    for r in results:
        if r.extraction is not None:
            key = r.extraction.document_type.value
            by_type[key] = by_type.get(key, 0) + 1
    return {
        "total": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success and not r.cancelled),
        "cancelled": sum(1 for r in results if r.cancelled),
        "committed": sum(1 for r in results if r.record is not None and r.error is None),
        "by_document_type": by_type,
    }


# =============================================================================
# Auto-commit
# =============================================================================

def auto_commit_allowed(
    document_type: DocumentType,
    confidence: float,
    min_confidence: float,
    vendor_matched: bool,
) -> bool:
    """Unattended commit rule shared by batches and the durable workflow.

    POs and vendor invoices also need a vendor match that is not a suggestion.
    """
    if document_type == DocumentType.UNKNOWN or confidence < min_confidence:
        return False
    if document_type in (DocumentType.PURCHASE_ORDER, DocumentType.VENDOR_INVOICE):
        return vendor_matched
    return True


@dataclass
class AutoCommitPolicy:
    """When and how batch items are committed without review.

    An item qualifies when it is not ``unknown``, its confidence is at least
    ``min_confidence``, and its vendor candidate exists and is not a
    suggestion (freight and customs documents only need the confidence).
    """
    committer: ImportCommitter
    min_confidence: float = 0.85
    options: ImportOptions = field(default_factory=ImportOptions)
    actor: str = "batch"

    def qualifies(self, extraction: ExtractionResult, vendor: Optional[MatchCandidate]) -> bool:
        return auto_commit_allowed(
            extraction.document_type,
            extraction.confidence,
            self.min_confidence,
            vendor is not None and not vendor.suggested,
        )

    def options_for(self, vendor: Optional[MatchCandidate]) -> ImportOptions:
        if vendor is None or vendor.suggested or self.options.vendor_id is not None:
            return self.options
        return self.options.model_copy(update={"vendor_id": vendor.entity_id})


# =============================================================================
# Orchestrator
# =============================================================================

class BatchOrchestrator:
    """Runs classify (+ resolve, + optional commit) over many documents.

    Example:
        orchestrator = BatchOrchestrator(classifier, resolver, concurrency=3)
        results = await orchestrator.run_batch(sources)
        failed = [r for r in results if not r.success]
    """

    def __init__(
        self,
        classifier: DocumentClassifier,
        resolver: Optional[EntityResolver] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        auto_commit: Optional[AutoCommitPolicy] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.classifier = classifier
        self.resolver = resolver
        self.concurrency = concurrency
        self.auto_commit = auto_commit

    async def run_batch(
        self,
        sources: Sequence[RawDocument],
        cancel_event: Optional[asyncio.Event] = None,
        batch_id: Optional[str] = None,
    ) -> List[BatchResult]:
        """Process every source; never raises.

        Args:
            sources: Documents to process
            cancel_event: Set to stop starting new items
            batch_id: Correlation id for logs (generated when omitted)

        Returns:
            One BatchResult per source, in input order
        """
        batch_id = batch_id or f"batch-{uuid.uuid4().hex[:12]}"
        semaphore = asyncio.Semaphore(self.concurrency)
        start = time.time()

        with with_correlation(batch_id=batch_id):
            logger.info(
                f"Starting batch of {len(sources)} document(s)",
                extra_fields={"concurrency": self.concurrency, "auto_commit": self.auto_commit is not None},
            )
            results = await asyncio.gather(*[
                self._run_item(source, semaphore, cancel_event)
                for source in sources
            ])

            duration_ms = (time.time() - start) * 1000
            summary = summarize(results)
            get_metrics().record_batch(
                items=summary["total"],
                failures=summary["failed"],
                cancelled=summary["cancelled"],
                duration_ms=duration_ms,
            )
            logger.info(
                "Batch finished",
                extra_fields={**summary, "duration_ms": round(duration_ms, 1)},
            )
        return list(results)

    async def _run_item(
        self,
        source: RawDocument,
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event],
    ) -> BatchResult:
        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(source)

        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(source)

            start = time.time()
            with with_correlation(file_name=source.file_name):
                result = await self._process(source)
            result.duration_ms = (time.time() - start) * 1000
            return result

    @staticmethod
    def _cancelled(source: RawDocument) -> BatchResult:
        error = BatchCancelled("Batch was cancelled before this document started", file_name=source.file_name)
        return BatchResult(source=source, success=False, error=error)

    async def _process(self, source: RawDocument) -> BatchResult:
        try:
            extraction = await self.classifier.classify(source)
        except Exception as e:
            logger.warning(f"Classification failed: {e}")
            return BatchResult(source=source, success=False, error=e)

        result = BatchResult(source=source, success=True, extraction=extraction)
        if extraction.document_type == DocumentType.UNKNOWN or self.resolver is None:
            return result

        try:
            resolution = await asyncio.to_thread(self.resolver.resolve_document, extraction)
        except Exception as e:
            logger.warning(f"Entity resolution failed: {e}")
            result.success = False
            result.error = e
            return result

        result.extraction = resolution.extraction
        result.vendor = resolution.vendor
        result.vendor_error = resolution.vendor_error

        policy = self.auto_commit
        if policy is None or not policy.qualifies(resolution.extraction, resolution.vendor):
            return result

        try:
            result.record = await policy.committer.commit(
                resolution.extraction,
                policy.options_for(resolution.vendor),
                actor=policy.actor,
            )
        except DuplicateImport as e:
            result.record = e.existing_record
            result.error = e
        except Exception as e:
            logger.warning(f"Auto-commit failed: {e}")
            result.success = False
            result.error = e
        return result


# =============================================================================
# Folder sources
# =============================================================================

def sources_from_directory(
    folder: Path,
    origin: DocumentOrigin = DocumentOrigin.CLOUD_DRIVE,
) -> List[RawDocument]:
    """Read every regular file in ``folder`` (sorted by name) as a RawDocument.

    MIME types are guessed from the extension; unsupported files are still
    returned so the batch reports them as UnsupportedFormat.
    """
    sources = []
    for path in sorted(p for p in Path(folder).iterdir() if p.is_file() and not p.name.startswith(".")):
        sources.append(RawDocument(
            content=path.read_bytes(),
            mime_type=guess_mime_type(path),
            file_name=path.name,
            origin=origin,
        ))
    return sources


async def run_folder(folder: Path, auto_commit: bool = False, concurrency: Optional[int] = None) -> List[BatchResult]:
    """Classify (and optionally commit) every file in a folder with live services."""
    from core.config import get_settings
    from entity_resolver import SQLiteRegistry
    from extraction.client import OpenAIExtractionClient
    from importer import init_import_db

    settings = get_settings()
    init_import_db(settings.db_path)
    client = OpenAIExtractionClient(
        api_key=settings.openai_api_key,
        model=settings.model,
        timeout_s=settings.extraction_timeout_s,
    )
    policy = None
    if auto_commit:
        policy = AutoCommitPolicy(
            committer=ImportCommitter(settings.db_path),
            min_confidence=settings.auto_commit_confidence,
        )
    orchestrator = BatchOrchestrator(
        DocumentClassifier(client, max_ocr_pages=settings.max_ocr_pages),
        EntityResolver(SQLiteRegistry(settings.db_path)),
        concurrency=concurrency or settings.batch_concurrency,
        auto_commit=policy,
    )
    return await orchestrator.run_batch(sources_from_directory(folder))


def main():
    """Entry point for folder batches."""
    from core.observability.logging import configure_logging

    parser = argparse.ArgumentParser(description="Classify a folder of business documents")
    parser.add_argument("folder", type=Path, help="Folder containing documents")
    parser.add_argument("--auto-commit", action="store_true", help="Commit confident, fully matched documents")
    parser.add_argument("--concurrency", "-c", type=int, default=None, help="Concurrent extraction calls")
    args = parser.parse_args()

    configure_logging()
    results = asyncio.run(run_folder(args.folder, args.auto_commit, args.concurrency))
    print(json.dumps({
        "summary": summarize(results),
        "results": [r.to_dict() for r in results],
    }, indent=2, default=str))


if __name__ == "__main__":
    main()
