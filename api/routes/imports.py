"""Document import endpoints.

parse -> (review / correct) -> commit, plus history for traceability.
Request and response bodies use camelCase field names.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import Field

from activities.ingest import IngestServices
from api.deps import get_services
from core.config import get_settings
from core.models.canonical import (
    CanonicalBase,
    DocumentOrigin,
    DocumentType,
    ExtractionResult,
    LineItem,
    RawDocument,
)
from core.models.refs import ImportOptions, ImportStatus
from extraction.content import guess_mime_type
from workflows.batch import BatchOrchestrator, summarize


router = APIRouter()


class MatchMaterialsRequest(CanonicalBase):
    """Line items to (re-)match against the material registry."""
    line_items: List[LineItem]


class CommitRequest(CanonicalBase):
    """A reviewed extraction plus the options to apply."""
    extraction: ExtractionResult
    options: ImportOptions = Field(default_factory=ImportOptions)
    actor: str = "api"


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


async def _raw_document(file: UploadFile, origin: DocumentOrigin) -> RawDocument:
    content = await file.read()
    file_name = file.filename or "upload"
    mime_type = file.content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = guess_mime_type(Path(file_name))
    return RawDocument(content=content, mime_type=mime_type, file_name=file_name, origin=origin)


@router.post("/parse")
async def parse_document(
    file: UploadFile = File(...),
    document_type: Optional[DocumentType] = Form(None, alias="documentType"),
    origin: DocumentOrigin = Form(DocumentOrigin.DIRECT_UPLOAD),
    services: IngestServices = Depends(get_services),
) -> Dict[str, Any]:
    """Classify an uploaded document and propose vendor/material matches.

    Nothing is written; the reviewed result is sent back to ``/commit``.
    """
    raw = await _raw_document(file, origin)
    hint = document_type if document_type and document_type != DocumentType.UNKNOWN else None
    extraction = await services.classifier.classify(raw, hint)
    resolution = await asyncio.to_thread(services.resolver.resolve_document, extraction)
    return {
        "extraction": _dump(resolution.extraction),
        "vendor": _dump(resolution.vendor) if resolution.vendor else None,
        "vendorError": resolution.vendor_error,
        "needsConfirmation": resolution.needs_confirmation,
    }


@router.post("/parse-batch")
async def parse_batch(
    files: List[UploadFile] = File(...),
    origin: DocumentOrigin = Form(DocumentOrigin.DIRECT_UPLOAD),
    services: IngestServices = Depends(get_services),
) -> Dict[str, Any]:
    """Classify several uploads with bounded concurrency; failures are per file."""
    sources = [await _raw_document(f, origin) for f in files]
    orchestrator = BatchOrchestrator(
        services.classifier,
        services.resolver,
        concurrency=get_settings().batch_concurrency,
    )
    results = await orchestrator.run_batch(sources)
    return {
        "summary": summarize(results),
        "results": [r.to_dict() for r in results],
    }


@router.post("/match-materials")
async def match_materials(
    request: MatchMaterialsRequest,
    services: IngestServices = Depends(get_services),
) -> Dict[str, Any]:
    """Re-run material matching after the reviewer edited line items."""
    items = await asyncio.to_thread(services.resolver.resolve_line_items, request.line_items)
    return {"lineItems": [_dump(item) for item in items]}


@router.post("/commit")
async def commit_import(
    request: CommitRequest,
    services: IngestServices = Depends(get_services),
) -> Dict[str, Any]:
    """Commit a reviewed extraction.

    Errors: 409 with the existing record for duplicates, 422 for validation
    errors and missing vendors/materials.
    """
    record = await services.committer.commit(request.extraction, request.options, actor=request.actor)
    return _dump(record)


@router.get("/history")
async def list_history(
    limit: int = Query(50, ge=1, le=500),
    document_type: Optional[DocumentType] = Query(None, alias="documentType"),
    status: Optional[ImportStatus] = Query(None),
    services: IngestServices = Depends(get_services),
) -> Dict[str, Any]:
    """Import history, newest first."""
    entries = services.committer.history.list_entries(limit=limit, document_type=document_type, status=status)
    return {"items": [_dump(e) for e in entries], "count": len(entries)}


@router.get("/history/summary")
async def history_summary(services: IngestServices = Depends(get_services)) -> Dict[str, Any]:
    return services.committer.history.summary()


@router.get("/{import_id}")
async def get_import(import_id: str, services: IngestServices = Depends(get_services)) -> Dict[str, Any]:
    """A committed ImportRecord with its history rows."""
    history = services.committer.history
    record = history.get_record(import_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Import not found")
    return {
        "record": _dump(record),
        "history": [_dump(e) for e in history.entries_for(import_id)],
    }
