"""Request dependencies and error mapping for the API."""

from fastapi import Request
from fastapi.responses import JSONResponse

from activities.ingest import IngestServices
from core.errors import (
    BatchCancelled,
    DuplicateImport,
    ExtractionFailed,
    IngestionError,
    MissingEntity,
    NoVendorAvailable,
    UnsupportedFormat,
    ValidationError,
)
from core.observability.logging import get_logger


logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    UnsupportedFormat: 415,
    ExtractionFailed: 502,
    ValidationError: 422,
    NoVendorAvailable: 422,
    MissingEntity: 422,
    DuplicateImport: 409,
    BatchCancelled: 409,
}


def get_services(request: Request) -> IngestServices:
    """Classifier, resolver and committer attached to the app at startup."""
    return request.app.state.services


def status_code_for(error: IngestionError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    """Render domain errors as ``{"error": {...}}`` with a matching status code."""
    status_code = status_code_for(exc)
    logger.warning(
        f"{request.method} {request.url.path} failed: {exc.kind}",
        extra_fields={"status_code": status_code, "error": exc.message},
    )
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})
