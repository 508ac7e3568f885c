"""
Structured Logging with Correlation IDs

Provides logging utilities that automatically include:
- batch_id: Links logs to a batch run
- file_name: Links logs to a specific source document
- document_type: The type the document was classified as
- import_id: Links logs to a commit attempt
- workflow_id: Links logs to Temporal workflow execution

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(batch_id="batch-001", file_name="po-24.pdf"):
        logger.info("Classifying document")  # Automatically includes correlation IDs
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict, Any
from contextlib import contextmanager


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across one document's processing."""
    batch_id: Optional[str] = None
    file_name: Optional[str] = None
    document_type: Optional[str] = None
    import_id: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


# Context variable for async/thread-safe correlation
_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.

    Each asyncio task gets its own copy of the context, so concurrent
    batch items never see each other's file names.
    """
    new_ctx = get_correlation_context().merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that includes correlation context.

    Output format:
    {
        "timestamp": "2024-01-09T12:00:00.000Z",
        "level": "INFO",
        "logger": "classifier.classifier",
        "message": "Classified document",
        "batch_id": "batch-001",
        "file_name": "po-24.pdf",
        "confidence": 0.92
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_data.update(get_correlation_context().to_dict())

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter that includes key correlation IDs.

    Output format:
    2024-01-09 12:00:00 [INFO ] importer.committer [batch-001/po-24.pdf]: Committed import
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        correlation_parts = []
        if ctx.batch_id:
            correlation_parts.append(ctx.batch_id)
        if ctx.workflow_id:
            correlation_parts.append(ctx.workflow_id[:12])
        if ctx.file_name:
            correlation_parts.append(ctx.file_name)
        if ctx.import_id:
            correlation_parts.append(f"imp:{ctx.import_id[:8]}")

        correlation = "/".join(correlation_parts) if correlation_parts else "-"
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        extra = getattr(record, "extra_fields", None)
        if extra:
            msg += " " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """Thin wrapper over ``logging.Logger`` taking ``extra_fields=`` per call.

    Correlation IDs come from the formatters; ``stacklevel`` points records
    at the caller rather than this wrapper.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _emit(self, level: int, msg: str, extra_fields: Optional[Dict[str, Any]], **kwargs):
        if self._logger.isEnabledFor(level):
            self._logger.log(level, msg, extra={"extra_fields": extra_fields or {}}, stacklevel=3, **kwargs)

    def info(self, msg: str, extra_fields: Optional[Dict[str, Any]] = None, **kwargs):
        self._emit(logging.INFO, msg, extra_fields, **kwargs)

    def warning(self, msg: str, extra_fields: Optional[Dict[str, Any]] = None, **kwargs):
        self._emit(logging.WARNING, msg, extra_fields, **kwargs)

    def error(self, msg: str, extra_fields: Optional[Dict[str, Any]] = None, **kwargs):
        self._emit(logging.ERROR, msg, extra_fields, **kwargs)


# =============================================================================
# Logger Factory
# =============================================================================

_PACKAGE_LOGGERS = (
    "activities", "workflows", "api", "core", "classifier",
    "extraction", "entity_resolver", "importer", "temporalio",
)
_QUIET_LOGGERS = ("httpx", "httpcore", "openai")

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False


def configure_logging(level: int = logging.INFO, json_format: Optional[bool] = None):
    """Install one stdout handler on the root logger (idempotent).

    Args:
        level: Level for the handler and this project's loggers
        json_format: JSON lines when True; None reads ``INGEST_LOG_JSON``
    """
    global _configured
    if _configured:
        return

    if json_format is None:
        from core.config import get_settings
        json_format = get_settings().log_json

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Cached CorrelatedLogger for ``name``; configures logging on first use."""
    if name not in _loggers:
        if not _configured:
            configure_logging()
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
