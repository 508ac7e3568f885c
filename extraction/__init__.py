"""Extraction - content preparation and the external extraction call."""

from extraction.client import ExtractionClient, OpenAIExtractionClient, parse_json_str
from extraction.content import (
    PreparedContent,
    SUPPORTED_MIME_TYPES,
    ensure_supported,
    guess_mime_type,
    normalize_mime_type,
    prepare_content,
)

__all__ = [
    "ExtractionClient",
    "OpenAIExtractionClient",
    "parse_json_str",
    "PreparedContent",
    "SUPPORTED_MIME_TYPES",
    "ensure_supported",
    "guess_mime_type",
    "normalize_mime_type",
    "prepare_content",
]
