"""Classifier - document type detection and validated field extraction."""

from classifier.classifier import DocumentClassifier, normalize_confidence
from classifier.schemas import (
    EXPECTED_FIELDS,
    REQUIRED_FIELDS,
    normalize_document_type,
)

__all__ = [
    "DocumentClassifier",
    "normalize_confidence",
    "EXPECTED_FIELDS",
    "REQUIRED_FIELDS",
    "normalize_document_type",
]
