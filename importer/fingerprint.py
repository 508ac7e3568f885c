"""Document fingerprints for duplicate detection.

fingerprint = sha256(document_type | party scope | normalized business number)

The party name (vendor, carrier or shipper) scopes the business number so
two vendors that both issue "INV-1001" do not collide. The scope is built
from the name's significant tokens, so "Acme Corp." and "ACME CORP" from two
extractions of the same file agree. Documents without a business number get
no fingerprint and are always importable.
"""

import hashlib
import re
from typing import Optional

from core.models.canonical import DocumentPayload
from entity_resolver.normalize import normalize_name, tokenize_name


def normalize_natural_key(key: Optional[str]) -> str:
    """Upper-case, drop surrounding whitespace and inner whitespace runs."""
    if not key:
        return ""
    return re.sub(r"\s+", "", key).upper()


def party_scope(name: Optional[str]) -> str:
    """Punctuation, legal suffixes and case do not change the scope.

    Examples:
        >>> party_scope("Acme Corp., Inc.")
        'acme'
    """
    tokens = tokenize_name(name or "")
    return " ".join(tokens) if tokens else normalize_name(name)


def compute_fingerprint(payload: DocumentPayload) -> Optional[str]:
    """Fingerprint for a payload, or None if it has no business number."""
    key = normalize_natural_key(payload.natural_key)
    if not key:
        return None
    material = f"{payload.document_type}|{party_scope(payload.party_name)}|{key}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
