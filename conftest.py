"""Shared fixtures for the ingestion tests.

FakeExtractionClient stands in for the extraction model: responses are
chosen by a marker string found in the (text) content sent to it, so each
test document carries the marker of the response it should get.
"""

import asyncio
import copy
from types import SimpleNamespace
from typing import Any, Dict, Optional

import fitz
import pytest

from core.models.canonical import (
    DocumentOrigin,
    DocumentType,
    ExtractionResult,
    LineItem,
    PurchaseOrderPayload,
    RawDocument,
)
from entity_resolver import add_material, add_vendor
from importer import init_import_db


UNKNOWN_RESPONSE = {"documentType": "unknown", "confidence": 0.0, "fields": {}}


class FakeExtractionClient:
    """Deterministic ExtractionClient.

    Args:
        responses: marker -> response (dict, raw JSON string, or an
            exception instance to raise)
        default: Response when no marker matches (image content never matches)
        delays: marker -> seconds to sleep before answering
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        default: Any = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.responses = dict(responses or {})
        self.default = default if default is not None else UNKNOWN_RESPONSE
        self.delays = dict(delays or {})
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    @staticmethod
    def _lookup(mapping: Dict[str, Any], content, fallback):
        if isinstance(content, str):
            for marker, value in mapping.items():
                if marker in content:
                    return value
        return fallback

    async def extract(self, content, mime_type: str, target_schema: Optional[str] = None):
        self.calls.append({"content": content, "mime_type": mime_type, "target_schema": target_schema})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self._lookup(self.delays, content, 0.0)
            if delay:
                await asyncio.sleep(delay)
            response = self._lookup(self.responses, content, self.default)
            if isinstance(response, BaseException):
                raise response
            return copy.deepcopy(response)
        finally:
            self.in_flight -= 1


# =============================================================================
# Response / document builders
# =============================================================================

def po_response(
    po_number: Optional[str] = "PO-1001",
    vendor_name: Optional[str] = "Acme Corp",
    confidence: Any = 0.9,
    **overrides,
) -> Dict[str, Any]:
    """Model response for a one-line purchase order without a delivery date."""
    fields = {
        "poNumber": po_number,
        "vendorName": vendor_name,
        "orderDate": "2024-03-01",
        "lineItems": [
            {"description": "Widget", "sku": "WID-1", "quantity": 10, "unitPrice": "2.50", "totalPrice": "25.00"},
        ],
        "subtotal": "25.00",
        "totalAmount": "$25.00",
    }
    fields.update(overrides)
    response = {"documentType": "purchase_order", "fields": fields}
    if confidence is not None:
        response["confidence"] = confidence
    return response


def text_document(
    text: str,
    file_name: str = "document.txt",
    origin: DocumentOrigin = DocumentOrigin.DIRECT_UPLOAD,
    mime_type: str = "text/plain",
) -> RawDocument:
    return RawDocument(content=text.encode("utf-8"), mime_type=mime_type, file_name=file_name, origin=origin)


def pdf_bytes(lines=()) -> bytes:
    """One-page PDF with the given text lines (blank page when empty)."""
    doc = fitz.open()
    page = doc.new_page()
    if lines:
        page.insert_text((72, 72), "\n".join(lines), fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def po_extraction(
    po_number: Optional[str] = "PO-1001",
    vendor_name: str = "Acme Corp",
    line_items=None,
    file_name: str = "po-1001.pdf",
    **fields,
) -> ExtractionResult:
    """Confirmed purchase order extraction, ready to commit."""
    if line_items is None:
        line_items = [LineItem(description="Widget", sku="WID-1", quantity=10, unit_price="2.50", total_price="25.00")]
    payload = PurchaseOrderPayload(
        po_number=po_number,
        vendor_name=vendor_name,
        line_items=line_items,
        total_amount=fields.pop("total_amount", "25.00"),
        **fields,
    )
    return ExtractionResult(
        document_type=DocumentType.PURCHASE_ORDER,
        payload=payload,
        confidence=0.9,
        source_file_name=file_name,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Fresh database with every table created."""
    path = tmp_path / "ingest.db"
    init_import_db(path)
    return path


@pytest.fixture
def registry(db_path):
    """Two active vendors and one material."""
    acme = add_vendor("Acme Corp", email="orders@acme.test", db_path=db_path)
    globex = add_vendor("Globex Supply", db_path=db_path)
    widget = add_material("Widget", sku="WID-1", unit="ea", db_path=db_path)
    return SimpleNamespace(db_path=db_path, acme=acme, globex=globex, widget=widget)
