"""Document Classifier tests against a deterministic extraction client."""

import asyncio
import json
import threading
from decimal import Decimal

import pytest

from classifier import DocumentClassifier, normalize_confidence, normalize_document_type
from conftest import FakeExtractionClient, po_response, text_document
from core.errors import ExtractionFailed, UnsupportedFormat
from core.models.canonical import CustomsDocumentType, DocumentType, RawDocument


PO_TEXT = "PURCHASE ORDER PO-1001\nVendor: Acme Corp\nWidget x10 @ 2.50\nTotal 25.00"


def classify(client, raw, document_type=None):
    return asyncio.run(DocumentClassifier(client).classify(raw, document_type))


class TestPurchaseOrders:

    def test_purchase_order_is_extracted(self):
        """One missing expected field (deliveryDate) costs one penalty."""
        client = FakeExtractionClient({"PO-1001": po_response()})
        result = classify(client, text_document(PO_TEXT, file_name="po-1001.txt"))

        assert result.document_type == DocumentType.PURCHASE_ORDER
        assert result.confidence == pytest.approx(0.85)
        assert result.confidence >= 0.6
        assert result.missing_fields == ["deliveryDate"]
        assert result.source_file_name == "po-1001.txt"

        payload = result.payload
        assert payload.po_number == "PO-1001"
        assert payload.total_amount == Decimal("25.00")
        assert len(payload.line_items) == 1
        assert payload.line_items[0].description == "Widget"
        assert payload.line_items[0].quantity == Decimal("10")

    def test_two_passes_without_hint(self):
        client = FakeExtractionClient({"PO-1001": po_response()})
        classify(client, text_document(PO_TEXT))
        assert [c["target_schema"] for c in client.calls] == [None, "purchase_order"]

    def test_type_hint_skips_first_pass(self):
        client = FakeExtractionClient({"PO-1001": po_response()})
        result = classify(client, text_document(PO_TEXT), DocumentType.PURCHASE_ORDER)
        assert result.document_type == DocumentType.PURCHASE_ORDER
        assert [c["target_schema"] for c in client.calls] == ["purchase_order"]

    def test_all_expected_fields_keep_full_confidence(self):
        client = FakeExtractionClient({"PO-1001": po_response(deliveryDate="2024-03-20")})
        result = classify(client, text_document(PO_TEXT))
        assert result.confidence == pytest.approx(0.9)
        assert result.missing_fields == []
        assert result.warnings == []

    def test_missing_required_field_is_unknown(self):
        client = FakeExtractionClient({"PO-1001": po_response(vendor_name=None)})
        result = classify(client, text_document(PO_TEXT))
        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0.0
        assert result.payload is None
        assert result.missing_fields == ["vendorName"]

    def test_invalid_line_is_unknown(self):
        bad_line = [{"description": "Widget", "quantity": 0, "unitPrice": "2.50"}]
        client = FakeExtractionClient({"PO-1001": po_response(lineItems=bad_line)})
        result = classify(client, text_document(PO_TEXT))
        assert result.document_type == DocumentType.UNKNOWN
        assert "Invalid purchase_order payload" in result.warnings

    def test_line_total_mismatch_is_reported_not_corrected(self):
        lines = [{"description": "Widget", "quantity": 10, "unitPrice": "2.50", "totalPrice": "30.00"}]
        client = FakeExtractionClient({"PO-1001": po_response(lineItems=lines, subtotal="30.00", totalAmount="30.00")})
        result = classify(client, text_document(PO_TEXT))
        assert result.payload.line_items[0].total_price == Decimal("30.00")
        assert any(w.startswith("Line 1 total") for w in result.warnings)


class TestConfidence:

    def test_percentage_confidence(self):
        client = FakeExtractionClient({"PO-1001": po_response(confidence="92%", deliveryDate="2024-03-20")})
        result = classify(client, text_document(PO_TEXT))
        assert result.confidence == pytest.approx(0.92)

    def test_missing_confidence_uses_default(self):
        client = FakeExtractionClient({"PO-1001": po_response(confidence=None, deliveryDate="2024-03-20")})
        result = classify(client, text_document(PO_TEXT))
        assert result.confidence == pytest.approx(0.5)
        assert "Model did not report a confidence" in result.warnings

    def test_normalize_confidence(self):
        assert normalize_confidence(0.7) == 0.7
        assert normalize_confidence("85%") == pytest.approx(0.85)
        assert normalize_confidence(150) == 1.0
        assert normalize_confidence(-0.3) == 0.0
        assert normalize_confidence(None) is None
        assert normalize_confidence(True) is None
        assert normalize_confidence("high") is None


class TestUnknownAndFailures:

    def test_unrecognized_document_is_unknown(self):
        client = FakeExtractionClient()
        result = classify(client, text_document("Dear team, lunch is on Friday."))
        assert result.document_type == DocumentType.UNKNOWN
        assert result.confidence == 0.0
        assert len(client.calls) == 1

    def test_malformed_json_is_unknown(self):
        client = FakeExtractionClient({"PO-1001": "Sorry, I cannot read this document"})
        result = classify(client, text_document(PO_TEXT))
        assert result.document_type == DocumentType.UNKNOWN
        assert "Model returned malformed JSON" in result.warnings

    def test_json_wrapped_in_prose_is_accepted(self):
        wrapped = "Here is the data:\n```json\n" + json.dumps(po_response()) + "\n```"
        client = FakeExtractionClient({"PO-1001": wrapped})
        result = classify(client, text_document(PO_TEXT))
        assert result.document_type == DocumentType.PURCHASE_ORDER

    def test_extraction_failure_propagates(self):
        client = FakeExtractionClient({"PO-1001": ExtractionFailed("rate limit exhausted")})
        with pytest.raises(ExtractionFailed) as exc_info:
            classify(client, text_document(PO_TEXT, file_name="po.txt"))
        assert exc_info.value.retriable
        assert exc_info.value.file_name == "po.txt"

    def test_timeout_becomes_extraction_failure(self):
        client = FakeExtractionClient({"PO-1001": asyncio.TimeoutError()})
        with pytest.raises(ExtractionFailed):
            classify(client, text_document(PO_TEXT))

    def test_unsupported_type_never_calls_model(self):
        client = FakeExtractionClient({"PO-1001": po_response()})
        raw = RawDocument(
            content=PO_TEXT.encode(),
            mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            file_name="po.docx",
        )
        with pytest.raises(UnsupportedFormat):
            classify(client, raw)
        assert client.calls == []


class TestOtherTypes:

    def test_customs_subtype_reported_as_type(self):
        response = {
            "documentType": "bill_of_lading",
            "confidence": 0.8,
            "fields": {
                "documentNumber": "BOL-77",
                "shipperName": "Shenzhen Parts Ltd",
                "countryOfOrigin": "CN",
                "lineItems": [{"description": "Widget", "hsCode": "8481.80", "dutyAmount": "3.10"}],
                "totalDuty": "3.10",
            },
        }
        client = FakeExtractionClient({"BOL-77": response})
        result = classify(client, text_document("BILL OF LADING BOL-77"))
        assert result.document_type == DocumentType.CUSTOMS_DOCUMENT
        assert result.payload.customs_document_type == CustomsDocumentType.BILL_OF_LADING
        assert result.payload.line_items[0].hs_code == "8481.80"
        assert result.confidence == pytest.approx(0.8)

    def test_freight_invoice(self):
        response = {
            "documentType": "freight",
            "confidence": 0.95,
            "fields": {
                "invoiceNumber": "FR-9",
                "carrierName": "FastFreight",
                "invoiceDate": "03/15/2024",
                "freightCharges": "100.00",
                "fuelSurcharge": "12.50",
                "totalAmount": "112.50",
            },
        }
        client = FakeExtractionClient({"FR-9": response})
        result = classify(client, text_document("FREIGHT INVOICE FR-9"))
        assert result.document_type == DocumentType.FREIGHT_INVOICE
        assert result.payload.invoice_date.isoformat() == "2024-03-15"
        assert result.missing_fields == ["trackingNumber"]
        assert result.warnings == []

    def test_normalize_document_type(self):
        assert normalize_document_type("Purchase Order") == (DocumentType.PURCHASE_ORDER, None)
        assert normalize_document_type("invoice") == (DocumentType.VENDOR_INVOICE, None)
        assert normalize_document_type("packing-list") == (
            DocumentType.CUSTOMS_DOCUMENT, CustomsDocumentType.PACKING_LIST
        )
        assert normalize_document_type("recipe") == (DocumentType.UNKNOWN, None)
        assert normalize_document_type(None) == (DocumentType.UNKNOWN, None)


class TestContentPreparation:

    def test_content_is_prepared_off_the_event_loop(self, monkeypatch):
        import classifier.classifier as classifier_module

        threads = []
        original = classifier_module.prepare_content

        def recording(raw, max_ocr_pages=3):
            threads.append(threading.get_ident())
            return original(raw, max_ocr_pages)

        monkeypatch.setattr(classifier_module, "prepare_content", recording)
        client = FakeExtractionClient({"PO-1001": po_response()})
        result = classify(client, text_document(PO_TEXT))

        assert result.document_type == DocumentType.PURCHASE_ORDER
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()
