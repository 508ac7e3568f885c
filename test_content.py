"""Content preparation tests (MIME gate, PDF text vs scanned, spreadsheets, email)."""

import io
from pathlib import Path

import pandas as pd
import pytest

from conftest import pdf_bytes, text_document
from core.errors import UnsupportedFormat
from core.models.canonical import DocumentOrigin, RawDocument
from extraction.content import (
    MAX_EMAIL_TEXT_CHARS,
    XLSX_MIME,
    ensure_supported,
    guess_mime_type,
    is_supported_mime_type,
    normalize_mime_type,
    prepare_content,
)


PDF_LINES = [
    "PURCHASE ORDER PO-2001",
    "Vendor: Acme Corp",
    "Line 1: Widget, quantity 10 at 2.50 each",
    "Total due: 25.00 USD",
    "Please deliver to the main warehouse before the end of the month.",
]


class TestMimeGate:

    def test_aliases_and_parameters_are_folded(self):
        assert normalize_mime_type("image/jpg") == "image/jpeg"
        assert normalize_mime_type("Text/Plain; charset=utf-8") == "text/plain"
        assert normalize_mime_type(None) == ""

    def test_supported_types(self):
        for mime_type in ("application/pdf", "image/png", "text/csv", XLSX_MIME, "application/vnd.ms-excel"):
            assert is_supported_mime_type(mime_type), mime_type

    def test_word_documents_are_rejected(self):
        raw = RawDocument(
            content=b"PK\x03\x04",
            mime_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            file_name="letter.docx",
        )
        with pytest.raises(UnsupportedFormat) as exc_info:
            ensure_supported(raw)
        assert exc_info.value.file_name == "letter.docx"
        assert exc_info.value.to_dict()["kind"] == "UnsupportedFormat"

    def test_empty_content_is_rejected(self):
        with pytest.raises(UnsupportedFormat):
            prepare_content(RawDocument(content=b"", mime_type="text/plain", file_name="empty.txt"))

    def test_guess_mime_type_from_extension(self):
        assert guess_mime_type(Path("po.pdf")) == "application/pdf"
        assert guess_mime_type(Path("notes.txt")) == "text/plain"
        assert guess_mime_type(Path("mystery.zzz")) == "application/octet-stream"


class TestPdf:

    def test_pdf_with_text_layer_sends_text(self):
        raw = RawDocument(content=pdf_bytes(PDF_LINES), mime_type="application/pdf", file_name="po.pdf")
        prepared = prepare_content(raw)
        assert prepared.method == "pdf_text"
        assert prepared.mime_type == "text/plain"
        assert "PO-2001" in prepared.content
        assert prepared.page_count == 1

    def test_scanned_pdf_sends_page_images(self):
        raw = RawDocument(content=pdf_bytes(), mime_type="application/pdf", file_name="scan.pdf")
        prepared = prepare_content(raw)
        assert prepared.method == "pdf_ocr"
        assert prepared.mime_type == "image/png"
        assert len(prepared.content) == 1
        assert prepared.content[0].startswith(b"\x89PNG")

    def test_corrupt_pdf_is_unsupported(self):
        raw = RawDocument(content=b"definitely not a pdf", mime_type="application/pdf", file_name="broken.pdf")
        with pytest.raises(UnsupportedFormat):
            prepare_content(raw)


class TestSpreadsheetsAndText:

    def test_csv_becomes_text(self):
        raw = RawDocument(content=b"description,quantity\nWidget,10\n", mime_type="text/csv", file_name="po.csv")
        prepared = prepare_content(raw)
        assert prepared.method == "spreadsheet"
        assert "Widget,10" in prepared.content

    def test_xlsx_sheets_become_text(self):
        buffer = io.BytesIO()
        pd.DataFrame({"description": ["Widget", "Gadget"], "quantity": [10, 4]}).to_excel(buffer, index=False)
        raw = RawDocument(content=buffer.getvalue(), mime_type=XLSX_MIME, file_name="po.xlsx")
        prepared = prepare_content(raw)
        assert "## Sheet: Sheet1" in prepared.content
        assert "Gadget" in prepared.content

    def test_image_passes_through(self):
        raw = RawDocument(content=b"\x89PNG\r\n\x1a\nfake", mime_type="image/png", file_name="photo.png")
        prepared = prepare_content(raw)
        assert prepared.method == "image"
        assert prepared.content == raw.content

    def test_email_body_is_truncated(self):
        raw = text_document("x" * (MAX_EMAIL_TEXT_CHARS + 500), origin=DocumentOrigin.INBOUND_EMAIL)
        prepared = prepare_content(raw)
        assert prepared.truncated
        assert len(prepared.content) == MAX_EMAIL_TEXT_CHARS

    def test_uploaded_text_is_not_truncated_at_email_limit(self):
        raw = text_document("x" * (MAX_EMAIL_TEXT_CHARS + 500))
        prepared = prepare_content(raw)
        assert not prepared.truncated
