"""Content preparation for the extraction call.

Turns a RawDocument into what the extraction model is sent:
- PDF with a text layer -> extracted text
- Scanned PDF (little or no text) -> first pages rendered to PNG
- Image -> the image bytes
- CSV / Excel -> sheet contents rendered as CSV text
- Plain text (pasted email bodies) -> decoded text

The MIME gate runs before anything else so unsupported files never reach
the extraction call.
"""

import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import fitz
import pandas as pd

from core.errors import UnsupportedFormat
from core.models.canonical import DocumentOrigin, RawDocument


PDF_MIME = "application/pdf"
CSV_MIME = "text/csv"
XLS_MIME = "application/vnd.ms-excel"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEXT_MIME = "text/plain"
PNG_MIME = "image/png"

IMAGE_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/tiff",
}
SPREADSHEET_MIME_TYPES = {CSV_MIME, XLS_MIME, XLSX_MIME}

SUPPORTED_MIME_TYPES = {PDF_MIME, TEXT_MIME} | IMAGE_MIME_TYPES | SPREADSHEET_MIME_TYPES

# Non-canonical spellings seen from browsers and mail clients
MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/tif": "image/tiff",
    "application/x-pdf": "application/pdf",
    "application/csv": CSV_MIME,
    "text/x-csv": CSV_MIME,
    "application/excel": XLS_MIME,
    "application/x-excel": XLS_MIME,
}

# Below this many characters of text a PDF is treated as scanned
MIN_TEXT_LENGTH_FOR_SCANNED_DETECTION = 100

MAX_DOCUMENT_TEXT_CHARS = 50_000
MAX_EMAIL_TEXT_CHARS = 8_000


@dataclass
class PreparedContent:
    """Content ready for the extraction call.

    Attributes:
        content: Text, a single image, or a list of page images (PNG)
        mime_type: MIME type of ``content`` (``text/plain`` for text)
        method: How the content was produced (pdf_text, pdf_ocr, image, spreadsheet, text)
        page_count: Pages in the source PDF, if any
        truncated: True if text was cut to the size cap
    """
    content: Union[str, bytes, List[bytes]]
    mime_type: str
    method: str
    page_count: Optional[int] = None
    truncated: bool = False


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-case, strip parameters (``; charset=...``) and fold aliases."""
    if not mime_type:
        return ""
    base = mime_type.split(";", 1)[0].strip().lower()
    return MIME_ALIASES.get(base, base)


def guess_mime_type(path: Path) -> str:
    """MIME type from the file extension, octet-stream when unknown."""
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def is_supported_mime_type(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type) in SUPPORTED_MIME_TYPES


def ensure_supported(raw: RawDocument) -> str:
    """Return the normalized MIME type or raise UnsupportedFormat."""
    mime_type = normalize_mime_type(raw.mime_type)
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise UnsupportedFormat(
            f"Unsupported file type '{raw.mime_type}' for {raw.file_name}",
            mime_type=raw.mime_type,
            file_name=raw.file_name,
        )
    return mime_type


def prepare_content(raw: RawDocument, max_ocr_pages: int = 3) -> PreparedContent:
    """Prepare a RawDocument for the extraction call.

    Raises:
        UnsupportedFormat: If the MIME type is unsupported or the content
            cannot be read as its declared type
    """
    mime_type = ensure_supported(raw)

    if not raw.content:
        raise UnsupportedFormat(
            f"{raw.file_name} is empty",
            mime_type=raw.mime_type,
            file_name=raw.file_name,
        )

    if mime_type == PDF_MIME:
        return _prepare_pdf(raw, max_ocr_pages)
    if mime_type in SPREADSHEET_MIME_TYPES:
        return _prepare_spreadsheet(raw, mime_type)
    if mime_type in IMAGE_MIME_TYPES:
        return PreparedContent(content=raw.content, mime_type=mime_type, method="image")
    return _prepare_text(raw)


def _truncate(text: str, limit: int):
    if len(text) <= limit:
        return text, False
    return text[:limit], True


def page_to_png(page: fitz.Page, zoom: float = 2.0) -> bytes:
    """Render a PDF page to PNG bytes for the vision model."""
    mat = fitz.Matrix(zoom, zoom)
    pix = page.get_pixmap(matrix=mat, alpha=False)
    return pix.tobytes("png")


def _prepare_pdf(raw: RawDocument, max_ocr_pages: int) -> PreparedContent:
    try:
        with fitz.open(stream=raw.content, filetype="pdf") as doc:
            page_count = doc.page_count
            text = "\n\n".join(
                doc.load_page(i).get_text("text") for i in range(page_count)
            ).strip()

            if len(text) >= MIN_TEXT_LENGTH_FOR_SCANNED_DETECTION:
                text, truncated = _truncate(text, MAX_DOCUMENT_TEXT_CHARS)
                return PreparedContent(
                    content=text,
                    mime_type=TEXT_MIME,
                    method="pdf_text",
                    page_count=page_count,
                    truncated=truncated,
                )

            # Scanned: send page images instead
            images = [
                page_to_png(doc.load_page(i))
                for i in range(min(page_count, max_ocr_pages))
            ]
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise UnsupportedFormat(
            f"Could not read PDF {raw.file_name}: {e}",
            mime_type=raw.mime_type,
            file_name=raw.file_name,
        ) from e

    if not images:
        raise UnsupportedFormat(
            f"PDF {raw.file_name} has no pages",
            mime_type=raw.mime_type,
            file_name=raw.file_name,
        )

    return PreparedContent(
        content=images,
        mime_type=PNG_MIME,
        method="pdf_ocr",
        page_count=page_count,
        truncated=page_count > max_ocr_pages,
    )


def _prepare_spreadsheet(raw: RawDocument, mime_type: str) -> PreparedContent:
    try:
        if mime_type == CSV_MIME:
            sheets = {"Sheet1": pd.read_csv(io.BytesIO(raw.content), dtype=str)}
        else:
            sheets = pd.read_excel(io.BytesIO(raw.content), sheet_name=None, dtype=str)
    except Exception as e:
        raise UnsupportedFormat(
            f"Could not read spreadsheet {raw.file_name}: {e}",
            mime_type=raw.mime_type,
            file_name=raw.file_name,
        ) from e

    parts = []
    for name, df in sheets.items():
        df = df.dropna(how="all")
        if df.empty:
            continue
        parts.append(f"## Sheet: {name}\n{df.to_csv(index=False)}")

    text, truncated = _truncate("\n".join(parts).strip(), MAX_DOCUMENT_TEXT_CHARS)
    return PreparedContent(content=text, mime_type=TEXT_MIME, method="spreadsheet", truncated=truncated)


def _prepare_text(raw: RawDocument) -> PreparedContent:
    text = raw.content.decode("utf-8", errors="replace").strip()
    limit = MAX_EMAIL_TEXT_CHARS if raw.origin == DocumentOrigin.INBOUND_EMAIL else MAX_DOCUMENT_TEXT_CHARS
    text, truncated = _truncate(text, limit)
    return PreparedContent(content=text, mime_type=TEXT_MIME, method="text", truncated=truncated)
