import io
from dataclasses import dataclass
from typing import Optional

import fitz  # PyMuPDF for PDF
from docx import Document
from loguru import logger

from ingestion.format_classifier import DocumentFormat
from ingestion.text_cleaner import decode_utf8, strip_control_characters, strip_non_printable

PRE_EXTRACTED_MIN_CHARS = 100
MIN_USABLE_CHARS = 50
TEXT_PDF_MIN_CHARS = 200


@dataclass
class ExtractionOutcome:
    """Result of local extraction.

    Attributes:
        text: Usable plain text, or None when nothing local worked.
        source: Which branch produced (or failed to produce) the text.
        needs_vision: True for images and scanned PDFs, which go to the model as files.
    """
    text: Optional[str]
    source: str
    needs_vision: bool = False


def extract_pdf_text(data: bytes) -> str:
    """Extract the embedded text layer from a PDF using PyMuPDF."""
    with fitz.open(stream=data, filetype="pdf") as doc:
        return "".join(page.get_text() for page in doc)


def extract_docx_text(data: bytes) -> str:
    """Extract paragraph and table text from a DOCX using python-docx."""
    doc = Document(io.BytesIO(data))
    parts = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            parts.append("\t".join(cell.text for cell in row.cells))
    return "\n".join(parts)


def _usable(text: str, minimum: int) -> Optional[str]:
    text = text.strip()
    return text if len(text) > minimum else None


def extract_text(
    document_format: DocumentFormat,
    data: bytes,
    pre_extracted_text: Optional[str] = None,
) -> ExtractionOutcome:
    """Obtain plain text for a classified upload, or signal that OCR/vision is needed.

    Library errors (corrupt PDF, broken DOCX zip) are not caught here; they
    propagate to the caller as a crash of the extraction step.
    """
    if pre_extracted_text and len(pre_extracted_text.strip()) > PRE_EXTRACTED_MIN_CHARS:
        logger.info(f"Using pre-extracted text ({len(pre_extracted_text)} chars)")
        return ExtractionOutcome(text=pre_extracted_text.strip(), source="pre_extracted")

    if not data:
        return ExtractionOutcome(text=None, source="empty")

    if document_format == DocumentFormat.IMAGE:
        return ExtractionOutcome(text=None, source="image", needs_vision=True)

    if document_format == DocumentFormat.PDF:
        text = extract_pdf_text(data)
        logger.info(f"PDF text layer yielded {len(text.strip())} chars")
        usable = _usable(text, TEXT_PDF_MIN_CHARS)
        if usable:
            return ExtractionOutcome(text=usable, source="pdf_text_layer")
        return ExtractionOutcome(text=None, source="scanned_pdf", needs_vision=True)

    if document_format == DocumentFormat.DOCX:
        return ExtractionOutcome(text=_usable(extract_docx_text(data), MIN_USABLE_CHARS), source="docx")

    decoded = decode_utf8(data)
    if document_format == DocumentFormat.TEXT_LIKE:
        cleaned = strip_control_characters(decoded)
    else:
        cleaned = strip_non_printable(decoded)
    return ExtractionOutcome(text=_usable(cleaned, MIN_USABLE_CHARS), source=document_format.value)
