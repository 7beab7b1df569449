from typing import Any, Dict, List

from app.state import CATEGORIES
from ingestion.text_cleaner import to_data_url

CHARS_PER_PAGE = 800

EXTRACTION_INSTRUCTIONS = """You are a VA disability claims medical records analyst. You read medical
records (service treatment records, VA treatment notes, private medical records,
C&P exams, imaging and lab reports) and extract every claimable diagnosis.

STEP 1 - CLASSIFY THE DOCUMENT
Decide what kind of record this is (service treatment record, VA medical record,
private medical record, C&P exam, imaging, lab, other). Use it in sourceDocument.

STEP 2 - EXTRACT EACH DIAGNOSIS
For every diagnosed condition, chronic problem or documented injury, extract:
- conditionName: the diagnosis as written by the clinician
- diagnosticCode: the 38 CFR Part 4 diagnostic code (see table), "" if none fits
- cfrReference: the regulation section for that code, e.g. "38 CFR § 4.130"
- onsetDate: first documented date as MM/YYYY, "" if not stated
- connectionType: "direct" if incurred in service, "secondary" if caused or
  aggravated by another condition
- isPresumptive: true only if the condition is presumptive (PACT Act, Agent
  Orange, Gulf War, chronic disease within one year of discharge)
- sourceDocument: short provenance note, e.g. "VA treatment note, 03/2019"
- supportingQuotes: up to 3 short verbatim excerpts supporting the diagnosis
- category: one of {categories}
- pageNumber: the 1-based page where the diagnosis appears, "" if unknown
Do not invent diagnoses. Symptoms without a diagnosis are not conditions.

STEP 3 - MAP TO DIAGNOSTIC CODES
{code_table}

STEP 4 - OUTPUT
Return ONLY a valid JSON array of objects with exactly the fields above.
No markdown, no explanations, no text before or after the array.
If no diagnoses are found, return [].
"""


def build_system_prompt(code_table: str) -> str:
    return EXTRACTION_INSTRUCTIONS.format(
        categories=", ".join(CATEGORIES),
        code_table=code_table or "Use the 38 CFR Part 4 schedule of ratings.",
    )


def truncate_text(text: str, max_chars: int) -> tuple[str, str]:
    """Cap document text and return ``(excerpt, note)``; note is empty when nothing was cut."""
    if len(text) <= max_chars:
        return text, ""
    shown_pages = max(1, max_chars // CHARS_PER_PAGE)
    total_pages = max(shown_pages, len(text) // CHARS_PER_PAGE)
    note = (
        f"NOTE: This document was truncated. Showing approximately the first "
        f"{shown_pages} of about {total_pages} pages. Extract what is present."
    )
    return text[:max_chars], note


def text_messages(system_prompt: str, file_name: str, text: str, max_chars: int) -> List[Dict[str, Any]]:
    excerpt, note = truncate_text(text, max_chars)
    header = f"Analyze this medical record ({file_name}) and return the JSON array."
    if note:
        header = f"{header}\n{note}"
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": f"{header}\n\nDOCUMENT TEXT:\n{excerpt}"},
    ]


def image_messages(system_prompt: str, file_name: str, data: bytes, mime_type: str) -> List[Dict[str, Any]]:
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [
                {
                    "type": "text",
                    "text": f"This image ({file_name}) is a page of a medical record. "
                    "Read it and return the JSON array.",
                },
                {"type": "image_url", "image_url": {"url": to_data_url(data, mime_type)}},
            ],
        },
    ]


def document_messages(
    system_prompt: str, file_name: str, data: bytes, page_label: str = ""
) -> List[Dict[str, Any]]:
    """Attach a (scanned) PDF for OCR. ``page_label`` names the chunk's page range."""
    scope = (
        f" This file contains {page_label} of the original document;"
        " report pageNumber using the original document's page numbers."
        if page_label
        else ""
    )
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [
                {
                    "type": "text",
                    "text": f"The attached PDF ({file_name}) is a scanned medical record.{scope} "
                    "Read every page and return the JSON array.",
                },
                {
                    "type": "file",
                    "file": {"filename": file_name, "file_data": to_data_url(data, "application/pdf")},
                },
            ],
        },
    ]
