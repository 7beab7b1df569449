import math
from dataclasses import dataclass
from typing import List

import fitz  # PyMuPDF for PDF


@dataclass
class PageRange:
    """Zero-based, end-exclusive page range of one chunk."""
    index: int
    start: int
    end: int
    total: int

    @property
    def first_page_number(self) -> int:
        return self.start + 1

    @property
    def label(self) -> str:
        return f"pages {self.start + 1}-{self.end} of {self.total}"


def page_ranges(total_pages: int, pages_per_chunk: int) -> List[PageRange]:
    """Chunk ``i`` covers pages ``[i*size, min((i+1)*size, total))``."""
    if pages_per_chunk < 1:
        raise ValueError("pages_per_chunk must be at least 1")
    count = math.ceil(total_pages / pages_per_chunk)
    return [
        PageRange(
            index=i,
            start=i * pages_per_chunk,
            end=min((i + 1) * pages_per_chunk, total_pages),
            total=total_pages,
        )
        for i in range(count)
    ]


def copy_page_range(source: fitz.Document, page_range: PageRange) -> bytes:
    """Copy one page range into a standalone PDF and serialize it."""
    chunk_doc = fitz.open()  # New empty PDF
    try:
        # insert_pdf's to_page is inclusive
        chunk_doc.insert_pdf(source, from_page=page_range.start, to_page=page_range.end - 1)
        return chunk_doc.tobytes(garbage=3, deflate=True)
    finally:
        chunk_doc.close()


def open_pdf(data: bytes) -> fitz.Document:
    return fitz.open(stream=data, filetype="pdf")
