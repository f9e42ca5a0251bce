"""
PDF utility functions for per-page text extraction.

All helpers work on in-memory bytes; callers fetch the file from storage first.
"""
import io
import logging
from typing import List

import PyPDF2

logger = logging.getLogger(__name__)


def open_reader(pdf_bytes: bytes) -> PyPDF2.PdfReader:
    """Open a PDF from bytes. Raises whatever PyPDF2 raises on malformed input."""
    return PyPDF2.PdfReader(io.BytesIO(pdf_bytes))


def extract_text_by_page(pdf_bytes: bytes) -> List[str]:
    """Extract text from each page separately."""
    reader = open_reader(pdf_bytes)
    pages = []
    for page in reader.pages:
        try:
            pages.append(page.extract_text() or "")
        except Exception as e:
            logger.debug("Page text extraction failed: %s", e)
            pages.append("")
    return pages

