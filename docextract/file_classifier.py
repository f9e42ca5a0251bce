# SPDX-License-Identifier: AGPL-3.0-only

"""
File classification for uploaded documents.

The declared content type coming from a client is advisory only: the kind of
file is decided from its leading bytes. PDFs get a second, lightweight pass
that measures the text layer so the coordinator can choose between direct
text extraction and OCR.
"""

import logging
from typing import Optional, Tuple

from common.pdf_utils import extract_text_by_page

from .config import ExtractionConfig, config as default_config
from .exceptions import ClassificationError
from .models import FileClassification, FileKind

logger = logging.getLogger(__name__)


# (prefix, mime, extension, kind)
_SIGNATURES = [
    (b"%PDF", "application/pdf", "pdf", FileKind.PDF),
    (b"\x89PNG\r\n\x1a\n", "image/png", "png", FileKind.IMAGE),
    (b"\xff\xd8\xff", "image/jpeg", "jpg", FileKind.IMAGE),
    (b"GIF87a", "image/gif", "gif", FileKind.UNSUPPORTED),
    (b"GIF89a", "image/gif", "gif", FileKind.UNSUPPORTED),
    (b"II*\x00", "image/tiff", "tif", FileKind.UNSUPPORTED),
    (b"MM\x00*", "image/tiff", "tif", FileKind.UNSUPPORTED),
    (b"BM", "image/bmp", "bmp", FileKind.UNSUPPORTED),
    (b"PK\x03\x04", "application/zip", "zip", FileKind.UNSUPPORTED),
]


def sniff_type(data: bytes) -> Tuple[FileKind, Optional[str], Optional[str]]:
    """Return (kind, mime, extension) from magic bytes; mime is None when unknown."""
    head = data[:16]
    # WEBP is RIFF....WEBP
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return FileKind.IMAGE, "image/webp", "webp"
    # Some producers emit a few junk bytes before the PDF header
    if b"%PDF" in data[:1024] and not head.startswith(b"%PDF"):
        return FileKind.PDF, "application/pdf", "pdf"
    for prefix, mime, ext, kind in _SIGNATURES:
        if head.startswith(prefix):
            return kind, mime, ext
    return FileKind.UNSUPPORTED, None, None


class FileClassifier:
    """Decides image vs. PDF vs. unsupported and measures a PDF's text layer."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or default_config

    def classify(self, data: bytes, declared_type: Optional[str] = None) -> FileClassification:
        """
        Classify a file from its content.

        Args:
            data: Raw file bytes
            declared_type: Client-declared content type, compared but never trusted

        Returns:
            FileClassification; unsupported files come back with kind UNSUPPORTED
            and a reason rather than raising.
        """
        if not data:
            return FileClassification(kind=FileKind.UNSUPPORTED, reason="Empty file")

        kind, mime, ext = sniff_type(data)
        if mime is None:
            return FileClassification(
                kind=FileKind.UNSUPPORTED,
                mime_type=declared_type or "application/octet-stream",
                reason="Could not determine file type from content",
            )

        if declared_type and declared_type.split(";")[0].strip().lower() != mime:
            logger.warning("MIME type mismatch: declared=%s, detected=%s", declared_type, mime)

        if kind == FileKind.UNSUPPORTED:
            return FileClassification(
                kind=kind, mime_type=mime, extension=ext,
                reason=f"Unsupported file type: {ext}",
            )

        if kind == FileKind.IMAGE:
            return FileClassification(kind=kind, mime_type=mime, extension=ext, page_count=1)

        return self._analyze_pdf(data, mime, ext)

    def require_supported(self, data: bytes, declared_type: Optional[str] = None) -> FileClassification:
        """Classify, raising ClassificationError for anything the pipeline cannot read."""
        result = self.classify(data, declared_type)
        if result.kind == FileKind.UNSUPPORTED:
            raise ClassificationError(result.reason or "Unsupported file type")
        return result

    def _analyze_pdf(self, data: bytes, mime: str, ext: str) -> FileClassification:
        try:
            pages = extract_text_by_page(data)
        except Exception as e:
            # A PDF we cannot parse is treated as a scan; OCR may still read it
            logger.info("PDF analysis failed, assuming scanned document: %s", e)
            return FileClassification(
                kind=FileKind.PDF, mime_type=mime, extension=ext,
                has_text_layer=False, page_count=1,
                reason=f"PDF analysis failed: {e}",
            )

        page_count = len(pages)
        text_length = len("\n".join(pages).strip())
        density = (text_length / page_count) if page_count else 0.0
        has_text = (
            density >= self.config.text_density_threshold
            and text_length >= self.config.min_text_length
        )
        logger.info(
            "PDF analysis: pages=%d, text_length=%d, density=%.1f, has_text_layer=%s",
            page_count, text_length, density, has_text,
        )
        return FileClassification(
            kind=FileKind.PDF,
            mime_type=mime,
            extension=ext,
            has_text_layer=has_text,
            page_count=page_count,
            text_length=text_length,
            text_density=round(density, 2),
        )
