# SPDX-License-Identifier: AGPL-3.0-only

"""
Text extraction coordinator.

This module turns an uploaded file into recognized text. It classifies the
file, reads a PDF's text layer directly when it has one, and falls back to
rasterizing and OCR'ing pages when it does not.
"""

import logging
from typing import List, Optional

from common.pdf_utils import extract_text_by_page

from .config import ExtractionConfig, config as default_config
from .exceptions import TextExtractionError
from .file_classifier import FileClassifier
from .models import FileClassification, FileKind, ProcessingMethod, TextExtractionResult

logger = logging.getLogger(__name__)


class TextExtractionService:
    """Service for extracting text from images and PDF documents."""

    def __init__(self, ocr_engine, classifier: Optional[FileClassifier] = None,
                 config: Optional[ExtractionConfig] = None):
        """
        Initialize the text extraction service.

        Args:
            ocr_engine: Engine exposing recognize_image(bytes) and recognize_pdf(bytes)
            classifier: File classifier; one is built from config if omitted
            config: Extraction configuration
        """
        self.config = config or default_config
        self.ocr_engine = ocr_engine
        self.classifier = classifier or FileClassifier(self.config)

    def extract(self, data: bytes, declared_type: Optional[str] = None,
                classification: Optional[FileClassification] = None) -> TextExtractionResult:
        """
        Extract text from a file.

        Args:
            data: Raw file bytes
            declared_type: Advisory content type from the client
            classification: Precomputed classification, if the caller already has one

        Returns:
            TextExtractionResult. A result with success=False carries the reason in
            ``error``; it is never an empty success.

        Raises:
            ClassificationError: The file is not an image or PDF, or its content cannot be decoded.
        """
        classification = classification or self.classifier.require_supported(data, declared_type)

        try:
            if classification.kind == FileKind.IMAGE:
                result = self._extract_image(data)
            elif classification.has_text_layer:
                result = self._extract_text_layer(data, classification)
            else:
                result = self._extract_scanned(data, classification)
        except TextExtractionError as e:
            logger.warning("Text extraction failed: %s", e)
            return TextExtractionResult(
                success=False,
                file_kind=classification.kind,
                page_count=classification.page_count or None,
                error=str(e),
            )

        result.file_kind = classification.kind
        if not result.text.strip():
            return TextExtractionResult(
                success=False,
                method=result.method,
                cost_estimate=result.cost_estimate,
                page_count=result.page_count,
                file_kind=classification.kind,
                fallback_reason=result.fallback_reason,
                error="No extractable text found in document",
            )

        logger.info(
            "Text extracted: method=%s, length=%d, confidence=%.2f",
            result.method.value if result.method else None, len(result.text), result.confidence,
        )
        return result

    # ── strategies ────────────────────────────────────────────────

    def _extract_image(self, data: bytes) -> TextExtractionResult:
        page = self.ocr_engine.recognize_image(data)
        return TextExtractionResult(
            success=True,
            text=(page.get("text") or "").strip(),
            confidence=self._ocr_confidence([page]),
            method=ProcessingMethod.DIRECT_IMAGE_OCR,
            cost_estimate=self.config.ocr_cost_per_page,
            page_count=1,
        )

    def _extract_text_layer(self, data: bytes, classification: FileClassification) -> TextExtractionResult:
        direct = self._direct_text(data)
        page_count = classification.page_count or None

        if len(direct.strip()) >= self.config.min_text_length:
            return TextExtractionResult(
                success=True,
                text=direct.strip(),
                confidence=self.config.direct_text_confidence,
                method=ProcessingMethod.DIRECT_TEXT,
                cost_estimate=self.config.direct_text_cost,
                page_count=page_count,
            )

        logger.info("Direct text too short (%d chars), falling back to OCR", len(direct.strip()))
        return self._ocr_with_comparison(
            data, direct, page_count,
            reason=f"direct text shorter than {self.config.min_text_length} characters",
        )

    def _extract_scanned(self, data: bytes, classification: FileClassification) -> TextExtractionResult:
        # Whatever little text the layer holds still competes with OCR
        direct = self._direct_text(data) if classification.text_length else ""
        return self._ocr_with_comparison(
            data, direct, classification.page_count or None,
            reason="no usable text layer",
        )

    def _ocr_with_comparison(self, data: bytes, direct: str, page_count: Optional[int],
                             reason: str) -> TextExtractionResult:
        pages = self.ocr_engine.recognize_pdf(data)
        ocr_text = self._join_pages(pages)
        ocr_confidence = self._ocr_confidence(pages)
        ocr_cost = self.config.ocr_cost_per_page * max(len(pages), 1)
        page_count = len(pages) or page_count

        direct = direct.strip()
        if not direct:
            return TextExtractionResult(
                success=True,
                text=ocr_text,
                confidence=ocr_confidence,
                method=ProcessingMethod.OCR_FALLBACK,
                cost_estimate=ocr_cost,
                page_count=page_count,
                fallback_reason=reason,
            )

        # Both attempts ran: keep the longer text, ties go to the higher confidence
        direct_confidence = self.config.direct_text_confidence
        use_direct = (
            len(direct) > len(ocr_text)
            or (len(direct) == len(ocr_text) and direct_confidence >= ocr_confidence)
        )
        return TextExtractionResult(
            success=True,
            text=direct if use_direct else ocr_text,
            confidence=direct_confidence if use_direct else ocr_confidence,
            method=ProcessingMethod.HYBRID,
            cost_estimate=self.config.direct_text_cost + ocr_cost,
            page_count=page_count,
            fallback_reason=reason,
        )

    # ── helpers ───────────────────────────────────────────────────

    def _direct_text(self, data: bytes) -> str:
        try:
            return "\n".join(extract_text_by_page(data))
        except Exception as e:
            logger.info("Direct PDF text extraction failed: %s", e)
            return ""

    def _join_pages(self, pages: List[dict]) -> str:
        parts = []
        for i, page in enumerate(pages):
            text = (page.get("text") or "").strip()
            if text:
                parts.append(f"--- Page {page.get('page', i + 1)} ---\n{text}")
        return "\n\n".join(parts)

    def _ocr_confidence(self, pages: List[dict]) -> float:
        """Mean token confidence over pages that produced text; each page weighs by its token count."""
        total = weight = 0.0
        for p in pages:
            if not (p.get("text") or "").strip() or p.get("confidence") is None:
                continue
            tokens = p.get("token_count") or 1
            total += float(p["confidence"]) * tokens
            weight += tokens
        if not weight:
            return self.config.default_ocr_confidence
        return round(max(0.0, min(1.0, total / weight)), 4)
