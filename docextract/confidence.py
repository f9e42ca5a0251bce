# SPDX-License-Identifier: AGPL-3.0-only

from typing import List, Optional

from .config import ExtractionConfig, config as default_config
from .models import ExtractionTemplate, ParserStrategy, ProcessingMethod, TextExtractionResult

_OCR_METHODS = (ProcessingMethod.OCR_FALLBACK, ProcessingMethod.HYBRID, ProcessingMethod.DIRECT_IMAGE_OCR)


class ConfidenceScorer:
    """Combine field-level and text-quality confidence into one document score (0-1)."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or default_config

    def score(self, field_confidence: float, text_result: TextExtractionResult,
              strategy: ParserStrategy = ParserStrategy.LLM) -> float:
        parse_confidence = field_confidence
        if strategy == ParserStrategy.BASIC:
            parse_confidence = min(parse_confidence, self.config.basic_confidence_ceiling)

        combined = parse_confidence * self.config.parse_weight + text_result.confidence * self.config.text_weight

        if text_result.method == ProcessingMethod.DIRECT_TEXT:
            combined += self.config.direct_text_bonus
        elif text_result.method in _OCR_METHODS and text_result.confidence < self.config.low_ocr_threshold:
            combined = max(0.1, combined - self.config.low_ocr_penalty)

        return round(max(0.0, min(1.0, combined)), 2)

    def needs_review(self, confidence: float, template: ExtractionTemplate, warnings: List[str]) -> bool:
        """Low confidence or any warning sends a completed result to manual review."""
        return confidence < template.confidence_threshold or bool(warnings)
