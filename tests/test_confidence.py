# SPDX-License-Identifier: AGPL-3.0-only

import pytest

from docextract.confidence import ConfidenceScorer
from docextract.models import ParserStrategy, ProcessingMethod, TextExtractionResult


def _text(method, confidence):
    return TextExtractionResult(success=True, text="x", confidence=confidence, method=method)


@pytest.mark.unit
class TestConfidenceScorer:

    @pytest.fixture
    def scorer(self, config):
        return ConfidenceScorer(config)

    def test_direct_text_bonus(self, scorer):
        # 0.6 * 1.0 + 0.4 * 0.95 + 0.05, clamped
        assert scorer.score(1.0, _text(ProcessingMethod.DIRECT_TEXT, 0.95)) == 1.0
        assert scorer.score(0.5, _text(ProcessingMethod.DIRECT_TEXT, 0.95)) == 0.73

    def test_good_ocr_has_no_penalty(self, scorer):
        assert scorer.score(1.0, _text(ProcessingMethod.OCR_FALLBACK, 0.9)) == 0.96

    @pytest.mark.parametrize("method", [
        ProcessingMethod.OCR_FALLBACK, ProcessingMethod.HYBRID, ProcessingMethod.DIRECT_IMAGE_OCR,
    ])
    def test_low_ocr_penalty(self, scorer, method):
        # 0.6 * 1.0 + 0.4 * 0.5 - 0.1
        assert scorer.score(1.0, _text(method, 0.5)) == 0.7

    def test_penalty_floor(self, scorer):
        assert scorer.score(0.0, _text(ProcessingMethod.OCR_FALLBACK, 0.2)) == 0.1

    def test_basic_strategy_capped(self, scorer):
        # parse term capped at 0.5: 0.6 * 0.5 + 0.4 * 0.95 + 0.05
        assert scorer.score(1.0, _text(ProcessingMethod.DIRECT_TEXT, 0.95), ParserStrategy.BASIC) == 0.73

    def test_needs_review(self, scorer, templates):
        template = templates.get("license")
        assert scorer.needs_review(0.69, template, [])
        assert not scorer.needs_review(0.7, template, [])
        assert scorer.needs_review(0.95, template, ["firstName: value not found in source text"])
