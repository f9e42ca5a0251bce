# SPDX-License-Identifier: AGPL-3.0-only

import pytest
from unittest.mock import Mock, patch

from common.llm_client import LLMTimeoutError
from docextract.ai_service import StructuredParser
from docextract.models import DocumentType, ParserStrategy, ProcessingMethod
from docextract.ocr_service import TesseractOCREngine
from docextract.pipeline import ExtractionOrchestrator
from docextract.templates import TemplateRepository
from docextract.text_service import TextExtractionService

SCENARIO_TEXT = "LIC# DL4471202 EXP 12/31/2026 DOB 06/15/1985 JOHN DOE"

SCENARIO_TEMPLATE = {
    "document_type": "license",
    "version": "1",
    "description": "Driver license",
    "fields": {
        "licenseNumber": {"type": "string", "required": True,
                          "rules": {"transform": "uppercase", "allowed_chars": "alphanumeric"}},
        "expirationDate": {"type": "date", "required": True, "rules": {"min_year": 2000}},
        "dateOfBirth": {"type": "date", "rules": {"must_be_past": True}},
    },
}


class TestExtractionOrchestrator:
    """End-to-end runs of one document with a fake OCR engine and a mocked provider."""

    @pytest.fixture
    def scenario_templates(self, config):
        return TemplateRepository(config, templates={"license": SCENARIO_TEMPLATE})

    def _orchestrator(self, config, ocr, client, templates):
        text_service = TextExtractionService(ocr, config=config)
        return ExtractionOrchestrator(text_service, StructuredParser(client, templates, config), config=config)

    @pytest.mark.integration
    def test_license_with_clear_text(self, config, ocr_factory, llm_factory, scenario_templates, png_bytes):
        client = llm_factory({"licenseNumber": "DL4471202", "expirationDate": "12/31/2026",
                              "dateOfBirth": "06/15/1985"})
        orchestrator = self._orchestrator(config, ocr_factory(SCENARIO_TEXT, 0.9), client, scenario_templates)

        result = orchestrator.process(png_bytes, DocumentType.LICENSE, job_id="job-1")

        assert result.success
        assert result.extracted_data == {
            "licenseNumber": "DL4471202",
            "expirationDate": "2026-12-31",
            "dateOfBirth": "1985-06-15",
        }
        assert result.fields_missing == []
        assert result.confidence_score >= 0.8
        assert not result.needs_review
        assert result.processing_method == ProcessingMethod.DIRECT_IMAGE_OCR
        assert result.parser_strategy == ParserStrategy.LLM
        assert result.raw_text == SCENARIO_TEXT
        assert result.job_id == "job-1"

    @pytest.mark.integration
    def test_unreadable_scan_fails_retryably(self, config, ocr_factory, llm_factory, templates, blank_pdf):
        ocr = ocr_factory(pages=[{"page": 1, "text": "", "confidence": 0.0},
                                 {"page": 2, "text": "", "confidence": 0.0}])
        client = llm_factory({})
        orchestrator = self._orchestrator(config, ocr, client, templates)

        result = orchestrator.process(blank_pdf, "license")

        assert not result.success
        assert result.error_category == "extraction"
        assert result.retryable
        assert result.extracted_data == {}
        client.call.assert_not_called()

    @pytest.mark.integration
    def test_hallucinated_value_is_flagged(self, config, ocr_factory, llm_factory, scenario_templates, png_bytes):
        def run(dob):
            client = llm_factory({"licenseNumber": "DL4471202", "expirationDate": "2026-12-31",
                                  "dateOfBirth": dob})
            return self._orchestrator(config, ocr_factory(SCENARIO_TEXT, 0.9), client,
                                      scenario_templates).process(png_bytes, "license")

        honest = run("1985-06-15")
        invented = run("1979-03-22")

        assert invented.success
        assert invented.extracted_data["dateOfBirth"] == "1979-03-22"
        assert invented.field_validation["dateOfBirth"].traceable is False
        assert any("dateOfBirth" in w for w in invented.warnings)
        assert invented.needs_review
        assert invented.confidence_score < honest.confidence_score

    def test_missing_required_field(self, config, ocr_factory, llm_factory, scenario_templates, png_bytes):
        client = llm_factory({"licenseNumber": None, "expirationDate": "2026-12-31", "dateOfBirth": None})
        result = self._orchestrator(config, ocr_factory(SCENARIO_TEXT, 0.9), client,
                                    scenario_templates).process(png_bytes, "license")

        assert result.success
        assert "licenseNumber" in result.fields_missing
        assert "licenseNumber is required" in result.errors
        assert result.needs_review
        # 0.6 * (0.5 * 0.8 + 2/3 * 0.2) + 0.4 * 0.9
        assert result.confidence_score == 0.68

    def test_phases_reported_in_order(self, orchestrator, png_bytes):
        phases = []
        orchestrator.process(png_bytes, "license", on_phase=phases.append)
        assert phases == ["extracting_text", "parsing", "validating"]

    def test_phase_callback_errors_are_ignored(self, orchestrator, png_bytes):
        result = orchestrator.process(png_bytes, "license", on_phase=Mock(side_effect=RuntimeError("boom")))
        assert result.success

    def test_unsupported_file(self, orchestrator):
        result = orchestrator.process(b"GIF89a\x01\x00\x01\x00", "license")
        assert not result.success
        assert result.error_category == "classification"
        assert not result.retryable

    @pytest.mark.integration
    def test_truncated_image_is_not_retried(self, config, parser, png_bytes):
        orchestrator = ExtractionOrchestrator(TextExtractionService(TesseractOCREngine(config), config=config),
                                              parser, config=config)

        result = orchestrator.process(png_bytes[:40], DocumentType.LICENSE)

        assert not result.success
        assert result.error_category == "classification"
        assert not result.retryable
        assert "Could not decode image" in result.errors[0]

    @pytest.mark.integration
    def test_unopenable_scan_is_not_retried(self, config, parser, blank_pdf):
        orchestrator = ExtractionOrchestrator(TextExtractionService(TesseractOCREngine(config), config=config),
                                              parser, config=config)

        with patch("docextract.ocr_service.fitz.open", side_effect=RuntimeError("broken xref")):
            result = orchestrator.process(blank_pdf, DocumentType.LICENSE)

        assert not result.success
        assert result.error_category == "classification"
        assert not result.retryable

    def test_unknown_document_type(self, orchestrator, png_bytes):
        result = orchestrator.process(png_bytes, "passport")
        assert not result.success
        assert result.error_category == "parsing"
        assert not result.retryable
        assert result.document_type is None

    def test_parse_failure_keeps_raw_response(self, config, fake_ocr, llm_factory, templates, png_bytes):
        client = llm_factory(text="I could not read this document.")
        result = self._orchestrator(config, fake_ocr, client, templates).process(png_bytes, "license")

        assert not result.success
        assert result.error_category == "parsing"
        assert result.retryable
        assert result.metrics["raw_response"] == "I could not read this document."
        assert result.raw_text

    def test_provider_timeout_is_infrastructure(self, config, fake_ocr, llm_factory, templates, png_bytes):
        client = llm_factory({})
        client.call.side_effect = LLMTimeoutError("timed out")
        result = self._orchestrator(config, fake_ocr, client, templates).process(png_bytes, "license")

        assert not result.success
        assert result.error_category == "infrastructure"
        assert result.retryable

    def test_unexpected_error_is_wrapped(self, config, fake_ocr, templates, png_bytes):
        parser = Mock(spec=StructuredParser)
        parser.get_template.return_value = templates.get("license")
        parser.parse.side_effect = KeyError("surprise")
        orchestrator = ExtractionOrchestrator(TextExtractionService(fake_ocr, config=config), parser, config=config)

        result = orchestrator.process(png_bytes, "license")
        assert not result.success
        assert result.error_category == "infrastructure"
        assert "Unexpected error" in result.errors[0]

    def test_metrics_and_cost(self, orchestrator, png_bytes, config):
        result = orchestrator.process(png_bytes, "license")

        assert set(result.metrics["stages_ms"]) == {"extracting_text", "parsing", "validating"}
        assert result.metrics["llm_calls"] == 1
        assert result.estimated_cost == pytest.approx(config.ocr_cost_per_page + 0.0002)

    def test_result_serializes_to_plain_values(self, orchestrator, png_bytes):
        payload = orchestrator.process(png_bytes, "license").to_dict()
        assert payload["processing_method"] == "direct-image-ocr"
        assert payload["document_type"] == "license"
        assert payload["field_validation"]["licenseNumber"]["is_valid"] is True
