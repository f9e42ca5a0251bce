# SPDX-License-Identifier: AGPL-3.0-only

import pytest

from common.llm_client import LLMClientError, LLMTimeoutError
from common.metrics import JobMetrics
from docextract.ai_service import StructuredParser, parse_json_safely
from docextract.exceptions import InfrastructureError, ParsingError, TemplateNotFoundError
from docextract.models import DocumentType, ParserStrategy


@pytest.mark.unit
class TestParseJsonSafely:

    def test_plain(self):
        assert parse_json_safely('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_json_safely('```json\n{"a": null}\n```') == {"a": None}

    def test_surrounding_prose(self):
        assert parse_json_safely('Here you go: {"a": "x"} hope it helps') == {"a": "x"}

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_json_safely("no json here")


@pytest.mark.unit
class TestStructuredParser:
    """Model-backed parsing with a mocked provider."""

    def test_strategy_selection(self, templates, config, llm_factory):
        assert StructuredParser(llm_factory({}), templates, config).strategy == ParserStrategy.LLM
        assert StructuredParser(llm_factory({}, configured=False), templates, config).strategy == ParserStrategy.BASIC
        assert StructuredParser(None, templates, config).strategy == ParserStrategy.BASIC

    def test_full_parse(self, parser, llm_client, license_text):
        metrics = JobMetrics()
        result = parser.parse(license_text, DocumentType.LICENSE, metrics)

        assert result.strategy == ParserStrategy.LLM
        assert result.data["licenseNumber"] == "A1234567"
        assert result.fields_missing == []
        assert result.confidence == 1.0
        assert result.warnings == []
        assert result.template_version == "1"
        assert metrics.llm_calls == 1
        assert metrics.total_tokens == 120

        llm_client.call.assert_called_once()
        kwargs = llm_client.call.call_args.kwargs
        assert kwargs["json_mode"] is True

    def test_values_are_normalized(self, templates, config, llm_factory, license_text):
        client = llm_factory({"licenseNumber": " A1234567 ", "expirationDate": "12/31/2026", "dateOfBirth": ""})
        result = StructuredParser(client, templates, config).parse(license_text, "license")

        assert result.data == {"licenseNumber": "A1234567", "expirationDate": "2026-12-31"}
        assert "dateOfBirth" in result.fields_missing

    def test_missing_required_field_warns(self, templates, config, llm_factory, license_text):
        client = llm_factory({"licenseNumber": "A1234567", "expirationDate": None, "firstName": "JOHN"})
        result = StructuredParser(client, templates, config).parse(license_text, "license")

        # 1/2 required, 2/5 overall
        assert result.confidence == 0.48
        assert "Low parsing confidence: 48%" in result.warnings
        assert "Missing required fields: expirationDate" in result.warnings

    def test_non_object_response(self, templates, config, llm_factory, license_text):
        client = llm_factory(text='["A1234567"]')
        with pytest.raises(ParsingError) as exc:
            StructuredParser(client, templates, config).parse(license_text, "license")
        assert exc.value.raw_response == '["A1234567"]'
        assert exc.value.retryable is True

    def test_nested_response(self, templates, config, llm_factory, license_text):
        client = llm_factory({"licenseNumber": {"value": "A1234567"}})
        with pytest.raises(ParsingError):
            StructuredParser(client, templates, config).parse(license_text, "license")

    def test_unparsable_response(self, templates, config, llm_factory, license_text):
        client = llm_factory(text="Sorry, I cannot help with that.")
        with pytest.raises(ParsingError) as exc:
            StructuredParser(client, templates, config).parse(license_text, "license")
        assert "Sorry" in exc.value.raw_response

    @pytest.mark.parametrize("error", [LLMTimeoutError("slow"), LLMClientError("503")])
    def test_provider_errors_are_infrastructure(self, templates, config, llm_factory, license_text, error):
        client = llm_factory({})
        client.call.side_effect = error
        with pytest.raises(InfrastructureError):
            StructuredParser(client, templates, config).parse(license_text, "license")

    def test_provider_failure_does_not_fall_back(self, templates, config, llm_factory, license_text):
        client = llm_factory({})
        client.call.side_effect = LLMClientError("down")
        parser = StructuredParser(client, templates, config)
        with pytest.raises(InfrastructureError):
            parser.parse(license_text, "license")
        assert parser.strategy == ParserStrategy.LLM

    def test_basic_strategy_without_provider(self, templates, config, license_text):
        result = StructuredParser(None, templates, config).parse(license_text, "license")

        assert result.strategy == ParserStrategy.BASIC
        assert result.confidence <= config.basic_confidence_ceiling
        assert any(w.startswith("Low parsing confidence") for w in result.warnings)

    def test_unknown_document_type(self, parser, license_text):
        with pytest.raises(TemplateNotFoundError):
            parser.parse(license_text, "passport")

    def test_empty_text(self, parser):
        with pytest.raises(ParsingError):
            parser.parse("   ", "license")


@pytest.mark.unit
class TestPromptConstruction:

    def test_sections(self, parser, templates, license_text):
        prompt = parser.build_prompt(license_text, templates.get("license"))

        required = prompt.index("REQUIRED FIELDS:")
        optional = prompt.index("OPTIONAL FIELDS")
        assert required < optional
        assert "- licenseNumber (string)" in prompt[required:optional]
        assert "- dateOfBirth (date)" in prompt[optional:]
        assert "Use null for fields that cannot be found" in prompt
        assert "paternal" in prompt
        assert license_text in prompt

    def test_long_text_keeps_head_and_tail(self, templates, config, llm_factory):
        config.max_text_length = 100
        parser = StructuredParser(llm_factory({}), templates, config)
        text = "HEAD" + "x" * 500 + "TAIL"
        prompt = parser.build_prompt(text, templates.get("license"))

        assert "HEAD" in prompt
        assert "TAIL" in prompt
        assert "x" * 200 not in prompt
