# SPDX-License-Identifier: AGPL-3.0-only

"""
Structured parsing service.

This module turns recognized text into a flat field map for one document type.
The model-backed strategy builds one request per document from the template's
instructions and asks for a JSON object keyed by the template's field names.
Deployments without a configured provider use the regex parser instead.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from common.llm_client import LLMClient, LLMClientError, LLMTimeoutError
from common.metrics import JobMetrics

from .basic_extractor import BasicFieldParser
from .config import ExtractionConfig, config as default_config
from .exceptions import InfrastructureError, ParsingError
from .models import (
    DateField, DocumentType, ExtractionTemplate, NumberField, ParseResult,
    ParserStrategy, TemplateInfo,
)
from .normalizer import normalize_value
from .templates import TemplateRepository

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a document data extraction specialist. Return ONLY valid JSON. "
    "Extract exact values from the text without paraphrasing. "
    "Use null for any field you cannot find; never guess or invent a value."
)

LOW_CONFIDENCE_WARNING = 0.6


def parse_json_safely(text: str) -> Any:
    """
    Parse JSON from a model response, tolerating code fences and surrounding prose.

    Raises:
        ValueError: If no JSON value can be recovered
    """
    if not isinstance(text, str):
        raise ValueError("Response is not a string")

    cleaned = text.strip()

    # Remove common code fences
    if cleaned.startswith("```"):
        cleaned = cleaned.strip('`')
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
        cleaned = cleaned.strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Try to find first JSON object block
    start = cleaned.find('{')
    end = cleaned.rfind('}')
    if start != -1 and end > start:
        try:
            return json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError:
            pass

    raise ValueError("Could not parse JSON from response")


class StructuredParser:
    """Template-driven parser; model-backed when a provider is configured."""

    def __init__(self, llm_client: Optional[LLMClient] = None,
                 templates: Optional[TemplateRepository] = None,
                 config: Optional[ExtractionConfig] = None,
                 basic_parser: Optional[BasicFieldParser] = None):
        """
        Initialize the parser.

        Args:
            llm_client: Provider client; when None or unconfigured the regex parser is used
            templates: Template repository (cached lookups)
            config: Extraction configuration
            basic_parser: Regex parser used without a provider
        """
        self.config = config or default_config
        self.llm_client = llm_client
        self.templates = templates or TemplateRepository(self.config)
        self.basic_parser = basic_parser or BasicFieldParser(self.config)

    @property
    def strategy(self) -> ParserStrategy:
        if self.llm_client is not None and self.llm_client.is_configured():
            return ParserStrategy.LLM
        return ParserStrategy.BASIC

    def get_template(self, document_type: Union[DocumentType, str]) -> ExtractionTemplate:
        return self.templates.get(document_type)

    def list_templates(self) -> List[TemplateInfo]:
        return self.templates.list_templates()

    def invalidate_templates(self, document_type: Optional[Union[DocumentType, str]] = None) -> int:
        return self.templates.invalidate(document_type)

    def parse(self, raw_text: str, document_type: Union[DocumentType, str],
              metrics: Optional[JobMetrics] = None) -> ParseResult:
        """
        Parse recognized text into template fields.

        Args:
            raw_text: Recognized document text
            document_type: Selects the template
            metrics: Optional job metrics receiving token counts

        Returns:
            ParseResult with canonicalized values for every field that was found

        Raises:
            TemplateNotFoundError: Unknown document type
            ParsingError: The model response is not a flat JSON object
            InfrastructureError: The provider could not be reached or timed out
        """
        if not raw_text or not raw_text.strip():
            raise ParsingError("No text provided for parsing")

        template = self.templates.get(document_type)

        if self.strategy == ParserStrategy.BASIC:
            result = self.basic_parser.parse(raw_text, template)
        else:
            result = self._parse_with_llm(raw_text, template, metrics)

        result.warnings.extend(self._generate_warnings(result, template))
        return result

    def _parse_with_llm(self, raw_text: str, template: ExtractionTemplate,
                        metrics: Optional[JobMetrics]) -> ParseResult:
        prompt = self.build_prompt(raw_text, template)
        logger.debug("Parsing prompt for %s: %d chars", template.document_type.value, len(prompt))

        try:
            response = self.llm_client.call(
                prompt, SYSTEM_PROMPT, max_tokens=self.config.llm_max_tokens, json_mode=True,
            )
        except LLMTimeoutError as e:
            raise InfrastructureError(f"Parsing call timed out: {e}")
        except LLMClientError as e:
            raise InfrastructureError(f"Parsing call failed: {e}")

        if metrics is not None:
            metrics.add_llm_call(response.get("tokens", 0), response.get("cost", 0.0))

        raw_response = response.get("text") or ""
        try:
            parsed = parse_json_safely(raw_response)
        except ValueError as e:
            raise ParsingError(f"Unparsable parsing response: {e}", raw_response=raw_response)
        if not isinstance(parsed, dict):
            raise ParsingError(
                f"Parsing response must be a JSON object, got {type(parsed).__name__}",
                raw_response=raw_response,
            )
        nested = [k for k, v in parsed.items() if k in template.fields and isinstance(v, (dict, list))]
        if nested:
            raise ParsingError(
                f"Parsing response is not flat: {', '.join(nested)}", raw_response=raw_response,
            )

        data = {}
        for name, field_def in template.fields.items():
            value = normalize_value(field_def, parsed.get(name))
            if value is not None:
                data[name] = value

        unexpected = [k for k in parsed if k not in template.fields]
        if unexpected:
            logger.debug("Ignoring fields outside the template: %s", unexpected)

        found = [n for n in template.field_names if n in data]
        missing = [n for n in template.field_names if n not in data]
        logger.info("Parsed %s: %d found, %d missing", template.document_type.value, len(found), len(missing))

        return ParseResult(
            data=data,
            confidence=self._found_confidence(template, found),
            fields_found=found,
            fields_missing=missing,
            strategy=ParserStrategy.LLM,
            template_version=template.version,
            raw_response=raw_response,
        )

    def build_prompt(self, raw_text: str, template: ExtractionTemplate) -> str:
        """Build the single extraction request for one document."""
        doc_snippet = self._truncate(raw_text)
        lines = [
            f"Extract the following information from this {template.description or template.document_type.value} "
            f"document text.",
            "",
        ]
        if template.document_specific_instructions:
            lines.append("DOCUMENT NOTES:")
            lines.extend(f"- {note}" for note in template.document_specific_instructions)
            lines.append("")

        for heading, names in (("REQUIRED FIELDS:", template.required_fields),
                               ("OPTIONAL FIELDS (extract if available):", template.optional_fields)):
            if not names:
                continue
            lines.append(heading)
            for name in names:
                lines.extend(self._field_block(name, template.fields[name]))
            lines.append("")

        lines.append("Document text to analyze:")
        lines.append(doc_snippet)
        lines.append("")
        lines.append("IMPORTANT INSTRUCTIONS:")
        lines.append("- Return ONLY a flat JSON object whose keys are exactly the field names above")
        lines.append("- Use null for fields that cannot be found")
        lines.append("- For dates, format as YYYY-MM-DD")
        lines.append("- For numbers, return digits only without currency symbols or separators")
        lines.append("- Do not guess or make up information")
        lines.append("")

        expected = {}
        for name, field_def in template.fields.items():
            if isinstance(field_def, DateField):
                expected[name] = "YYYY-MM-DD or null"
            else:
                expected[name] = f"{field_def.type} or null"
        lines.append("Expected JSON format:")
        lines.append(json.dumps(expected, indent=2))
        return "\n".join(lines)

    def _field_block(self, name: str, field_def) -> List[str]:
        block = [f"- {name} ({field_def.type}): {field_def.instruction}".rstrip(": ")]
        if field_def.match_patterns:
            block.append(f"  Look for labels like: {', '.join(field_def.match_patterns)}")
        examples = [e for e in field_def.examples if e is not None]
        if examples:
            block.append(f"  Examples: {', '.join(examples)}")
        if isinstance(field_def, NumberField):
            block.append("  Return a plain number.")
        return block

    def _truncate(self, text: str) -> str:
        max_chars = self.config.max_text_length
        if len(text) <= max_chars:
            return text
        # Keep head and tail
        head = text[:max_chars * 3 // 4]
        tail = text[-(max_chars // 4):]
        return f"{head}\n\n[...]\n\n{tail}"

    def _found_confidence(self, template: ExtractionTemplate, found: List[str]) -> float:
        required = template.required_fields
        required_found = sum(1 for n in required if n in found)
        required_term = (required_found / len(required)) if required else 1.0
        return round(required_term * 0.8 + (len(found) / len(template.fields)) * 0.2, 2)

    def _generate_warnings(self, result: ParseResult, template: ExtractionTemplate) -> List[str]:
        warnings = []
        if result.confidence < LOW_CONFIDENCE_WARNING:
            warnings.append(f"Low parsing confidence: {round(result.confidence * 100)}%")
        missing_required = [n for n in template.required_fields if n in result.fields_missing]
        if missing_required:
            warnings.append(f"Missing required fields: {', '.join(missing_required)}")
        return warnings
