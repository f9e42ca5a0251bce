# SPDX-License-Identifier: AGPL-3.0-only

"""
Regex-based field parser.

A cost-free strategy for deployments without a language model. It only ever
runs instead of the model-backed parser, never alongside it, and its
confidence is capped well below what the model-backed parser can reach.
"""

import logging
import re
from typing import Dict, List, Optional, Pattern

from .config import ExtractionConfig, config as default_config
from .models import (
    DateField, ExtractionTemplate, NumberField, ParseResult, ParserStrategy,
)
from .normalizer import normalize_value

logger = logging.getLogger(__name__)

_DATE = r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|\d{4}[/\-]\d{1,2}[/\-]\d{1,2})"
_AMOUNT = r"([$€£]?\s?\d[\d,]*(?:\.\d+)?)"

# Field-specific patterns; group 1 is the value
FIELD_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "license": {
        "licenseNumber": [
            r"\b(?:DL|LIC|LICENSE)(?:\s*(?:NO|NUMBER))?[\s#:.]*([A-Z0-9]{5,20})\b",
        ],
        "expirationDate": [r"\b(?:EXP|EXPIRES?|EXPIRATION)[\s:]*" + _DATE],
        "dateOfBirth": [r"\b(?:DOB|BIRTH|BORN)[\s:]*" + _DATE],
        "firstName": [r"\b(?:FN|FIRST NAME|GIVEN NAME)[\s:]+([A-Z][A-Z ]{0,40}?)\s*(?:\n|$|LN\b)"],
        "lastName": [r"\b(?:LN|LAST NAME|SURNAME)[\s:]+([A-Z][A-Z ]{0,40}?)\s*(?:\n|$|FN\b)"],
    },
    "carrier_cert": {
        "certificateNumber": [r"\b(?:CERTIFICATE|CERT)(?:\s*(?:NO|NUMBER))?[\s#:.]*([A-Z0-9\-]{4,30})\b"],
        "expirationDate": [r"\b(?:EXP|EXPIRES?|EXPIRATION|VALID UNTIL)[\s:]*" + _DATE],
        "issueDate": [r"\b(?:ISSUED|ISSUE DATE|DATE ISSUED)(?:\s+ON)?[\s:]*" + _DATE],
    },
    "insurance": {
        "policyNumber": [r"\b(?:POLICY|POL)(?:\s*(?:NO|NUMBER))?[\s#:.]*([A-Z0-9\-]{4,40})\b"],
        "expirationDate": [
            r"\b(?:EXP|EXPIRES?|EXPIRATION)[\s:]*" + _DATE,
            r"\bTO[\s:]*" + _DATE,
        ],
        "effectiveDate": [
            r"\b(?:EFFECTIVE|EFF)(?:\s+DATE)?[\s:]*" + _DATE,
            r"\bFROM[\s:]*" + _DATE,
        ],
        "coverageAmount": [r"\b(?:COVERAGE|LIMIT|AMOUNT)[\w ]{0,20}?[\s:]*" + _AMOUNT],
    },
}


class BasicFieldParser:
    """Pattern matching over recognized text, one template at a time."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or default_config
        self._compiled: Dict[str, List[Pattern]] = {}

    def parse(self, text: str, template: ExtractionTemplate) -> ParseResult:
        doc_key = template.document_type.value
        specific = FIELD_PATTERNS.get(doc_key, {})
        data = {}

        for name, field_def in template.fields.items():
            patterns = specific.get(name) or self._generic_patterns(field_def)
            raw = self._first_match(f"{doc_key}.{template.version}.{name}", patterns, text)
            value = normalize_value(field_def, raw)
            if value is not None:
                data[name] = value

        found = [n for n in template.field_names if n in data]
        missing = [n for n in template.field_names if n not in data]
        required = template.required_fields
        required_found = sum(1 for n in required if n in data)
        score = ((required_found / len(required)) * 0.8 if required else 0.8) \
            + (len(found) / len(template.fields)) * 0.2
        confidence = round(min(score, self.config.basic_confidence_ceiling), 2)

        logger.info("Basic parser found %d/%d fields for %s", len(found), len(template.fields), doc_key)
        return ParseResult(
            data=data,
            confidence=confidence,
            fields_found=found,
            fields_missing=missing,
            strategy=ParserStrategy.BASIC,
            template_version=template.version,
        )

    def _generic_patterns(self, field_def) -> List[str]:
        if not field_def.match_patterns:
            return []
        labels = "|".join(re.escape(p) for p in sorted(field_def.match_patterns, key=len, reverse=True))
        if isinstance(field_def, DateField):
            value = _DATE
        elif isinstance(field_def, NumberField):
            value = _AMOUNT
        else:
            value = r"([^\n]{2,80})"
        return [rf"(?:{labels})[\s#:]*{value}"]

    def _first_match(self, cache_key: str, patterns: List[str], text: str) -> Optional[str]:
        compiled = self._compiled.get(cache_key)
        if compiled is None:
            compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
            self._compiled[cache_key] = compiled
        for pattern in compiled:
            match = pattern.search(text)
            if match:
                return match.group(1).strip()
        return None
