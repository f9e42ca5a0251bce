# SPDX-License-Identifier: AGPL-3.0-only

"""
Field validation.

Type, format and range checks per template field, plus a traceability check
that each extracted value actually occurs in the recognized text. Problems
found here are reported as errors and warnings; they never raise.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from .config import ExtractionConfig, config as default_config
from .models import (
    DateField, DocumentValidation, ExtractionTemplate, FieldValidation,
    NumberField, StringField, utcnow,
)
from .normalizer import CANONICAL_DATE_FORMAT

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_NAMES = [
    ("january", "jan"), ("february", "feb"), ("march", "mar"), ("april", "apr"),
    ("may", "may"), ("june", "jun"), ("july", "jul"), ("august", "aug"),
    ("september", "sep"), ("october", "oct"), ("november", "nov"), ("december", "dec"),
]


def _normalize_text(value: str) -> str:
    return " ".join(str(value).lower().split())


class FieldValidator:
    """Validates parsed values against a template's per-field rules."""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or default_config

    def validate_document(self, data: Dict[str, Any], template: ExtractionTemplate,
                          raw_text: str, today: Optional[date] = None) -> DocumentValidation:
        """
        Validate every template field.

        Args:
            data: Parsed field values (absent or None means not found)
            template: Template describing the fields
            raw_text: Recognized text used for the traceability check
            today: Reference date for past/future rules (defaults to the current UTC date)

        Returns:
            DocumentValidation with transformed values and the field-level confidence
        """
        today = today or utcnow().date()
        result = DocumentValidation()
        valid_required = 0
        valid_total = 0

        for name, field_def in template.fields.items():
            verdict = self.validate_field(name, field_def, data.get(name), today)

            if verdict.value is not None and not self.is_traceable(field_def, verdict.value, raw_text):
                verdict.traceable = False
                verdict.warnings.append(f"{name}: value not found in source text")
                result.hallucinated_fields.append(name)
                logger.warning("Possible hallucinated value for field %s", name)

            result.fields[name] = verdict
            if verdict.value is not None:
                result.data[name] = verdict.value
            result.errors.extend(verdict.errors)
            result.warnings.extend(verdict.warnings)

            if verdict.is_valid:
                valid_total += 1
                if field_def.required:
                    valid_required += 1

        required_total = len(template.required_fields)
        required_term = (valid_required / required_total) if required_total else 1.0
        score = required_term * 0.8 + (valid_total / len(template.fields)) * 0.2
        score -= self.config.hallucination_penalty * len(result.hallucinated_fields)
        result.confidence = round(max(0.0, min(1.0, score)), 2)
        return result

    def validate_field(self, name: str, field_def, value: Any,
                       today: Optional[date] = None) -> FieldValidation:
        """Apply the field's transform, then check it. The returned value is the transformed one."""
        if value is None or (isinstance(value, str) and not value.strip()):
            if field_def.required:
                return FieldValidation(is_valid=False, value=None, errors=[f"{name} is required"])
            return FieldValidation(is_valid=True, value=None)

        if isinstance(field_def, StringField):
            return self._validate_string(name, field_def, value)
        if isinstance(field_def, DateField):
            return self._validate_date(name, field_def, value, today or utcnow().date())
        if isinstance(field_def, NumberField):
            return self._validate_number(name, field_def, value)
        return FieldValidation(is_valid=False, value=value, errors=[f"{name}: no validator for field type"])

    def _validate_string(self, name: str, field_def: StringField, value: Any) -> FieldValidation:
        rules = field_def.rules
        text = " ".join(str(value).split())
        if rules.transform == "uppercase":
            text = text.upper()
        elif rules.transform == "lowercase":
            text = text.lower()

        errors: List[str] = []
        if rules.min_length is not None and len(text) < rules.min_length:
            errors.append(f"{name} must be at least {rules.min_length} characters")
        if rules.max_length is not None and len(text) > rules.max_length:
            errors.append(f"{name} must be at most {rules.max_length} characters")

        if rules.allowed_chars == "digits_only" and not text.isdigit():
            errors.append(f"{name} must contain only digits")
        elif rules.allowed_chars == "letters_and_spaces" and not all(c.isalpha() or c == " " for c in text):
            errors.append(f"{name} must contain only letters and spaces")
        elif rules.allowed_chars == "alphanumeric" and not text.isalnum():
            errors.append(f"{name} must contain only letters and digits")

        return FieldValidation(is_valid=not errors, value=text, errors=errors)

    def _validate_date(self, name: str, field_def: DateField, value: Any, today: date) -> FieldValidation:
        rules = field_def.rules
        text = str(value).strip()
        if not _ISO_DATE.match(text):
            return FieldValidation(is_valid=False, value=text,
                                   errors=[f"{name} must be a date in YYYY-MM-DD format"])
        try:
            parsed = datetime.strptime(text, CANONICAL_DATE_FORMAT).date()
        except ValueError:
            return FieldValidation(is_valid=False, value=text, errors=[f"{name} is not a valid calendar date"])

        errors: List[str] = []
        if rules.min_year is not None and parsed.year < rules.min_year:
            errors.append(f"{name} year must be {rules.min_year} or later")
        if rules.max_year is not None and parsed.year > rules.max_year:
            errors.append(f"{name} year must be {rules.max_year} or earlier")
        if rules.must_be_past and parsed >= today:
            errors.append(f"{name} must be in the past")
        if rules.must_be_future and parsed <= today:
            errors.append(f"{name} must be in the future")
        return FieldValidation(is_valid=not errors, value=text, errors=errors)

    def _validate_number(self, name: str, field_def: NumberField, value: Any) -> FieldValidation:
        rules = field_def.rules
        if isinstance(value, bool):
            return FieldValidation(is_valid=False, value=value, errors=[f"{name} must be a number"])
        if isinstance(value, (int, float)):
            number = value
        else:
            try:
                number = float(str(value).strip())
            except ValueError:
                return FieldValidation(is_valid=False, value=value, errors=[f"{name} must be a number"])
            if number.is_integer():
                number = int(number)

        errors: List[str] = []
        if rules.min_value is not None and number < rules.min_value:
            errors.append(f"{name} must be at least {rules.min_value:g}")
        if rules.max_value is not None and number > rules.max_value:
            errors.append(f"{name} must be at most {rules.max_value:g}")
        return FieldValidation(is_valid=not errors, value=number, errors=errors)

    # ── traceability ──────────────────────────────────────────────

    def is_traceable(self, field_def, value: Any, raw_text: str) -> bool:
        """Heuristic: does the value plausibly occur in the recognized text?"""
        haystack = _normalize_text(raw_text or "")
        if not haystack:
            return False

        if isinstance(field_def, DateField):
            return self._date_traceable(str(value), haystack)

        needle = _normalize_text(value)
        if not needle:
            return True
        if needle in haystack:
            return True
        if needle.replace(" ", "") in haystack.replace(" ", ""):
            return True
        if isinstance(field_def, NumberField):
            return needle in haystack.replace(",", "")
        return False

    def _date_traceable(self, value: str, haystack: str) -> bool:
        try:
            parsed = datetime.strptime(value, CANONICAL_DATE_FORMAT)
        except ValueError:
            return _normalize_text(value) in haystack

        if str(parsed.year) not in haystack:
            return False
        full, abbr = _MONTH_NAMES[parsed.month - 1]
        month_ok = str(parsed.month) in haystack or full in haystack or abbr in haystack
        return month_ok and str(parsed.day) in haystack
