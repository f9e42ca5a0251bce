# SPDX-License-Identifier: AGPL-3.0-only

"""
Extraction templates.

Built-in templates for every supported document type, optionally overridden by
``<document_type>.json`` files in a template directory. Templates are cached
after the first load and only reloaded when the cache is invalidated.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from common.caching import SimpleCache

from .config import ExtractionConfig, config as default_config
from .exceptions import InvalidTemplateError, TemplateNotFoundError
from .models import DocumentType, ExtractionTemplate, TemplateInfo

logger = logging.getLogger(__name__)


_EXPIRATION_PATTERNS = ["exp", "expires", "expiration", "valid until"]

BUILTIN_TEMPLATES: Dict[str, Dict[str, Any]] = {
    DocumentType.LICENSE.value: {
        "document_type": "license",
        "version": "1",
        "description": "Driver license",
        "confidence_threshold": 0.7,
        "document_specific_instructions": [
            "This is a government-issued driver license.",
            "Some regions print two surnames (paternal then maternal); put both in lastName.",
            "Names may be printed as 'LAST, FIRST' or on separate labelled lines.",
            "The license number is usually labelled DL, LIC or LICENSE NO.",
        ],
        "fields": {
            "licenseNumber": {
                "type": "string",
                "required": True,
                "instruction": "The license number exactly as printed, without the label.",
                "match_patterns": ["license", "dl", "lic", "number", "#"],
                "examples": ["DL4471202", "A1234567"],
                "rules": {"min_length": 5, "max_length": 20, "allowed_chars": "alphanumeric",
                          "transform": "uppercase"},
            },
            "expirationDate": {
                "type": "date",
                "required": True,
                "instruction": "The date the license expires.",
                "match_patterns": _EXPIRATION_PATTERNS,
                "examples": ["12/31/2026", "2027-03-15"],
                "rules": {"min_year": 2000, "max_year": 2100},
            },
            "firstName": {
                "type": "string",
                "instruction": "Given name(s) of the holder.",
                "match_patterns": ["first name", "given name", "fn"],
                "examples": ["JOHN", None],
                "rules": {"allowed_chars": "letters_and_spaces", "transform": "uppercase"},
            },
            "lastName": {
                "type": "string",
                "instruction": "Family name(s) of the holder.",
                "match_patterns": ["last name", "surname", "family name", "ln"],
                "examples": ["DOE", "GARCIA LOPEZ"],
                "rules": {"allowed_chars": "letters_and_spaces", "transform": "uppercase"},
            },
            "dateOfBirth": {
                "type": "date",
                "instruction": "The holder's date of birth.",
                "match_patterns": ["dob", "date of birth", "born"],
                "examples": ["06/15/1985"],
                "rules": {"min_year": 1900, "must_be_past": True},
            },
        },
    },
    DocumentType.CARRIER_CERT.value: {
        "document_type": "carrier_cert",
        "version": "1",
        "description": "Carrier certificate",
        "confidence_threshold": 0.7,
        "document_specific_instructions": [
            "This is a carrier operating certificate issued by a transport authority.",
            "The certificate number may be labelled CERT, CERTIFICATE NO or PERMIT.",
        ],
        "fields": {
            "certificateNumber": {
                "type": "string",
                "required": True,
                "instruction": "The certificate number exactly as printed.",
                "match_patterns": ["cert", "certificate", "number", "#"],
                "examples": ["MC-123456"],
                "rules": {"min_length": 3, "max_length": 30, "transform": "uppercase"},
            },
            "expirationDate": {
                "type": "date",
                "required": True,
                "instruction": "The date the certificate expires.",
                "match_patterns": _EXPIRATION_PATTERNS,
                "examples": ["2026-01-31"],
                "rules": {"min_year": 2000, "max_year": 2100},
            },
            "issueDate": {
                "type": "date",
                "instruction": "The date the certificate was issued.",
                "match_patterns": ["issued", "issue date", "date issued"],
                "examples": ["2024-02-01"],
                "rules": {"min_year": 1950, "must_be_past": True},
            },
            "authority": {
                "type": "string",
                "instruction": "The issuing authority or department.",
                "match_patterns": ["issued by", "authority", "department"],
                "examples": ["DEPARTMENT OF TRANSPORTATION"],
                "rules": {"max_length": 200},
            },
        },
    },
    DocumentType.INSURANCE.value: {
        "document_type": "insurance",
        "version": "1",
        "description": "Insurance certificate",
        "confidence_threshold": 0.7,
        "document_specific_instructions": [
            "This is a certificate of insurance.",
            "When a policy period is given as 'FROM x TO y', x is the effective date and y the expiration date.",
        ],
        "fields": {
            "policyNumber": {
                "type": "string",
                "required": True,
                "instruction": "The policy number exactly as printed.",
                "match_patterns": ["policy", "policy no", "number", "#"],
                "examples": ["POL-99812-A"],
                "rules": {"min_length": 3, "max_length": 40, "transform": "uppercase"},
            },
            "expirationDate": {
                "type": "date",
                "required": True,
                "instruction": "The date coverage ends.",
                "match_patterns": _EXPIRATION_PATTERNS + ["policy period"],
                "examples": ["2026-06-30"],
                "rules": {"min_year": 2000, "max_year": 2100},
            },
            "effectiveDate": {
                "type": "date",
                "instruction": "The date coverage starts.",
                "match_patterns": ["effective", "start", "from"],
                "examples": ["2025-07-01"],
                "rules": {"min_year": 1950},
            },
            "insuranceCompany": {
                "type": "string",
                "instruction": "The insurer's name.",
                "match_patterns": ["insurer", "company", "underwritten by"],
                "examples": ["ACME MUTUAL INSURANCE"],
                "rules": {"max_length": 200},
            },
            "coverageAmount": {
                "type": "number",
                "instruction": "The main coverage limit as a plain number.",
                "match_patterns": ["coverage", "limit", "amount"],
                "examples": ["1000000"],
                "rules": {"min_value": 0},
            },
        },
    },
}


class TemplateRepository:
    """Resolves a document type to its current ExtractionTemplate."""

    def __init__(self, config: Optional[ExtractionConfig] = None,
                 templates: Optional[Dict[str, Dict[str, Any]]] = None,
                 template_dir: Optional[str] = None):
        self.config = config or default_config
        self._definitions = dict(templates) if templates is not None else dict(BUILTIN_TEMPLATES)
        self.template_dir = template_dir if template_dir is not None else self.config.template_dir
        self._cache = SimpleCache(max_size=len(DocumentType) * 4)

    def get(self, document_type: Union[DocumentType, str]) -> ExtractionTemplate:
        """
        Look up a template, loading and caching it on first use.

        Raises:
            TemplateNotFoundError: No template is defined for the type.
            InvalidTemplateError: The definition fails validation.
        """
        key = document_type.value if isinstance(document_type, DocumentType) else str(document_type)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Template cache hit: %s", key)
            return cached

        template = self._load(key)
        self._cache.set(key, template)
        logger.info("Loaded template %s version %s (%d fields)", key, template.version, len(template.fields))
        return template

    def register(self, definition: Union[ExtractionTemplate, Dict[str, Any]]) -> ExtractionTemplate:
        """Add or replace a definition; takes effect immediately."""
        template = self._validate(definition) if isinstance(definition, dict) else definition
        key = template.document_type.value
        self._definitions[key] = template.model_dump()
        self._cache.delete(key)
        return template

    def invalidate(self, document_type: Optional[Union[DocumentType, str]] = None) -> int:
        """Drop one cached template (or all); returns how many entries were dropped."""
        if document_type is None:
            count = len(self._cache)
            self._cache.clear()
        else:
            key = document_type.value if isinstance(document_type, DocumentType) else str(document_type)
            count = 1 if self._cache.delete(key) else 0
        logger.info("Template cache invalidated (%d entries)", count)
        return count

    def list_templates(self) -> List[TemplateInfo]:
        infos = []
        for doc_type in DocumentType:
            try:
                template = self.get(doc_type)
            except TemplateNotFoundError as e:
                logger.warning("Skipping template %s: %s", doc_type.value, e)
                continue
            infos.append(TemplateInfo(
                document_type=template.document_type,
                version=template.version,
                field_count=len(template.fields),
                required_fields=template.required_fields,
                optional_fields=template.optional_fields,
                confidence_threshold=template.confidence_threshold,
            ))
        return infos

    def _load(self, key: str) -> ExtractionTemplate:
        definition = self._read_override(key)
        if definition is None:
            definition = self._definitions.get(key)
        if definition is None:
            raise TemplateNotFoundError(f"No extraction template for document type '{key}'")
        return self._validate(definition)

    def _read_override(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.template_dir:
            return None
        path = os.path.join(self.template_dir, f"{key}.json")
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidTemplateError(f"Could not read template override {path}: {e}")

    def _validate(self, definition: Dict[str, Any]) -> ExtractionTemplate:
        # Unknown field types fail the discriminated union, so every field has a validator
        try:
            template = ExtractionTemplate.model_validate(definition)
        except ValidationError as e:
            raise InvalidTemplateError(f"Invalid template definition: {e}")
        if not template.fields:
            raise InvalidTemplateError(f"Template '{template.document_type.value}' defines no fields")
        return template
