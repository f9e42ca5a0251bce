# SPDX-License-Identifier: AGPL-3.0-only

"""
Pydantic models for the extraction system.

This module defines the core data structures used throughout the extraction pipeline,
providing type safety, validation, and serialization capabilities.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field
from typing_extensions import Annotated


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentType(str, Enum):
    """Supported document types for extraction."""
    LICENSE = "license"
    CARRIER_CERT = "carrier_cert"
    INSURANCE = "insurance"


class FileKind(str, Enum):
    """File category determined from content, never from the declared type."""
    IMAGE = "image"
    PDF = "pdf"
    UNSUPPORTED = "unsupported"


class ProcessingMethod(str, Enum):
    """Strategy that produced the recognized text."""
    DIRECT_TEXT = "direct-text"
    OCR_FALLBACK = "ocr-fallback"
    HYBRID = "hybrid"
    DIRECT_IMAGE_OCR = "direct-image-ocr"


class ParserStrategy(str, Enum):
    """Strategy that produced the structured field values."""
    LLM = "llm"
    BASIC = "basic"


# ── Template field definitions ────────────────────────────────────

class StringRules(BaseModel):
    """Validation rules for string fields."""
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=1)
    allowed_chars: Optional[Literal["digits_only", "letters_and_spaces", "alphanumeric"]] = None
    transform: Optional[Literal["uppercase", "lowercase"]] = None


class DateRules(BaseModel):
    """Validation rules for date fields."""
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    must_be_past: bool = False
    must_be_future: bool = False


class NumberRules(BaseModel):
    """Validation rules for number fields."""
    min_value: Optional[float] = None
    max_value: Optional[float] = None


class _FieldBase(BaseModel):
    required: bool = False
    instruction: str = Field("", description="Per-field guidance given to the parser")
    match_patterns: List[str] = Field(default_factory=list, description="Labels that usually precede the value")
    examples: List[Optional[str]] = Field(default_factory=list)


class StringField(_FieldBase):
    type: Literal["string"] = "string"
    rules: StringRules = Field(default_factory=StringRules)


class DateField(_FieldBase):
    type: Literal["date"] = "date"
    rules: DateRules = Field(default_factory=DateRules)


class NumberField(_FieldBase):
    type: Literal["number"] = "number"
    rules: NumberRules = Field(default_factory=NumberRules)


FieldDefinition = Annotated[Union[StringField, DateField, NumberField], Field(discriminator="type")]


class ExtractionTemplate(BaseModel):
    """Versioned, per-document-type extraction schema."""
    document_type: DocumentType
    version: str = "1"
    description: str = ""
    confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    fields: Dict[str, FieldDefinition]
    document_specific_instructions: List[str] = Field(default_factory=list)

    @property
    def field_names(self) -> List[str]:
        return list(self.fields.keys())

    @property
    def required_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.required]

    @property
    def optional_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if not f.required]


class TemplateInfo(BaseModel):
    """Summary of a registered template."""
    document_type: DocumentType
    version: str
    field_count: int
    required_fields: List[str]
    optional_fields: List[str]
    confidence_threshold: float


# ── Stage results ─────────────────────────────────────────────────

class FileClassification(BaseModel):
    """Outcome of inspecting the file bytes."""
    kind: FileKind
    mime_type: str = "application/octet-stream"
    extension: str = ""
    has_text_layer: bool = False
    page_count: int = 0
    text_length: int = 0
    text_density: float = 0.0
    reason: Optional[str] = None


class TextExtractionResult(BaseModel):
    """Recognized text plus how it was obtained."""
    success: bool
    text: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    method: Optional[ProcessingMethod] = None
    cost_estimate: float = 0.0
    page_count: Optional[int] = None
    file_kind: Optional[FileKind] = None
    fallback_reason: Optional[str] = None
    error: Optional[str] = None


class ParseResult(BaseModel):
    """Structured field values produced from recognized text."""
    data: Dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    fields_found: List[str] = Field(default_factory=list)
    fields_missing: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    strategy: ParserStrategy = ParserStrategy.LLM
    template_version: Optional[str] = None
    raw_response: Optional[str] = None


class FieldValidation(BaseModel):
    """Verdict for one field."""
    is_valid: bool = True
    value: Any = None
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    traceable: bool = True


class DocumentValidation(BaseModel):
    """Verdicts for every template field plus the document-level field confidence."""
    data: Dict[str, Any] = Field(default_factory=dict)
    fields: Dict[str, FieldValidation] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    hallucinated_fields: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class ExtractionResult(BaseModel):
    """Output of one processed (or attempted) document."""
    job_id: Optional[str] = None
    document_ref: Optional[str] = None
    document_type: Optional[DocumentType] = None
    file_path: Optional[str] = None
    success: bool = False
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    confidence_score: float = Field(0.0, ge=0.0, le=1.0)
    needs_review: bool = False
    raw_text: str = ""
    processing_method: Optional[ProcessingMethod] = None
    parser_strategy: Optional[ParserStrategy] = None
    template_version: Optional[str] = None
    fields_found: List[str] = Field(default_factory=list)
    fields_missing: List[str] = Field(default_factory=list)
    field_validation: Dict[str, FieldValidation] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    error_category: Optional[str] = None
    retryable: bool = False
    estimated_cost: float = 0.0
    page_count: Optional[int] = None
    processing_time_ms: int = 0
    metrics: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractionResult':
        """Create from dictionary."""
        return cls.model_validate(data)
