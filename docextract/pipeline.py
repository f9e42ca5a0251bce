# SPDX-License-Identifier: AGPL-3.0-only

"""
Main extraction pipeline.

This module composes text extraction, structured parsing and field validation
into one per-document operation. The orchestrator holds no state between calls;
every failure comes back as an ExtractionResult with success=False and the
error's category, so the caller decides whether the job is retried.
"""

import logging
from typing import Callable, Optional, Union

from common.metrics import JobMetrics

from .ai_service import StructuredParser
from .confidence import ConfidenceScorer
from .config import ExtractionConfig, config as default_config
from .exceptions import ExtractionPipelineError, InfrastructureError, TemplateNotFoundError, TextExtractionError
from .field_validator import FieldValidator
from .models import DocumentType, ExtractionResult, ParseResult, TextExtractionResult
from .text_service import TextExtractionService

logger = logging.getLogger(__name__)

PHASE_EXTRACTING_TEXT = "extracting_text"
PHASE_PARSING = "parsing"
PHASE_VALIDATING = "validating"

PhaseCallback = Callable[[str], None]


class ExtractionOrchestrator:
    """Runs text extraction, parsing and validation for one document."""

    def __init__(
        self,
        text_service: TextExtractionService,
        parser: StructuredParser,
        validator: Optional[FieldValidator] = None,
        scorer: Optional[ConfidenceScorer] = None,
        config: Optional[ExtractionConfig] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            text_service: Text extraction coordinator
            parser: Structured parser (owns the template repository)
            validator: Field validator
            scorer: Confidence scorer
            config: Extraction configuration
        """
        self.config = config or default_config
        self.text_service = text_service
        self.parser = parser
        self.validator = validator or FieldValidator(self.config)
        self.scorer = scorer or ConfidenceScorer(self.config)

    def process(
        self,
        data: bytes,
        document_type: Union[DocumentType, str],
        declared_type: Optional[str] = None,
        job_id: Optional[str] = None,
        document_ref: Optional[str] = None,
        file_path: Optional[str] = None,
        on_phase: Optional[PhaseCallback] = None,
    ) -> ExtractionResult:
        """
        Extract validated fields from one document.

        Args:
            data: Raw file bytes
            document_type: Selects the template
            declared_type: Advisory content type from the uploader
            job_id: Job this run belongs to, copied onto the result
            document_ref: Owning business entity, copied onto the result
            file_path: Storage path, copied onto the result
            on_phase: Called with the phase name as each stage starts

        Returns:
            ExtractionResult; success=False when text extraction or parsing failed
        """
        metrics = JobMetrics()
        text_result: Optional[TextExtractionResult] = None
        parse_result: Optional[ParseResult] = None
        template_version = None

        try:
            doc_type = self._document_type(document_type)
            template = self.parser.get_template(doc_type)
            template_version = template.version

            self._notify(on_phase, PHASE_EXTRACTING_TEXT)
            with metrics.stage(PHASE_EXTRACTING_TEXT):
                text_result = self.text_service.extract(data, declared_type)
            metrics.add_cost(text_result.cost_estimate)
            if not text_result.success:
                raise TextExtractionError(text_result.error or "No extractable text found in document")

            self._notify(on_phase, PHASE_PARSING)
            with metrics.stage(PHASE_PARSING):
                parse_result = self.parser.parse(text_result.text, doc_type, metrics)

            self._notify(on_phase, PHASE_VALIDATING)
            with metrics.stage(PHASE_VALIDATING):
                validation = self.validator.validate_document(parse_result.data, template, text_result.text)
                confidence = self.scorer.score(validation.confidence, text_result, parse_result.strategy)

            warnings = list(parse_result.warnings) + list(validation.warnings)
            needs_review = self.scorer.needs_review(confidence, template, warnings)
            metrics.finish()

            logger.info(
                "Extraction complete: job=%s type=%s method=%s confidence=%.2f needs_review=%s",
                job_id, doc_type.value, text_result.method.value, confidence, needs_review,
            )
            if confidence < template.confidence_threshold:
                logger.warning("Low confidence %.2f for job %s", confidence, job_id)

            return ExtractionResult(
                job_id=job_id,
                document_ref=document_ref,
                document_type=doc_type,
                file_path=file_path,
                success=True,
                extracted_data=validation.data,
                confidence_score=confidence,
                needs_review=needs_review,
                raw_text=text_result.text,
                processing_method=text_result.method,
                parser_strategy=parse_result.strategy,
                template_version=template.version,
                fields_found=[n for n in template.field_names if n in validation.data],
                fields_missing=[n for n in template.field_names if n not in validation.data],
                field_validation=validation.fields,
                errors=list(parse_result.errors) + list(validation.errors),
                warnings=warnings,
                estimated_cost=round(metrics.total_cost, 6),
                page_count=text_result.page_count,
                processing_time_ms=metrics.duration_ms(),
                metrics=metrics.to_dict(),
            )

        except ExtractionPipelineError as e:
            return self._failure(e, document_type, job_id, document_ref, file_path,
                                 text_result, parse_result, template_version, metrics)
        except Exception as e:
            logger.exception("Unexpected error processing job %s", job_id)
            wrapped = InfrastructureError(f"Unexpected error: {e}")
            return self._failure(wrapped, document_type, job_id, document_ref, file_path,
                                 text_result, parse_result, template_version, metrics)

    def _failure(self, error: ExtractionPipelineError, document_type, job_id, document_ref, file_path,
                 text_result: Optional[TextExtractionResult], parse_result: Optional[ParseResult],
                 template_version, metrics: JobMetrics) -> ExtractionResult:
        metrics.add_error(str(error))
        metrics.finish()
        logger.info("Extraction failed: job=%s category=%s retryable=%s: %s",
                    job_id, error.category, error.retryable, error)
        try:
            doc_type = self._document_type(document_type)
        except TemplateNotFoundError:
            doc_type = None

        details = metrics.to_dict()
        raw_response = getattr(error, "raw_response", None)
        if raw_response:
            details["raw_response"] = raw_response

        return ExtractionResult(
            document_type=doc_type,
            job_id=job_id,
            document_ref=document_ref,
            file_path=file_path,
            success=False,
            raw_text=text_result.text if text_result else "",
            processing_method=text_result.method if text_result else None,
            parser_strategy=parse_result.strategy if parse_result else None,
            template_version=template_version,
            errors=[str(error)],
            warnings=list(parse_result.warnings) if parse_result else [],
            error_category=error.category,
            retryable=error.retryable,
            estimated_cost=round(metrics.total_cost, 6),
            page_count=text_result.page_count if text_result else None,
            processing_time_ms=metrics.duration_ms(),
            metrics=details,
        )

    def _document_type(self, document_type: Union[DocumentType, str]) -> DocumentType:
        if isinstance(document_type, DocumentType):
            return document_type
        try:
            return DocumentType(str(document_type))
        except ValueError:
            raise TemplateNotFoundError(f"Unknown document type '{document_type}'")

    def _notify(self, on_phase: Optional[PhaseCallback], phase: str) -> None:
        if on_phase is None:
            return
        try:
            on_phase(phase)
        except Exception as e:
            # Progress reporting is advisory
            logger.warning("Phase callback failed for %s: %s", phase, e)
