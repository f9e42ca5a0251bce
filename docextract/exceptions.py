# SPDX-License-Identifier: AGPL-3.0-only

"""
Exceptions raised by the extraction pipeline.

Each error carries a category and whether the job that hit it may be retried.
"""

from typing import Optional


class ExtractionPipelineError(Exception):
    """Base exception for all pipeline errors."""

    category = "infrastructure"
    retryable = True


class ClassificationError(ExtractionPipelineError):
    """Unsupported or unreadable file. Retrying cannot help."""

    category = "classification"
    retryable = False


class TextExtractionError(ExtractionPipelineError):
    """No strategy produced usable text."""

    category = "extraction"


class ParsingError(ExtractionPipelineError):
    """The structured parsing call returned output of the wrong shape."""

    category = "parsing"

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class TemplateNotFoundError(ParsingError):
    """No template is registered for the requested document type."""

    retryable = False


class InfrastructureError(ExtractionPipelineError):
    """Storage, OCR engine or model provider unreachable or timed out."""

    category = "infrastructure"


class InvalidTemplateError(TemplateNotFoundError):
    """A template definition exists but cannot be loaded."""
