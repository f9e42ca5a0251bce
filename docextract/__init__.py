# SPDX-License-Identifier: AGPL-3.0-only

"""
Document field extraction pipeline.

Turns an uploaded image or PDF into validated, template-driven field data:
file classification, text recognition (text layer or OCR), structured parsing,
field validation and confidence scoring.
"""

from .models import DocumentType, ExtractionResult, ProcessingMethod
from .pipeline import ExtractionOrchestrator

__all__ = [
    'DocumentType',
    'ExtractionResult',
    'ProcessingMethod',
    'ExtractionOrchestrator',
]
