# SPDX-License-Identifier: AGPL-3.0-only

"""
Pytest configuration and fixtures.

This module provides shared fixtures and configuration for all tests. Nothing
here talks to the network or needs a tesseract binary: the OCR engine and the
model provider are faked.
"""

import io
import json
from datetime import date

import fitz  # PyMuPDF
import pytest
from PIL import Image
from unittest.mock import Mock

from common.llm_client import LLMClient
from docextract.ai_service import StructuredParser
from docextract.config import ExtractionConfig
from docextract.models import DocumentType
from docextract.pipeline import ExtractionOrchestrator
from docextract.templates import TemplateRepository
from docextract.text_service import TextExtractionService
from jobqueue.notifications import StatusNotifier
from jobqueue.storage import LocalFileStorage
from jobqueue.store import InMemoryJobStore


LICENSE_TEXT = (
    "STATE OF CALIFORNIA DRIVER LICENSE\n"
    "DL A1234567\n"
    "EXP 12/31/2026\n"
    "LN DOE\n"
    "FN JOHN\n"
    "DOB 06/15/1985\n"
    "CLASS C SEX M HGT 5-10\n"
)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests wiring several components together")


class FakeOCREngine:
    """Stands in for TesseractOCREngine; returns canned pages."""

    def __init__(self, text="", confidence=0.9, pages=None):
        self.text = text
        self.confidence = confidence
        self.pages = pages
        self.image_calls = 0
        self.pdf_calls = 0

    def is_available(self):
        return True

    def recognize_image(self, image):
        self.image_calls += 1
        return {"text": self.text, "confidence": self.confidence, "word_count": len(self.text.split())}

    def recognize_pdf(self, pdf_bytes):
        self.pdf_calls += 1
        if self.pages is not None:
            return [dict(p) for p in self.pages]
        return [{"page": 1, "text": self.text, "confidence": self.confidence,
                 "word_count": len(self.text.split())}]


def make_pdf(pages):
    """Build a PDF whose pages carry the given text layer (empty string = blank page)."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def make_png(size=(64, 32), color="white"):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def mock_llm(payload=None, text=None, configured=True):
    """Mock provider client answering every call with the given JSON payload."""
    client = Mock(spec=LLMClient)
    client.provider = "openai"
    client.model = "test-model"
    client.is_configured.return_value = configured
    client.call.return_value = {
        "text": text if text is not None else json.dumps(payload or {}),
        "tokens": 120,
        "cost": 0.0002,
    }
    return client


@pytest.fixture
def config(tmp_path):
    """Isolated configuration; no provider keys, no database."""
    return ExtractionConfig(
        _env_file=None,
        llm_provider="none",
        upload_folder=str(tmp_path / "uploads"),
        backoff_base_seconds=60,
        worker_count=2,
        poll_interval=0.01,
        stream_tick=0.01,
        stream_timeout=1,
    )


@pytest.fixture
def today():
    return date(2025, 6, 1)


@pytest.fixture
def license_text():
    return LICENSE_TEXT


@pytest.fixture
def license_payload():
    return {
        "licenseNumber": "A1234567",
        "expirationDate": "2026-12-31",
        "firstName": "JOHN",
        "lastName": "DOE",
        "dateOfBirth": "1985-06-15",
    }


@pytest.fixture
def text_pdf(license_text):
    """A PDF with a dense text layer."""
    return make_pdf([license_text + "\nThis license is issued under the vehicle code of the state."])


@pytest.fixture
def blank_pdf():
    """A PDF with no text layer, as a scanner would produce."""
    return make_pdf([""])


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def fake_ocr():
    return FakeOCREngine(text=LICENSE_TEXT, confidence=0.9)


@pytest.fixture
def templates(config):
    return TemplateRepository(config)


@pytest.fixture
def llm_client(license_payload):
    return mock_llm(license_payload)


@pytest.fixture
def parser(llm_client, templates, config):
    return StructuredParser(llm_client, templates, config)


@pytest.fixture
def orchestrator(fake_ocr, parser, config):
    return ExtractionOrchestrator(TextExtractionService(fake_ocr, config=config), parser, config=config)


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "files"))


@pytest.fixture
def notifier():
    return StatusNotifier()


@pytest.fixture
def license_type():
    return DocumentType.LICENSE


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def llm_factory():
    return mock_llm


@pytest.fixture
def ocr_factory():
    return FakeOCREngine
