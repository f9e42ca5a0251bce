# SPDX-License-Identifier: AGPL-3.0-only

"""
Tests for the tesseract OCR engine.

pytesseract is patched, so no tesseract binary is needed; Pillow and PyMuPDF
run for real on generated images and PDFs.
"""

import pytest
import pytesseract
from unittest.mock import patch

from docextract.exceptions import ClassificationError, TextExtractionError
from docextract.ocr_service import TesseractOCREngine


def _tesseract_data(lines, confs):
    """Build an image_to_data dict: lines is a list of word lists, confs one value per word."""
    data = {"text": [], "conf": [], "block_num": [], "par_num": [], "line_num": []}
    # tesseract reports a -1 row for every block/line container
    data["text"].append("")
    data["conf"].append("-1")
    data["block_num"].append(1)
    data["par_num"].append(0)
    data["line_num"].append(0)
    conf_iter = iter(confs)
    for line_no, words in enumerate(lines, start=1):
        for word in words:
            data["text"].append(word)
            data["conf"].append(next(conf_iter))
            data["block_num"].append(1)
            data["par_num"].append(1)
            data["line_num"].append(line_no)
    return data


@pytest.mark.unit
class TestTesseractOCREngine:

    @pytest.fixture
    def engine(self, config):
        return TesseractOCREngine(config)

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_recognize_image(self, mock_data, engine, png_bytes, config):
        mock_data.return_value = _tesseract_data([["DL", "A1234567"], ["EXP", "12/31/2026"]],
                                                 [90, "96.5", 80, 73.5])

        page = engine.recognize_image(png_bytes)

        assert page["text"] == "DL A1234567\nEXP 12/31/2026"
        # Mean of the four word confidences; the -1 container row is ignored
        assert page["confidence"] == pytest.approx(0.85)
        assert page["token_count"] == 4
        assert page["word_count"] == 4
        kwargs = mock_data.call_args.kwargs
        assert kwargs["lang"] == config.ocr_language
        assert kwargs["timeout"] == config.ocr_timeout

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_no_confidences_uses_default(self, mock_data, engine, png_bytes, config):
        mock_data.return_value = {"text": ["", ""], "conf": ["-1", "-1"],
                                  "block_num": [1, 1], "par_num": [0, 0], "line_num": [0, 0]}

        page = engine.recognize_image(png_bytes)

        assert page["text"] == ""
        assert page["confidence"] == config.default_ocr_confidence
        assert page["token_count"] == 0

    def test_undecodable_image(self, engine, png_bytes):
        with pytest.raises(ClassificationError, match="Could not decode image"):
            engine.recognize_image(png_bytes[:40])

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_timeout(self, mock_data, engine, png_bytes):
        mock_data.side_effect = RuntimeError("Tesseract process timeout")
        with pytest.raises(TextExtractionError, match="OCR timed out"):
            engine.recognize_image(png_bytes)

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_engine_error_is_not_reported_as_timeout(self, mock_data, engine, png_bytes):
        mock_data.side_effect = pytesseract.TesseractError(1, "Failed loading language 'xyz'")
        with pytest.raises(TextExtractionError, match="OCR engine error") as exc:
            engine.recognize_image(png_bytes)
        assert "timed out" not in str(exc.value)

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_missing_binary(self, mock_data, engine, png_bytes):
        mock_data.side_effect = pytesseract.TesseractNotFoundError()
        with pytest.raises(TextExtractionError, match="OCR engine unavailable"):
            engine.recognize_image(png_bytes)

    @patch("docextract.ocr_service.pytesseract.image_to_data")
    def test_recognize_pdf_numbers_pages(self, mock_data, engine, pdf_factory):
        mock_data.side_effect = [
            _tesseract_data([["POLICY", "POL-1"]], [70, 80]),
            _tesseract_data([["ACME", "MUTUAL"]], [90, 90]),
        ]

        pages = engine.recognize_pdf(pdf_factory(["", ""]))

        assert [p["page"] for p in pages] == [1, 2]
        assert pages[0]["text"] == "POLICY POL-1"
        assert pages[0]["confidence"] == pytest.approx(0.75)
        assert pages[1]["confidence"] == pytest.approx(0.9)
        assert mock_data.call_count == 2

    def test_rasterize_renders_every_page(self, engine, pdf_factory):
        images = engine.rasterize_pdf(pdf_factory(["first", "", "third"]))
        assert len(images) == 3
        assert all(img.startswith(b"\x89PNG") for img in images)

    @patch("docextract.ocr_service.fitz.open")
    def test_unopenable_pdf(self, mock_open, engine, blank_pdf):
        mock_open.side_effect = RuntimeError("cannot open broken document")
        with pytest.raises(ClassificationError, match="Failed to open PDF"):
            engine.rasterize_pdf(blank_pdf)

    @patch("docextract.ocr_service.pytesseract.get_tesseract_version")
    def test_is_available(self, mock_version, engine):
        mock_version.return_value = "5.3.0"
        assert engine.is_available()
        mock_version.side_effect = pytesseract.TesseractNotFoundError()
        assert not engine.is_available()
