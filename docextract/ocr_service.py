"""
OCR engine for images and scanned PDFs.

Uses PyMuPDF (fitz) to rasterize pages and pytesseract to perform OCR.
Each recognition returns the text together with the mean of the per-token
confidences tesseract reports, scaled to 0..1.
"""

# SPDX-License-Identifier: AGPL-3.0-only

from __future__ import annotations

from typing import List, Dict, Any, Optional, Union
import io
import logging
import os

import fitz  # PyMuPDF
from PIL import Image, ImageFilter, ImageOps
import pytesseract

from .config import ExtractionConfig, config as default_config
from .exceptions import ClassificationError, TextExtractionError

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, Image.Image]


class TesseractOCREngine:
    def __init__(self, config: Optional[ExtractionConfig] = None) -> None:
        self.config = config or default_config
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd
        elif os.name == 'nt':
            guess = r"C:\\Program Files\\Tesseract-OCR\\tesseract.exe"
            if os.path.isfile(guess):
                pytesseract.pytesseract.tesseract_cmd = guess

    def is_available(self) -> bool:
        """True when the tesseract binary can be invoked."""
        try:
            pytesseract.get_tesseract_version()
            return True
        except Exception:
            return False

    def recognize_image(self, image: ImageInput) -> Dict[str, Any]:
        """OCR a single image.

        Returns dict: { text, confidence, word_count, token_count }

        Raises:
            ClassificationError: the bytes cannot be decoded as an image
            TextExtractionError: tesseract failed, timed out or is missing
        """
        try:
            pil_img = Image.open(io.BytesIO(image)) if isinstance(image, (bytes, bytearray)) else image
            pil_img.load()
        except Exception as e:
            raise ClassificationError(f"Could not decode image: {e}")

        pil_img = self._preprocess_image(pil_img)
        try:
            data = pytesseract.image_to_data(
                pil_img,
                lang=self.config.ocr_language,
                config='--psm 6',
                timeout=self.config.ocr_timeout,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as e:
            raise TextExtractionError(f"OCR engine error: {e}")
        except RuntimeError as e:
            # pytesseract signals its timeout with RuntimeError
            raise TextExtractionError(f"OCR timed out after {self.config.ocr_timeout}s: {e}")
        except pytesseract.TesseractNotFoundError as e:
            raise TextExtractionError(f"OCR engine unavailable: {e}")

        text = self._join_words(data)
        confs = [float(c) for c in data.get('conf', []) if self._is_number(c) and float(c) >= 0]
        confidence = (sum(confs) / len(confs) / 100.0) if confs else self.config.default_ocr_confidence
        return {
            "text": text,
            "confidence": max(0.0, min(1.0, confidence)),
            "word_count": len(text.split()),
            "token_count": len(confs),
        }

    def rasterize_pdf(self, pdf_bytes: bytes) -> List[bytes]:
        """Render every page to PNG bytes at the configured zoom."""
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            raise ClassificationError(f"Failed to open PDF for rasterization: {e}")
        if doc.page_count == 0:
            doc.close()
            raise ClassificationError("PDF has no pages")

        try:
            zoom = self.config.ocr_zoom
            images = []
            for page in doc:
                pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
                images.append(pix.tobytes("png"))
            return images
        finally:
            doc.close()

    def recognize_pdf(self, pdf_bytes: bytes) -> List[Dict[str, Any]]:
        """Rasterize each page and OCR it.

        Returns list: [ {page, text, confidence, word_count, token_count} ]
        """
        results: List[Dict[str, Any]] = []
        for idx, png in enumerate(self.rasterize_pdf(pdf_bytes)):
            page = self.recognize_image(png)
            page["page"] = idx + 1
            results.append(page)
        return results

    def _join_words(self, data: Dict[str, List[Any]]) -> str:
        lines: List[str] = []
        current_key = None
        current: List[str] = []
        words = data.get('text', [])
        for i, word in enumerate(words):
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i]) if 'line_num' in data else None
            if key != current_key:
                if current:
                    lines.append(" ".join(current))
                current, current_key = [], key
            if word and str(word).strip():
                current.append(str(word).strip())
        if current:
            lines.append(" ".join(current))
        return "\n".join(lines)

    def _preprocess_image(self, img: Image.Image) -> Image.Image:
        try:
            gray = ImageOps.grayscale(img)
            blurred = gray.filter(ImageFilter.MedianFilter(size=3))
            enhanced = ImageOps.autocontrast(blurred)
            return enhanced.point(lambda x: 255 if x > 160 else 0, mode='1')
        except Exception as e:
            logger.debug("Image preprocessing skipped: %s", e)
            return img

    def _is_number(self, v: Any) -> bool:
        try:
            float(v)
            return True
        except (TypeError, ValueError):
            return False
