"""
Text Extraction by Content Type
═══════════════════════════════

Dispatch table:

  text/plain        → bytes decoded as UTF-8 (latin-1 fallback)
  image/*           → one Tesseract pass over the image
  application/pdf   → Ghostscript renders each page to PNG, Tesseract reads
                      each page in order, pages joined with PAGE_BREAK
  anything else     → unsupported; extract() returns None

Every temporary file and directory lives inside a TemporaryDirectory block,
so it is removed on success, on ExtractionFailure and on cancellation alike.
"""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from paperflow.core.config import Settings
from paperflow.core.exceptions import ExtractionFailure
from paperflow.processing.ocr import GhostscriptRasterizer, PageText, TesseractEngine

logger = logging.getLogger(__name__)

PAGE_BREAK = "\n--- Page Break ---\n"


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractedText:
    """
    text           : full text; PDF pages joined with PAGE_BREAK
    method         : "plain" | "ocr-image" | "ocr-pdf"
    page_count     : 1 for text and images, rendered pages for PDFs
    avg_confidence : mean OCR confidence over pages that had words; -1 if N/A
    elapsed_ms     : total extraction wall time
    """
    text:           str
    method:         str
    page_count:     int   = 1
    avg_confidence: float = -1.0
    elapsed_ms:     float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def is_supported(content_type: str) -> bool:
    ct = content_type.strip().lower()
    return ct == "text/plain" or ct == "application/pdf" or ct.startswith("image/")


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Usage:
        extractor = TextExtractor.from_settings(settings)
        result = await extractor.extract(blob_bytes, "application/pdf")
    """

    def __init__(self, engine: TesseractEngine, rasterizer: GhostscriptRasterizer) -> None:
        self._engine     = engine
        self._rasterizer = rasterizer

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextExtractor":
        return cls(TesseractEngine(settings), GhostscriptRasterizer(settings))

    async def extract(self, data: bytes, content_type: str) -> ExtractedText | None:
        """
        Returns None for an unsupported content type.
        Raises ExtractionFailure when the engine or the converter fails.
        """
        ct = content_type.strip().lower()
        t0 = time.monotonic()

        if ct == "text/plain":
            result = ExtractedText(text=decode_text(data), method="plain")
        elif ct.startswith("image/"):
            page = await self._engine.recognize(data)
            result = ExtractedText(
                text=page.text, method="ocr-image", avg_confidence=page.confidence
            )
        elif ct == "application/pdf":
            result = await self._extract_pdf(data)
        else:
            logger.warning("Unsupported content type | type=%s", content_type)
            return None

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | method=%s pages=%d chars=%d confidence=%.1f elapsed_ms=%.0f",
            result.method, result.page_count, len(result.text),
            result.avg_confidence, result.elapsed_ms,
        )
        return result

    async def _extract_pdf(self, data: bytes) -> ExtractedText:
        if not data:
            raise ExtractionFailure("PDF is empty")

        with tempfile.TemporaryDirectory(prefix="paperflow-ocr-") as tmp:
            work = Path(tmp)
            pdf_path = work / "input.pdf"
            pdf_path.write_bytes(data)

            out_dir = work / "pages"
            out_dir.mkdir()
            page_files = await self._rasterizer.rasterize(pdf_path, out_dir)
            if not page_files:
                raise ExtractionFailure("Ghostscript produced no pages")

            pages: list[PageText] = []
            for number, page_file in enumerate(page_files, start=1):
                pages.append(await self._engine.recognize_file(page_file, number))

        confidences = [p.confidence for p in pages if p.confidence >= 0]
        return ExtractedText(
            text=PAGE_BREAK.join(p.text for p in pages),
            method="ocr-pdf",
            page_count=len(pages),
            avg_confidence=(
                round(sum(confidences) / len(confidences), 1) if confidences else -1.0
            ),
        )
