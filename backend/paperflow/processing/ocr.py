"""
OCR Engine and PDF Rasterizer
═════════════════════════════

Two building blocks used by the TextExtractor:

  TesseractEngine
    - pytesseract over a Pillow image, languages from settings ("eng+deu")
    - mean word confidence from image_to_data, 0–100; -1.0 if no words
    - blocking work runs in a thread executor, bounded by ocr_timeout_seconds

  GhostscriptRasterizer
    - external `gs` process, one PNG per page at ocr_pdf_dpi
    - output files named page-001.png, page-002.png … so a plain sort is
      page order
    - async subprocess, killed when ocr_timeout_seconds elapses

Both raise ExtractionFailure for every engine or converter error; nothing
else escapes. Temporary directories are the caller's responsibility.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass
from pathlib import Path

import pytesseract
from PIL import Image, UnidentifiedImageError

from paperflow.core.config import Settings
from paperflow.core.exceptions import ExtractionFailure

logger = logging.getLogger(__name__)

PAGE_FILE_PATTERN = "page-*.png"


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    """
    Text recognized on a single image or PDF page.

    page_number : 1-based page index
    text        : recognized text, stripped
    confidence  : mean word confidence 0–100; -1.0 = no words recognized
    elapsed_ms  : wall-clock OCR time
    """
    page_number: int
    text:        str
    confidence:  float = -1.0
    elapsed_ms:  float = 0.0


# ---------------------------------------------------------------------------
# Tesseract
# ---------------------------------------------------------------------------

class TesseractEngine:
    def __init__(self, settings: Settings) -> None:
        self._languages = settings.ocr_languages
        self._timeout   = settings.ocr_timeout_seconds
        self._config    = (
            f'--tessdata-dir "{settings.tessdata_prefix}"' if settings.tessdata_prefix else ""
        )

    async def recognize(self, image_bytes: bytes, page_number: int = 1) -> PageText:
        if not image_bytes:
            raise ExtractionFailure("Image is empty")

        loop = asyncio.get_running_loop()
        t0   = time.monotonic()
        try:
            page = await asyncio.wait_for(
                loop.run_in_executor(None, self._recognize_sync, image_bytes, page_number),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionFailure(
                f"OCR timed out after {self._timeout:.0f}s on page {page_number}"
            ) from exc

        page.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Tesseract | page=%d chars=%d confidence=%.1f elapsed_ms=%.0f",
            page.page_number, len(page.text), page.confidence, page.elapsed_ms,
        )
        return page

    async def recognize_file(self, path: Path, page_number: int = 1) -> PageText:
        return await self.recognize(path.read_bytes(), page_number)

    def _recognize_sync(self, image_bytes: bytes, page_number: int) -> PageText:
        """Blocking OCR — runs in thread executor."""
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.load()
                data = pytesseract.image_to_data(
                    img,
                    lang=self._languages,
                    config=self._config,
                    output_type=pytesseract.Output.DICT,
                )
                text = pytesseract.image_to_string(
                    img, lang=self._languages, config=self._config
                )
        except (UnidentifiedImageError, OSError) as exc:
            raise ExtractionFailure(f"Unreadable image on page {page_number}: {exc}") from exc
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            raise ExtractionFailure(f"Tesseract failed on page {page_number}: {exc}") from exc

        return PageText(
            page_number=page_number,
            text=text.strip(),
            confidence=mean_confidence(data.get("conf", [])),
        )


def mean_confidence(values: list) -> float:
    """Average of the per-word confidences; tesseract reports -1 for non-words."""
    scores = []
    for value in values:
        try:
            score = float(value)
        except (TypeError, ValueError):
            continue
        if score >= 0:
            scores.append(score)
    return round(sum(scores) / len(scores), 1) if scores else -1.0


# ---------------------------------------------------------------------------
# Ghostscript
# ---------------------------------------------------------------------------

class GhostscriptRasterizer:
    def __init__(self, settings: Settings) -> None:
        self._binary  = settings.ghostscript_binary
        self._dpi     = settings.ocr_pdf_dpi
        self._timeout = settings.ocr_timeout_seconds

    def command(self, pdf_path: Path, out_dir: Path) -> list[str]:
        return [
            self._binary,
            "-dNOPAUSE",
            "-dBATCH",
            "-dSAFER",
            "-sDEVICE=png16m",
            f"-r{self._dpi}",
            f"-sOutputFile={out_dir / 'page-%03d.png'}",
            str(pdf_path),
        ]

    async def rasterize(self, pdf_path: Path, out_dir: Path) -> list[Path]:
        """Render every page of ``pdf_path`` into ``out_dir``; return the PNGs in page order."""
        cmd = self.command(pdf_path, out_dir)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExtractionFailure(f"Cannot start {self._binary}: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ExtractionFailure(
                f"Ghostscript timed out after {self._timeout:.0f}s"
            ) from exc

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            raise ExtractionFailure(f"Ghostscript exited with {proc.returncode}: {detail}")

        pages = sorted(out_dir.glob(PAGE_FILE_PATTERN))
        logger.info("Ghostscript | pages=%d dpi=%d", len(pages), self._dpi)
        return pages
