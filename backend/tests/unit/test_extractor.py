"""
Unit Tests — TextExtractor, TesseractEngine, GhostscriptRasterizer
══════════════════════════════════════════════════════════════════
Tesseract and Ghostscript are never executed: the engine's OCR call and the
rasterizer are mocked, except where a failure path needs no binary at all.

Coverage:
  ✅ text/plain decoded directly (UTF-8, latin-1 fallback)
  ✅ image/* goes through the OCR engine; confidence carried through
  ✅ PDF pages are OCR'd in order and joined with the page-break marker
  ✅ temporary OCR directory is removed on success and on failure
  ✅ unsupported type → None
  ✅ empty / corrupt image → ExtractionFailure
  ✅ missing gs binary → ExtractionFailure
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from paperflow.core.exceptions import ExtractionFailure
from paperflow.processing.extractor import PAGE_BREAK, TextExtractor, decode_text, is_supported
from paperflow.processing.ocr import (
    GhostscriptRasterizer,
    PageText,
    TesseractEngine,
    mean_confidence,
)


@pytest.fixture
def engine():
    engine = MagicMock(spec=TesseractEngine)
    engine.recognize = AsyncMock(return_value=PageText(1, "scanned words", confidence=91.5))
    return engine


@pytest.fixture
def rasterizer():
    return MagicMock(spec=GhostscriptRasterizer)


@pytest.mark.unit
class TestDispatch:

    @pytest.mark.parametrize(
        "content_type, supported",
        [
            ("text/plain", True),
            ("image/png", True),
            ("image/x-portable-anymap", True),
            ("application/pdf", True),
            ("application/zip", False),
        ],
    )
    def test_is_supported(self, content_type, supported):
        assert is_supported(content_type) is supported

    def test_decode_text_falls_back_to_latin1(self):
        assert decode_text("Grüße".encode("utf-8")) == "Grüße"
        assert decode_text("Grüße".encode("latin-1")) == "Grüße"

    async def test_plain_text(self, engine, rasterizer):
        result = await TextExtractor(engine, rasterizer).extract(b"hello world", "text/plain")
        assert result.text == "hello world"
        assert result.method == "plain"
        engine.recognize.assert_not_called()

    async def test_image_uses_ocr_engine(self, engine, rasterizer):
        result = await TextExtractor(engine, rasterizer).extract(b"\x89PNG...", "image/png")
        assert result.text == "scanned words"
        assert result.avg_confidence == 91.5
        engine.recognize.assert_awaited_once_with(b"\x89PNG...")

    async def test_unsupported_returns_none(self, engine, rasterizer):
        assert await TextExtractor(engine, rasterizer).extract(b"PK", "application/zip") is None

    async def test_empty_text_is_empty(self, engine, rasterizer):
        result = await TextExtractor(engine, rasterizer).extract(b"  \n ", "text/plain")
        assert result.is_empty


@pytest.mark.unit
class TestPdfExtraction:

    async def test_pages_joined_with_page_break(self, engine, rasterizer, sample_pdf_bytes):
        seen_dirs: list[Path] = []

        async def _rasterize(pdf_path: Path, out_dir: Path) -> list[Path]:
            assert pdf_path.read_bytes() == sample_pdf_bytes
            seen_dirs.append(out_dir)
            pages = []
            for n in (1, 2):
                page = out_dir / f"page-{n:03d}.png"
                page.write_bytes(b"png")
                pages.append(page)
            return pages

        rasterizer.rasterize = AsyncMock(side_effect=_rasterize)
        engine.recognize_file = AsyncMock(side_effect=[
            PageText(1, "first page", confidence=80.0),
            PageText(2, "second page", confidence=90.0),
        ])

        result = await TextExtractor(engine, rasterizer).extract(sample_pdf_bytes, "application/pdf")

        assert result.text == f"first page{PAGE_BREAK}second page"
        assert result.page_count == 2
        assert result.avg_confidence == 85.0
        assert not seen_dirs[0].exists()

    async def test_rasterizer_failure_cleans_up(self, engine, rasterizer, sample_pdf_bytes):
        seen_dirs: list[Path] = []

        async def _fail(pdf_path: Path, out_dir: Path) -> list[Path]:
            seen_dirs.append(out_dir)
            raise ExtractionFailure("Ghostscript exited with 1")

        rasterizer.rasterize = AsyncMock(side_effect=_fail)

        with pytest.raises(ExtractionFailure):
            await TextExtractor(engine, rasterizer).extract(sample_pdf_bytes, "application/pdf")
        assert not seen_dirs[0].parent.exists()

    async def test_no_pages_is_failure(self, engine, rasterizer, sample_pdf_bytes):
        rasterizer.rasterize = AsyncMock(return_value=[])
        with pytest.raises(ExtractionFailure):
            await TextExtractor(engine, rasterizer).extract(sample_pdf_bytes, "application/pdf")

    async def test_empty_pdf_is_failure(self, engine, rasterizer):
        with pytest.raises(ExtractionFailure):
            await TextExtractor(engine, rasterizer).extract(b"", "application/pdf")


@pytest.mark.unit
class TestTesseractEngine:

    async def test_empty_image_raises(self, settings):
        with pytest.raises(ExtractionFailure):
            await TesseractEngine(settings).recognize(b"")

    async def test_corrupt_image_raises(self, settings):
        # Pillow rejects the bytes before tesseract is ever invoked
        with pytest.raises(ExtractionFailure):
            await TesseractEngine(settings).recognize(b"definitely not an image")

    async def test_confidence_and_text(self, settings):
        import io

        from PIL import Image

        buf = io.BytesIO()
        Image.new("RGB", (8, 8), "white").save(buf, format="PNG")

        with patch("paperflow.processing.ocr.pytesseract.image_to_data") as to_data, \
             patch("paperflow.processing.ocr.pytesseract.image_to_string") as to_string:
            to_data.return_value = {"conf": ["-1", "90", "70"]}
            to_string.return_value = "  Hello  \n"
            page = await TesseractEngine(settings).recognize(buf.getvalue(), page_number=3)

        assert page.page_number == 3
        assert page.text == "Hello"
        assert page.confidence == 80.0
        assert to_string.call_args.kwargs["lang"] == settings.ocr_languages

    def test_mean_confidence_ignores_non_words(self):
        assert mean_confidence(["-1", -1, "bad", None]) == -1.0
        assert mean_confidence([50, "100"]) == 75.0


@pytest.mark.unit
class TestGhostscriptRasterizer:

    def test_command(self, settings, tmp_path):
        cmd = GhostscriptRasterizer(settings).command(tmp_path / "in.pdf", tmp_path / "out")
        assert cmd[0] == settings.ghostscript_binary
        assert "-dSAFER" in cmd
        assert "-sDEVICE=png16m" in cmd
        assert f"-r{settings.ocr_pdf_dpi}" in cmd
        assert cmd[-1] == str(tmp_path / "in.pdf")
        assert cmd[-2].endswith("page-%03d.png")

    async def test_missing_binary_raises(self, settings, tmp_path):
        settings.ghostscript_binary = str(tmp_path / "no-such-gs")
        with pytest.raises(ExtractionFailure):
            await GhostscriptRasterizer(settings).rasterize(tmp_path / "in.pdf", tmp_path)
