"""
Text extraction.

Modules
───────
  ocr.py        Tesseract OCR engine and Ghostscript PDF rasterizer
  extractor.py  Dispatch by content type: plain text, image OCR, PDF page OCR
"""

from paperflow.processing.extractor import PAGE_BREAK, ExtractedText, TextExtractor

__all__ = ["PAGE_BREAK", "ExtractedText", "TextExtractor"]
