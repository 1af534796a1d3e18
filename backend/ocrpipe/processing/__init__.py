"""
Document Processing Package
════════════════════════════

Turns a stored PDF into searchable text:

  PDF → page images (ImageMagick) → per-page OCR (Tesseract) → joined text

Modules
───────
  rasterizer.py  ImageMagick subprocess, page discovery in numeric order
  recognizer.py  pytesseract image_to_data, mean confidence per page
  stages.py      Stage contracts, typed StageResult / FailureKind, page joining, cleanup
"""

from ocrpipe.processing.rasterizer import Rasterizer
from ocrpipe.processing.recognizer import PageText, TesseractRecognizer
from ocrpipe.processing.stages import (
    PAGE_BREAK,
    FailureKind,
    PipelineState,
    StageResult,
    join_pages,
    remove_files,
)

__all__ = [
    "Rasterizer",
    "PageText",
    "TesseractRecognizer",
    "PAGE_BREAK",
    "FailureKind",
    "PipelineState",
    "StageResult",
    "join_pages",
    "remove_files",
]
