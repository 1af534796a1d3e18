"""
Page Recognition — Tesseract via pytesseract

One image_to_data call per page gives both the words and their per-word
confidences. Text is reassembled block → paragraph → line; the page's mean
confidence is the average over real words (conf >= 0), scaled to 0.0–1.0.

Tesseract is CPU-bound and blocking, so the call runs in the default thread
executor. Engine failures raise RecognitionError; a page with no words is
not an error (text "" with confidence 0.0).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import pytesseract
from PIL import Image

from ocrpipe.core.exceptions import RecognitionError
from ocrpipe.observability.tracing import traced

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageText:
    """
    text        : reassembled page text (may be empty)
    confidence  : mean word confidence, 0.0–1.0
    """
    text:       str
    confidence: float


def assemble_text(data: dict) -> str:
    """Join image_to_data words: spaces within a line, newlines between lines, blank line between blocks."""
    blocks: dict[int, dict[int, dict[int, list[str]]]] = {}

    for i, raw in enumerate(data.get("text", [])):
        word = (raw or "").strip()
        if not word:
            continue
        block = blocks.setdefault(data["block_num"][i], {})
        par   = block.setdefault(data["par_num"][i], {})
        par.setdefault(data["line_num"][i], []).append(word)

    result_blocks = []
    for block_num in sorted(blocks):
        lines = [
            " ".join(blocks[block_num][par_num][line_num])
            for par_num in sorted(blocks[block_num])
            for line_num in sorted(blocks[block_num][par_num])
        ]
        result_blocks.append("\n".join(lines))

    return "\n\n".join(result_blocks)


def mean_confidence(data: dict) -> float:
    confidences = []
    for value in data.get("conf", []):
        try:
            conf = float(value)
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confidences.append(conf)
    if not confidences:
        return 0.0
    return sum(confidences) / len(confidences) / 100.0


class TesseractRecognizer:

    def __init__(self, language: str = "eng", data_path: str = "") -> None:
        self._language  = language
        self._data_path = data_path

    @classmethod
    def from_settings(cls, settings) -> "TesseractRecognizer":
        return cls(language=settings.ocr_language, data_path=settings.ocr_data_path)

    def _config(self) -> str:
        if self._data_path:
            return f'--tessdata-dir "{self._data_path}"'
        return ""

    def _recognize_sync(self, image_path: Path) -> PageText:
        """Blocking OCR — runs in thread executor."""
        try:
            with Image.open(image_path) as image:
                data = pytesseract.image_to_data(
                    image,
                    lang=self._language,
                    config=self._config(),
                    output_type=pytesseract.Output.DICT,
                )
        except (OSError, pytesseract.TesseractError, RuntimeError) as exc:
            raise RecognitionError(f"OCR failed for {image_path.name}: {exc}") from exc

        return PageText(text=assemble_text(data), confidence=mean_confidence(data))

    @traced("recognize_page")
    async def __call__(self, image_path: Path) -> PageText:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._recognize_sync, image_path)
