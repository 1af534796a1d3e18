"""
PDF → page images via ImageMagick.

One converter call per document:

    magick -density 300 <input.pdf> -compress lzw <prefix>-%d.tiff

ImageMagick writes one file per page, numbered from 0. The page set is
discovered afterwards by globbing <prefix>-*.tiff and sorting on the numeric
page index, so page 10 follows page 9 rather than page 1.

A non-zero exit status, or an exit status of zero with no page files, raises
RasterizationError.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from ocrpipe.core.exceptions import RasterizationError
from ocrpipe.observability.tracing import traced

logger = logging.getLogger(__name__)

PAGE_SUFFIX = ".tiff"

# Trailing "-<digits>" before the suffix
_PAGE_INDEX = re.compile(r"-(\d+)$")


def page_index(path: Path) -> int:
    match = _PAGE_INDEX.search(path.stem)
    return int(match.group(1)) if match else -1


def discover_pages(output_prefix: Path) -> list[Path]:
    """Return <prefix>-N.tiff files in ascending page order."""
    candidates = output_prefix.parent.glob(f"{output_prefix.name}-*{PAGE_SUFFIX}")
    pages = [p for p in candidates if page_index(p) >= 0]
    return sorted(pages, key=page_index)


class Rasterizer:

    def __init__(
        self,
        executable:  str = "magick",
        dpi:         int = 300,
        compression: str = "lzw",
    ) -> None:
        self._executable  = executable
        self._dpi         = dpi
        self._compression = compression

    @classmethod
    def from_settings(cls, settings) -> "Rasterizer":
        return cls(
            executable=settings.converter_executable,
            dpi=settings.converter_dpi,
            compression=settings.converter_compression,
        )

    def command(self, pdf_path: Path, output_prefix: Path) -> list[str]:
        return [
            self._executable,
            "-density", str(self._dpi),
            str(pdf_path),
            "-compress", self._compression,
            f"{output_prefix}-%d{PAGE_SUFFIX}",
        ]

    @traced("rasterize")
    async def __call__(self, pdf_path: Path, output_prefix: Path) -> list[Path]:
        cmd = self.command(pdf_path, output_prefix)
        logger.debug("Rasterizing | cmd=%s", " ".join(cmd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RasterizationError(f"cannot start {self._executable}: {exc}") from exc

        _, stderr = await proc.communicate()
        err_text = stderr.decode(errors="replace").strip() if stderr else ""

        if proc.returncode != 0:
            raise RasterizationError(
                f"{self._executable} exited with status {proc.returncode}: {err_text}",
                returncode=proc.returncode,
                stderr=err_text,
            )

        pages = discover_pages(output_prefix)
        if not pages:
            raise RasterizationError(
                f"{self._executable} produced no page images for {pdf_path.name}",
                returncode=proc.returncode,
                stderr=err_text,
            )

        logger.info("Rasterized | file=%s pages=%d dpi=%d", pdf_path.name, len(pages), self._dpi)
        return pages
