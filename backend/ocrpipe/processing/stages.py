"""
Stage contracts for the OCR pipeline.

The worker depends on three injectable callables:

  Rasterize  (pdf_path, output_prefix) -> ordered page image paths
  Recognize  (image_path)              -> PageText
  Cleanup    (paths)                   -> None, must not raise

Every stage result is a StageResult: either a value, or one FailureKind
from a closed set plus the causing exception. The driver maps the failure
kind to a broker disposition; no caller inspects exception classes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Generic, Iterable, Protocol, TypeVar

from ocrpipe.processing.recognizer import PageText

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_BREAK = "\n--- PAGE BREAK ---\n"


class PipelineState(str, Enum):
    RECEIVED      = "received"
    DOWNLOADING   = "downloading"
    RASTERIZING   = "rasterizing"
    RECOGNIZING   = "recognizing"
    INDEXING      = "indexing"
    PUBLISHING    = "publishing"
    ACKNOWLEDGED  = "acknowledged"
    FAILED        = "failed"
    DEAD_LETTERED = "dead_lettered"
    REQUEUED      = "requeued"


class FailureKind(str, Enum):
    DOWNLOAD  = "download"
    RASTERIZE = "rasterize"
    RECOGNIZE = "recognize"
    PUBLISH   = "publish"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageResult(Generic[T]):
    value:   T | None = None
    failure: FailureKind | None = None
    error:   BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "StageResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, kind: FailureKind, error: BaseException | None = None) -> "StageResult[T]":
        return cls(failure=kind, error=error)


# ---------------------------------------------------------------------------
# Injectable stage interfaces
# ---------------------------------------------------------------------------

class Rasterize(Protocol):
    def __call__(self, pdf_path: Path, output_prefix: Path) -> Awaitable[list[Path]]: ...


class Recognize(Protocol):
    def __call__(self, image_path: Path) -> Awaitable[PageText]: ...


Cleanup = Callable[[Iterable[Path]], None]


# ---------------------------------------------------------------------------
# Default helpers
# ---------------------------------------------------------------------------

def join_pages(texts: Iterable[str]) -> str:
    """N pages → N-1 page-break markers, in the given order. Page text is kept as recognized."""
    return PAGE_BREAK.join(texts)


def remove_files(paths: Iterable[Path]) -> None:
    """Delete scratch files; errors are logged, never raised."""
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Cleanup failed | path=%s error=%s", path, exc)
