"""
Domain exceptions raised by the pipeline components.

Stage boundaries in the OCR worker translate these into typed stage
results; nothing above the stage layer branches on exception classes.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(PipelineError):
    """Object storage operation failed."""


class UnsupportedDocumentError(StorageError, ValueError):
    """Upload rejected: not a PDF by content type and extension."""


class ObjectNotFoundError(StorageError, FileNotFoundError):
    """The requested object key does not exist in the bucket."""


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

class RasterizationError(PipelineError):
    """The external converter failed or produced no page images."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr     = stderr


class RecognitionError(PipelineError):
    """The OCR engine could not process a page image."""


# ---------------------------------------------------------------------------
# Messaging / persistence
# ---------------------------------------------------------------------------

class MessageDecodeError(PipelineError, ValueError):
    """A delivery body could not be decoded into a DocumentMessage."""


class TopologyDeclarationError(PipelineError):
    """Exchanges or queues could not be declared; the dependent consumer must not start."""


class RepositoryError(PipelineError):
    """The document repository is unreachable or rejected the operation."""
