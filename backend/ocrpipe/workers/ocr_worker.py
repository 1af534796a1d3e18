"""
OCR Worker — ingest queue consumer

Per delivery (documents.ocr):

  Received → Downloading → Rasterizing → Recognizing → Indexing → Publishing → Acknowledged
                 │              │             │                        │
                 └──────────────┴─────────────┴────────────────────────┴──→ Failed → Dead-lettered

  1. Download     object bytes → <work_dir>/<doc>-<token>.pdf
  2. Rasterize    ImageMagick → <doc>-<token>-page-N.tiff, numeric page order
  3. Recognize    Tesseract per page; pages joined with PAGE_BREAK.
                  Mean confidence below the threshold is a warning only.
  4. Index        best effort: a failure is logged and processing continues
  5. Publish      message.with_content(text) → ocr / ocr.read
  6. Ack          only after the publish succeeded
  7. Cleanup      always: every scratch file named <doc>-<token>*

Fatal failures (download, rasterize, recognize, publish) dead-letter the
delivery. Shutdown observed between stages ends the message as CANCELLED and
the delivery is requeued for another worker.

Stages are injected (rasterize / recognize / cleanup callables, storage,
search index, publisher) so each one can be replaced independently.
"""

from __future__ import annotations

import logging
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.consumer import Disposition, QueueConsumer, ShutdownSignal
from ocrpipe.messaging.publisher import MessagePublisher
from ocrpipe.messaging.topology import INGEST, RESULT, PipelineTopology, TopologyDeclarer
from ocrpipe.observability.tracing import stage_timer
from ocrpipe.processing.stages import (
    Cleanup,
    FailureKind,
    PipelineState,
    Rasterize,
    Recognize,
    StageResult,
    join_pages,
    remove_files,
)
from ocrpipe.schemas.messages import DocumentMessage
from ocrpipe.search.base import SearchIndex
from ocrpipe.storage.s3 import DocumentStorage

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.70


@dataclass(frozen=True)
class ProcessingOutcome:
    """What happened to one message; the consumer settles the delivery from it."""
    document_id: UUID
    failure:     FailureKind | None = None
    failed_at:   PipelineState | None = None
    text:        str | None = None
    indexed:     bool = False
    result_message_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def disposition(self) -> Disposition:
        if self.failure is None:
            return Disposition.ACK
        if self.failure is FailureKind.CANCELLED:
            return Disposition.REQUEUE
        return Disposition.DEAD_LETTER


class OcrPipeline:

    def __init__(
        self,
        *,
        storage:         DocumentStorage,
        search_index:    SearchIndex,
        publisher:       MessagePublisher,
        rasterize:       Rasterize,
        recognize:       Recognize,
        cleanup:         Cleanup = remove_files,
        work_dir:        Path | str | None = None,
        min_confidence:  float = DEFAULT_MIN_CONFIDENCE,
        result_topology: PipelineTopology = RESULT,
        shutdown:        ShutdownSignal | None = None,
    ) -> None:
        self._storage         = storage
        self._search_index    = search_index
        self._publisher       = publisher
        self._rasterize       = rasterize
        self._recognize       = recognize
        self._cleanup         = cleanup
        self._work_dir        = Path(work_dir) if work_dir else Path(tempfile.gettempdir())
        self._min_confidence  = min_confidence
        self._result_topology = result_topology
        self._shutdown        = shutdown
        self._work_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def process(self, message: DocumentMessage) -> ProcessingOutcome:
        # Scratch names are unique per delivery, not just per document
        stem = f"{message.document_id}-{uuid.uuid4().hex[:8]}"

        logger.info(
            "Processing | doc=%s tenant=%s correlation_id=%s key=%s",
            message.document_id, message.tenant_id,
            message.correlation_id, message.storage_path,
        )
        self._enter(message, PipelineState.RECEIVED)

        try:
            return await self._run(message, stem)
        finally:
            self._run_cleanup(message, stem)

    async def _run(self, message: DocumentMessage, stem: str) -> ProcessingOutcome:
        pdf_path      = self._work_dir / f"{stem}.pdf"
        output_prefix = self._work_dir / f"{stem}-page"

        # --- 1. Download --------------------------------------------------
        downloaded = await self._stage(message, PipelineState.DOWNLOADING,
                                       self._download(message, pdf_path))
        if not downloaded.ok:
            return self._failed(message, PipelineState.DOWNLOADING, downloaded)

        # --- 2. Rasterize -------------------------------------------------
        rasterized = await self._stage(message, PipelineState.RASTERIZING,
                                       self._rasterize_pdf(pdf_path, output_prefix))
        if not rasterized.ok:
            return self._failed(message, PipelineState.RASTERIZING, rasterized)

        # --- 3. Recognize -------------------------------------------------
        recognized = await self._stage(message, PipelineState.RECOGNIZING,
                                       self._recognize_pages(message, rasterized.value))
        if not recognized.ok:
            return self._failed(message, PipelineState.RECOGNIZING, recognized)
        text = recognized.value

        # --- 4. Index (best effort) ---------------------------------------
        if self._cancelled():
            return self._failed(message, PipelineState.INDEXING,
                                StageResult.failed(FailureKind.CANCELLED))
        self._enter(message, PipelineState.INDEXING)
        indexed = await self._index(message, text)

        # --- 5. Publish result --------------------------------------------
        published = await self._stage(message, PipelineState.PUBLISHING,
                                      self._publish(message.with_content(text)))
        if not published.ok:
            return self._failed(message, PipelineState.PUBLISHING, published)

        logger.info(
            "Processed | doc=%s chars=%d indexed=%s result_message_id=%s",
            message.document_id, len(text), indexed, published.value,
        )
        return ProcessingOutcome(
            document_id=message.document_id,
            text=text,
            indexed=indexed,
            result_message_id=published.value,
        )

    async def _stage(self, message: DocumentMessage, state: PipelineState, step) -> StageResult:
        """Cancellation checkpoint, state transition, then the stage itself."""
        if self._cancelled():
            step.close()
            return StageResult.failed(FailureKind.CANCELLED)
        self._enter(message, state)
        return await step

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _download(self, message: DocumentMessage, pdf_path: Path) -> StageResult[Path]:
        try:
            data = await self._storage.download(message.storage_path)
            pdf_path.write_bytes(data)
        except Exception as exc:
            return StageResult.failed(FailureKind.DOWNLOAD, exc)
        return StageResult.success(pdf_path)

    async def _rasterize_pdf(self, pdf_path: Path, output_prefix: Path) -> StageResult[list[Path]]:
        try:
            pages = await self._rasterize(pdf_path, output_prefix)
        except Exception as exc:
            return StageResult.failed(FailureKind.RASTERIZE, exc)
        return StageResult.success(pages)

    async def _recognize_pages(self, message: DocumentMessage, pages: list[Path]) -> StageResult[str]:
        texts: list[str] = []
        try:
            for page_number, image_path in enumerate(pages, start=1):
                page = await self._recognize(image_path)
                if page.confidence < self._min_confidence:
                    logger.warning(
                        "Low OCR confidence | doc=%s page=%d confidence=%.2f threshold=%.2f",
                        message.document_id, page_number, page.confidence, self._min_confidence,
                    )
                texts.append(page.text)
        except Exception as exc:
            return StageResult.failed(FailureKind.RECOGNIZE, exc)

        logger.info("Recognized | doc=%s pages=%d", message.document_id, len(texts))
        return StageResult.success(join_pages(texts))

    async def _index(self, message: DocumentMessage, text: str) -> bool:
        try:
            with stage_timer("index", doc=message.document_id):
                indexed = await self._search_index.index_document(
                    message.document_id, text, message.file_name,
                )
        except Exception as exc:
            logger.error(
                "Indexing failed, continuing | doc=%s error=%s",
                message.document_id, exc, exc_info=exc,
            )
            return False
        if not indexed:
            logger.warning("Indexing skipped, continuing | doc=%s", message.document_id)
        return indexed

    async def _publish(self, result: DocumentMessage) -> StageResult[str]:
        try:
            message_id = await self._publisher.publish_async(result, self._result_topology)
        except Exception as exc:
            return StageResult.failed(FailureKind.PUBLISH, exc)
        return StageResult.success(message_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _cancelled(self) -> bool:
        return self._shutdown is not None and self._shutdown.is_set()

    def _enter(self, message: DocumentMessage, state: PipelineState) -> None:
        logger.debug("State | doc=%s state=%s", message.document_id, state.value)

    def _failed(
        self,
        message: DocumentMessage,
        state:   PipelineState,
        result:  StageResult,
    ) -> ProcessingOutcome:
        self._enter(message, PipelineState.FAILED)
        if result.failure is FailureKind.CANCELLED:
            logger.warning(
                "Cancelled by shutdown | doc=%s stage=%s", message.document_id, state.value,
            )
        else:
            logger.error(
                "Stage failed | doc=%s stage=%s failure=%s correlation_id=%s error=%s",
                message.document_id, state.value, result.failure.value,
                message.correlation_id, result.error,
                exc_info=result.error,
            )
        return ProcessingOutcome(
            document_id=message.document_id,
            failure=result.failure,
            failed_at=state,
        )

    def _run_cleanup(self, message: DocumentMessage, stem: str) -> None:
        paths = sorted(self._work_dir.glob(f"{stem}*"))
        try:
            self._cleanup(paths)
        except Exception:
            logger.exception("Cleanup raised | doc=%s files=%d", message.document_id, len(paths))
        else:
            logger.debug("Cleaned up | doc=%s files=%d", message.document_id, len(paths))


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------

class OcrConsumer(QueueConsumer):

    def __init__(
        self,
        broker:   BrokerConnection,
        pipeline: OcrPipeline,
        declarer: TopologyDeclarer | None = None,
        **kwargs,
    ) -> None:
        super().__init__(broker, INGEST, declarer, **kwargs)
        self._pipeline = pipeline

    async def handle(self, message: DocumentMessage) -> Disposition:
        outcome = await self._pipeline.process(message)
        return outcome.disposition

    def settle(self, delivery, disposition: Disposition, message: DocumentMessage) -> None:
        super().settle(delivery, disposition, message)
        logger.info(
            "State | doc=%s state=%s",
            message.document_id, _FINAL_STATES[disposition].value,
        )


_FINAL_STATES = {
    Disposition.ACK:         PipelineState.ACKNOWLEDGED,
    Disposition.DEAD_LETTER: PipelineState.DEAD_LETTERED,
    Disposition.REQUEUE:     PipelineState.REQUEUED,
}
