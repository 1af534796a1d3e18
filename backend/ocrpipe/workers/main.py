"""
Worker entry point.

    ocrpipe-worker ocr        # consume documents.ocr
    ocrpipe-worker results    # consume ocr.results

Each role is meant to run as its own process; scale horizontally by
starting more processes on the same queue. SIGINT / SIGTERM stop the
consumer after the in-flight message reaches a stage boundary.
"""

from __future__ import annotations

import argparse
import logging
import sys

from ocrpipe.core.config import Settings, get_settings
from ocrpipe.core.logging import configure_logging
from ocrpipe.db.repository import SqlAlchemyDocumentRepository
from ocrpipe.db.session import dispose_engine
from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.consumer import ShutdownSignal
from ocrpipe.messaging.publisher import MessagePublisher
from ocrpipe.messaging.topology import INGEST, RESULT, TopologyDeclarer
from ocrpipe.processing.rasterizer import Rasterizer
from ocrpipe.processing.recognizer import TesseractRecognizer
from ocrpipe.search.elasticsearch_store import ElasticsearchIndex
from ocrpipe.storage.s3 import DocumentStorage
from ocrpipe.workers.ocr_worker import OcrConsumer, OcrPipeline
from ocrpipe.workers.result_consumer import ResultConsumer, ResultHandler

logger = logging.getLogger(__name__)


def _consumer_options(settings: Settings, shutdown: ShutdownSignal) -> dict:
    return {
        "prefetch_count":  settings.worker_prefetch_count,
        "reconnect_delay": settings.worker_reconnect_delay,
        "shutdown":        shutdown,
    }


def run_ocr_worker(settings: Settings, shutdown: ShutdownSignal) -> None:
    declarer     = TopologyDeclarer(INGEST, RESULT)
    search_index = ElasticsearchIndex.from_settings(settings)

    pipeline = OcrPipeline(
        storage=DocumentStorage.from_settings(settings),
        search_index=search_index,
        # Result publishing gets its own connection and channel. Nothing
        # drains this connection, so it runs without heartbeats.
        publisher=MessagePublisher(
            BrokerConnection.from_settings(settings, heartbeat=0), declarer,
        ),
        rasterize=Rasterizer.from_settings(settings),
        recognize=TesseractRecognizer.from_settings(settings),
        work_dir=settings.work_dir or None,
        min_confidence=settings.ocr_min_confidence,
        shutdown=shutdown,
    )
    consumer = OcrConsumer(
        BrokerConnection.from_settings(settings),
        pipeline,
        declarer,
        **_consumer_options(settings, shutdown),
    )

    try:
        consumer.run_sync(search_index.ensure_index())
        consumer.run()
    finally:
        consumer.run_sync(search_index.close())
        consumer.close()


def run_result_consumer(settings: Settings, shutdown: ShutdownSignal) -> None:
    consumer = ResultConsumer(
        BrokerConnection.from_settings(settings),
        ResultHandler(SqlAlchemyDocumentRepository()),
        TopologyDeclarer(RESULT),
        **_consumer_options(settings, shutdown),
    )
    try:
        consumer.run()
    finally:
        consumer.run_sync(dispose_engine())
        consumer.close()


ROLES = {
    "ocr":     run_ocr_worker,
    "results": run_result_consumer,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ocrpipe-worker",
        description="Run one of the document pipeline consumers.",
    )
    parser.add_argument("role", choices=sorted(ROLES))
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)

    shutdown = ShutdownSignal()
    shutdown.install()

    logger.info("Worker starting | role=%s env=%s", args.role, settings.app_env)
    ROLES[args.role](settings, shutdown)
    logger.info("Worker exited | role=%s", args.role)
    return 0


if __name__ == "__main__":
    sys.exit(main())
