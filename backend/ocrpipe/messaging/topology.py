"""
Broker Topology

Two pipelines, each with its own dead-letter pair:

  Pipeline  Exchange (topic)  Routing key        Queue          DLX            DLQ
  ingest    documents         document.uploaded  documents.ocr  documents.dlx  documents.ocr.dlq
  result    ocr               ocr.read           ocr.results    ocr.dlx        ocr.results.dlq

Every main queue carries x-dead-letter-exchange / x-dead-letter-routing-key
arguments, so a delivery rejected without requeue lands in the DLQ instead
of being dropped. The DLQ is bound to its DLX with the DLQ name as the
routing key.

Declaration order (per pipeline):
  1. DLX (direct)   2. DLQ   3. DLQ ← DLX binding
  4. main exchange  5. main queue (+ DLX arguments)   6. queue ← exchange binding

Publisher and consumers must agree on these names; a mismatch makes messages
silently undeliverable, so both import the constants from this module.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from kombu import Exchange, Queue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineTopology:
    name:               str
    exchange_name:      str
    routing_key:        str
    queue_name:         str
    dead_letter_exchange_name: str
    dead_letter_queue_name:    str

    @property
    def exchange(self) -> Exchange:
        return Exchange(self.exchange_name, type="topic", durable=True)

    @property
    def dead_letter_exchange(self) -> Exchange:
        return Exchange(self.dead_letter_exchange_name, type="direct", durable=True)

    @property
    def queue(self) -> Queue:
        return Queue(
            self.queue_name,
            exchange=self.exchange,
            routing_key=self.routing_key,
            durable=True,
            queue_arguments={
                "x-dead-letter-exchange":    self.dead_letter_exchange_name,
                "x-dead-letter-routing-key": self.dead_letter_queue_name,
            },
        )

    @property
    def dead_letter_queue(self) -> Queue:
        return Queue(
            self.dead_letter_queue_name,
            exchange=self.dead_letter_exchange,
            routing_key=self.dead_letter_queue_name,
            durable=True,
        )


INGEST = PipelineTopology(
    name="ingest",
    exchange_name="documents",
    routing_key="document.uploaded",
    queue_name="documents.ocr",
    dead_letter_exchange_name="documents.dlx",
    dead_letter_queue_name="documents.ocr.dlq",
)

RESULT = PipelineTopology(
    name="result",
    exchange_name="ocr",
    routing_key="ocr.read",
    queue_name="ocr.results",
    dead_letter_exchange_name="ocr.dlx",
    dead_letter_queue_name="ocr.results.dlq",
)


def declare_topology(channel, topology: PipelineTopology) -> None:
    """Issue the six declare/bind calls for one pipeline, in order."""
    dlq   = topology.dead_letter_queue
    queue = topology.queue

    topology.dead_letter_exchange.declare(channel=channel)
    dlq.queue_declare(channel=channel)
    dlq.queue_bind(channel=channel)

    topology.exchange.declare(channel=channel)
    queue.queue_declare(channel=channel)
    queue.queue_bind(channel=channel)

    logger.info(
        "Topology declared | pipeline=%s exchange=%s queue=%s dlq=%s",
        topology.name, topology.exchange_name,
        topology.queue_name, topology.dead_letter_queue_name,
    )


class TopologyDeclarer:
    """
    Declares a set of pipelines once per process.

    The first caller holds the lock while declaring; concurrent callers wait
    and then return without touching the broker. A failed declaration leaves
    the state undeclared and propagates, so startup fails loudly and a later
    call can try again.
    """

    def __init__(self, *topologies: PipelineTopology) -> None:
        self._topologies = topologies
        self._lock       = threading.Lock()
        self._declared   = False

    @property
    def declared(self) -> bool:
        return self._declared

    def ensure(self, channel) -> None:
        if self._declared:
            return
        with self._lock:
            if self._declared:
                return
            for topology in self._topologies:
                declare_topology(channel, topology)
            self._declared = True
