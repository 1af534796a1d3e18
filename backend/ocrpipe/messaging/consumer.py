"""
Queue Consumer Loop

Shared long-running loop for the OCR worker and the result consumer:

  connect → ensure topology → basic.qos(prefetch) → basic.consume
      → drain events (1s ticks) until shutdown
      → on a recoverable broker error: log, wait, reconnect

A topology declaration failure (e.g. PreconditionFailed for inequivalent
dead-letter arguments) is not a connection problem: it is raised out of
run() as TopologyDeclarationError and the consumer does not start.

Deliveries are acknowledged manually. Each handler returns a Disposition
and the loop settles the delivery accordingly:

  ACK          basic.ack
  DEAD_LETTER  basic.reject(requeue=False) → routed to the pipeline's DLQ
  REQUEUE      basic.reject(requeue=True)  → only used for shutdown mid-message

Handlers are coroutines. Each consumer owns a private event loop driven by a
single handler thread, so messages are processed strictly one at a time per
consumer instance. While a handler runs, the consuming thread keeps calling
heartbeat_check() every HEARTBEAT_POLL_SECONDS; py-amqp only sends
heartbeats when asked to.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import socket
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum

from kombu import Consumer

from ocrpipe.core.exceptions import MessageDecodeError, TopologyDeclarationError
from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.topology import PipelineTopology, TopologyDeclarer
from ocrpipe.schemas.messages import DocumentMessage

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS  = 1.0
HEARTBEAT_POLL_SECONDS = 1.0


class Disposition(str, Enum):
    ACK         = "ack"
    DEAD_LETTER = "dead_letter"
    REQUEUE     = "requeue"


# ---------------------------------------------------------------------------
# Shutdown signal
# ---------------------------------------------------------------------------

class ShutdownSignal:
    """
    Process-wide cooperative cancellation flag.

    install() routes SIGINT / SIGTERM to set(); consumers stop draining and
    in-flight pipelines stop at the next stage boundary.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def install(self) -> None:
        signal.signal(signal.SIGINT, self._handle)
        signal.signal(signal.SIGTERM, self._handle)

    def _handle(self, signum, frame) -> None:
        logger.info("Shutdown requested | signal=%s", signal.Signals(signum).name)
        self._event.set()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


# ---------------------------------------------------------------------------
# Base consumer
# ---------------------------------------------------------------------------

class QueueConsumer(ABC):
    """Subclasses implement handle(); everything broker-facing lives here."""

    def __init__(
        self,
        broker:          BrokerConnection,
        topology:        PipelineTopology,
        declarer:        TopologyDeclarer | None = None,
        *,
        prefetch_count:  int   = 1,
        reconnect_delay: float = 5.0,
        shutdown:        ShutdownSignal | None = None,
    ) -> None:
        self._broker          = broker
        self._topology        = topology
        self._declarer        = declarer or TopologyDeclarer(topology)
        self._prefetch_count  = prefetch_count
        self._reconnect_delay = reconnect_delay
        self._shutdown        = shutdown or ShutdownSignal()
        self._loop            = asyncio.new_event_loop()
        self._executor        = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{topology.queue_name}-handler",
        )

    @property
    def topology(self) -> PipelineTopology:
        return self._topology

    @abstractmethod
    async def handle(self, message: DocumentMessage) -> Disposition:
        """Process one decoded envelope and say how to settle the delivery."""

    # ------------------------------------------------------------------
    # Delivery handling
    # ------------------------------------------------------------------

    def on_message(self, delivery) -> None:
        """kombu on_message callback; runs on the consuming thread."""
        try:
            message = DocumentMessage.from_body(delivery.body)
        except MessageDecodeError as exc:
            logger.error(
                "Undecodable delivery, dead-lettering | queue=%s message_id=%s error=%s",
                self._topology.queue_name,
                delivery.properties.get("message_id"), exc,
            )
            delivery.reject(requeue=False)
            return

        future = self._executor.submit(self._loop.run_until_complete, self.handle(message))
        # Broker errors raised here leave the delivery unsettled; run() reconnects
        self._service_heartbeats(future)

        try:
            disposition = future.result()
        except Exception:
            logger.exception(
                "Unhandled error, dead-lettering | queue=%s doc=%s",
                self._topology.queue_name, message.document_id,
            )
            disposition = Disposition.DEAD_LETTER

        self.settle(delivery, disposition, message)

    def _service_heartbeats(self, future: Future) -> None:
        while not wait([future], timeout=HEARTBEAT_POLL_SECONDS).done:
            self._broker.heartbeat_check()

    def settle(self, delivery, disposition: Disposition, message: DocumentMessage) -> None:
        if disposition is Disposition.ACK:
            delivery.ack()
        elif disposition is Disposition.REQUEUE:
            delivery.reject(requeue=True)
        else:
            delivery.reject(requeue=False)

        logger.info(
            "Settled | queue=%s doc=%s disposition=%s",
            self._topology.queue_name, message.document_id, disposition.value,
        )

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Consume until shutdown, reconnecting after recoverable broker errors."""
        logger.info(
            "Consumer starting | queue=%s prefetch=%d",
            self._topology.queue_name, self._prefetch_count,
        )
        try:
            while not self._shutdown.is_set():
                try:
                    self._consume()
                except self._broker.recoverable_errors as exc:
                    if self._shutdown.is_set():
                        break
                    logger.warning(
                        "Broker connection lost | queue=%s error=%s retry_in=%.1fs",
                        self._topology.queue_name, exc, self._reconnect_delay,
                    )
                    self._broker.close()
                    self._shutdown.wait(self._reconnect_delay)
        finally:
            self._broker.close()
            logger.info("Consumer stopped | queue=%s", self._topology.queue_name)

    def run_sync(self, coro):
        """Run a coroutine on this consumer's loop (startup / teardown work)."""
        return self._executor.submit(self._loop.run_until_complete, coro).result()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if not self._loop.is_closed():
            self._loop.close()

    def _consume(self) -> None:
        channel = self._broker.get_channel()
        self._declare(channel)

        consumer = Consumer(
            channel,
            queues=[self._topology.queue],
            on_message=self.on_message,
            accept=["json"],
            prefetch_count=self._prefetch_count,
            auto_declare=False,
            no_ack=False,
        )
        with consumer:
            logger.info("Consumer listening | queue=%s", self._topology.queue_name)
            while not self._shutdown.is_set():
                try:
                    self._broker.drain_events(timeout=DRAIN_TIMEOUT_SECONDS)
                except socket.timeout:
                    self._broker.heartbeat_check()

    def _declare(self, channel) -> None:
        try:
            self._declarer.ensure(channel)
        except Exception as exc:
            logger.error(
                "Topology declaration failed, not consuming | queue=%s error=%s",
                self._topology.queue_name, exc,
            )
            raise TopologyDeclarationError(
                f"cannot declare topology for {self._topology.queue_name}: {exc}"
            ) from exc
