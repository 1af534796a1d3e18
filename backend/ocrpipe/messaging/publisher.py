"""
Message Publisher

Publishes a DocumentMessage to a pipeline's exchange with:

  delivery_mode   2 (persistent)
  content_type    application/json, utf-8
  message_id      fresh uuid4 hex per publish
  correlation_id  copied from the envelope
  timestamp       publish time, epoch seconds
  headers         message-type, version, tenant-id (only when set)

Topology is ensured before the first publish. Any broker failure is raised
to the caller; this component never retries and never touches storage or
the document store.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
import uuid

from kombu import Producer

from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.topology import PipelineTopology, TopologyDeclarer
from ocrpipe.schemas.messages import CONTENT_TYPE_JSON, MESSAGE_TYPE, DocumentMessage

logger = logging.getLogger(__name__)

PERSISTENT_DELIVERY_MODE = 2


def build_headers(message: DocumentMessage) -> dict[str, object]:
    headers: dict[str, object] = {
        "message-type": MESSAGE_TYPE,
        "version":      message.version,
    }
    if message.tenant_id:
        headers["tenant-id"] = message.tenant_id
    return headers


class MessagePublisher:
    """
    Synchronous kombu publisher bound to one BrokerConnection.

    Publishing is serialized with a lock so the single channel is never used
    by two threads at once (publish_async hands work to executor threads).
    """

    def __init__(self, broker: BrokerConnection, declarer: TopologyDeclarer) -> None:
        self._broker   = broker
        self._declarer = declarer
        self._lock     = threading.Lock()

    def publish(self, message: DocumentMessage, topology: PipelineTopology) -> str:
        """Publish and return the generated transport message id."""
        message_id = uuid.uuid4().hex

        with self._lock:
            channel = self._broker.get_channel()
            self._declarer.ensure(channel)

            producer = Producer(channel)
            producer.publish(
                message.to_json(),
                exchange=topology.exchange,
                routing_key=topology.routing_key,
                content_type=CONTENT_TYPE_JSON,
                content_encoding="utf-8",
                delivery_mode=PERSISTENT_DELIVERY_MODE,
                headers=build_headers(message),
                message_id=message_id,
                correlation_id=message.correlation_id,
                timestamp=int(time.time()),
                retry=False,
            )

        logger.info(
            "Published | doc=%s exchange=%s routing_key=%s message_id=%s correlation_id=%s",
            message.document_id, topology.exchange_name, topology.routing_key,
            message_id, message.correlation_id,
        )
        return message_id

    async def publish_async(self, message: DocumentMessage, topology: PipelineTopology) -> str:
        """Run publish() in a thread executor to keep the event loop free."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.publish, message, topology)
        )
