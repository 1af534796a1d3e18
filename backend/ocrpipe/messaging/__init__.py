"""
Messaging Package
═════════════════

RabbitMQ plumbing shared by the upload path and both consumers.

Modules
───────
  topology.py    Exchange / queue / dead-letter names and the once-per-process declarer
  connection.py  Lazily (re)connected kombu connection + channel
  publisher.py   Persistent JSON publish with correlation metadata
  consumer.py    Manual-ack consume loop, Disposition, ShutdownSignal
"""

from ocrpipe.messaging.connection import BrokerConnection
from ocrpipe.messaging.consumer import Disposition, QueueConsumer, ShutdownSignal
from ocrpipe.messaging.publisher import MessagePublisher
from ocrpipe.messaging.topology import INGEST, RESULT, PipelineTopology, TopologyDeclarer

__all__ = [
    "BrokerConnection",
    "Disposition",
    "QueueConsumer",
    "ShutdownSignal",
    "MessagePublisher",
    "INGEST",
    "RESULT",
    "PipelineTopology",
    "TopologyDeclarer",
]
