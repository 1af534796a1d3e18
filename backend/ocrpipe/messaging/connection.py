"""
Broker Connection Manager

Owns one kombu Connection and one channel beneath it. Both are opened on
first use and reused while healthy; if either has been closed (broker
restart, heartbeat miss, channel-level error) both are rebuilt on the next
get_channel() call.

No retry loop here: a failure to connect propagates to the caller. The
consume loop backs off and reconnects; the ingestion path fails the upload.

Channels are not shared between logical roles: the OCR consumer, its result
publisher and the ingestion publisher each hold their own BrokerConnection.
"""

from __future__ import annotations

import logging
import threading

from kombu import Connection
from kombu.exceptions import OperationalError

logger = logging.getLogger(__name__)


class BrokerConnection:

    def __init__(
        self,
        url:             str,
        heartbeat:       int   = 30,
        connect_timeout: float = 10.0,
    ) -> None:
        self._url             = url
        self._heartbeat       = heartbeat
        self._connect_timeout = connect_timeout
        self._connection: Connection | None = None
        self._channel = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, *, heartbeat: int | None = None) -> "BrokerConnection":
        """heartbeat overrides the configured value; publish-only connections pass 0."""
        return cls(
            settings.broker_url,
            heartbeat=settings.rabbitmq_heartbeat if heartbeat is None else heartbeat,
            connect_timeout=settings.rabbitmq_connect_timeout,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_connection(self) -> Connection:
        return Connection(
            self._url,
            heartbeat=self._heartbeat,
            connect_timeout=self._connect_timeout,
        )

    def _connection_open(self) -> bool:
        return self._connection is not None and self._connection.connected

    def _channel_open(self) -> bool:
        return self._channel is not None and getattr(self._channel, "is_open", False)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_channel(self):
        """
        Return an open channel, (re)connecting when needed.

        Raises kombu OperationalError (or the transport's connection error)
        when the broker cannot be reached.
        """
        with self._lock:
            if not self._connection_open():
                self._discard()
                connection = self._new_connection()
                connection.connect()
                self._connection = connection
                logger.info("Broker connected | url=%s", connection.as_uri())

            if not self._channel_open():
                self._channel = self._connection.channel()
                logger.debug("Broker channel opened | channel_id=%s",
                             getattr(self._channel, "channel_id", None))

            return self._channel

    def drain_events(self, timeout: float) -> None:
        """Dispatch pending deliveries to consumer callbacks; socket.timeout when idle."""
        if self._connection is None:
            raise OperationalError("broker connection is not open")
        self._connection.drain_events(timeout=timeout)

    def heartbeat_check(self) -> None:
        if self._connection is not None:
            self._connection.heartbeat_check()

    @property
    def recoverable_errors(self) -> tuple[type[BaseException], ...]:
        """Errors after which reconnecting may succeed."""
        connection = self._connection or self._new_connection()
        return (
            OperationalError,
            *connection.connection_errors,
            *connection.channel_errors,
        )

    def close(self) -> None:
        with self._lock:
            self._discard()

    def _discard(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        if channel is not None:
            try:
                channel.close()
            except Exception as exc:
                logger.debug("Ignoring error closing stale channel: %s", exc)
        if connection is not None:
            try:
                connection.release()
            except Exception as exc:
                logger.debug("Ignoring error closing stale connection: %s", exc)
