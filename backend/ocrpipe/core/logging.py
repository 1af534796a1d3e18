"""Process-wide logging setup for the worker entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Libraries that log every frame / request at INFO
_NOISY_LOGGERS = ("kombu", "amqp", "botocore", "aiobotocore", "elastic_transport")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
