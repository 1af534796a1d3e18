"""
Observability Package

Provides:
  stage_timer  context manager logging how long a pipeline stage took
  traced       the same, as a decorator for async stage callables
"""

from ocrpipe.observability.tracing import stage_timer, traced

__all__ = ["stage_timer", "traced"]
