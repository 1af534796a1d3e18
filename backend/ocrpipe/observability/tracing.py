"""
Stage timing for the OCR pipeline.

    with stage_timer("index", doc=document_id):
        ...

    @traced("rasterize")
    async def __call__(self, pdf_path, output_prefix): ...

Both emit one DEBUG line per stage:

    Stage timing | stage=rasterize elapsed_ms=812.4 outcome=ok

Failures are timed with outcome=error and re-raised untouched. The error
itself is reported once, by the pipeline stage that handles it.
"""

from __future__ import annotations

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Coroutine, Iterator, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


@contextmanager
def stage_timer(stage: str, **context: Any) -> Iterator[None]:
    extra = "".join(f" {key}={value}" for key, value in context.items())
    started = time.perf_counter()
    outcome = "error"
    try:
        yield
        outcome = "ok"
    finally:
        logger.debug(
            "Stage timing | stage=%s elapsed_ms=%.1f outcome=%s%s",
            stage, (time.perf_counter() - started) * 1000, outcome, extra,
        )


def traced(stage: str | None = None) -> Callable[[F], F]:
    """Time every call of an async callable under `stage` (default: its qualified name)."""
    def decorator(func: F) -> F:
        name = stage or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            with stage_timer(name):
                return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]
    return decorator
