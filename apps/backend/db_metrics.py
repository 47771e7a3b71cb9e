"""
db_metrics.py

Query timing for the PostgreSQL source.

Every statement runs under :func:`measure_query` with an explicit name
(``unpaid_collections``, ``preview:efforts``, ...). Statements slower than
``Settings.db_metrics.slow_query_threshold_ms`` are logged as ``slow_query``
events; an optional histogram emitter lets a Prometheus/Datadog adapter
observe every duration.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from infra.config import get_settings
from infra.logging_config import StructuredLogger, get_run_context

logger = StructuredLogger(__name__)

HISTOGRAM_NAME = "db_query_duration_ms"

HistogramEmitter = Callable[[str, float, Sequence[str]], None]
_emitter: HistogramEmitter | None = None


def register_histogram_emitter(emitter: HistogramEmitter | None) -> None:
    """Install (or remove, with None) the histogram callback.

    It is called as ``emitter(HISTOGRAM_NAME, duration_ms, tags)`` with tags
    like ``["query:unpaid_collections", "engine:postgres"]``.
    """
    global _emitter
    _emitter = emitter


def _tags(name: str) -> list[str]:
    tags = [f"query:{name}"]
    engine = get_run_context().get("engine")
    if engine:
        tags.append(f"engine:{engine}")
    return tags


@contextmanager
def measure_query(name: str) -> Iterator[None]:
    """Time the enclosed statement."""
    cfg = get_settings().db_metrics
    if not cfg.metrics_enabled:
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
        if duration_ms >= cfg.slow_query_threshold_ms:
            logger.warning("slow_query", query_name=name, duration_ms=f"{duration_ms:.2f}")
        if _emitter is not None:
            try:
                _emitter(HISTOGRAM_NAME, duration_ms, _tags(name))
            except (TypeError, ValueError, RuntimeError) as exc:
                logger.debug("histogram_emit_failed", error=str(exc))
