from __future__ import annotations

import threading
import time
from typing import Optional

from .registry import (
    SINK_BATCH_TOTAL,
    SINK_CONNECTION_TOTAL,
    SINK_EVENT_DRAIN_ATTEMPT_TOTAL,
    SINK_EVENT_DRAIN_SUCCESS_TOTAL,
)

_FIELDS = (
    "batch_empty_count",
    "batch_underflow_count",
    "batch_complete_count",
    "event_drain_attempt_count",
    "event_drain_success_count",
    "connection_created_count",
    "connection_closed_count",
    "connection_failed_count",
)


class SinkCounter:
    """
    Per-sink counters.

    Values are kept on the instance so a sink can report its own totals, and are
    mirrored into the process-wide Prometheus registry labelled by sink name.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.start_time: Optional[float] = None
        self.stop_time: Optional[float] = None
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(_FIELDS, 0)

    def start(self) -> None:
        self.start_time = time.time()
        self.stop_time = None

    def stop(self) -> None:
        self.stop_time = time.time()

    def _add(self, field: str, delta: int) -> None:
        with self._lock:
            self._counts[field] += delta

    def increment_batch_empty(self) -> None:
        self._add("batch_empty_count", 1)
        SINK_BATCH_TOTAL.labels(sink=self.name, kind="empty").inc()

    def increment_batch_underflow(self) -> None:
        self._add("batch_underflow_count", 1)
        SINK_BATCH_TOTAL.labels(sink=self.name, kind="underflow").inc()

    def increment_batch_complete(self) -> None:
        self._add("batch_complete_count", 1)
        SINK_BATCH_TOTAL.labels(sink=self.name, kind="complete").inc()

    def add_to_event_drain_attempt(self, delta: int) -> None:
        self._add("event_drain_attempt_count", delta)
        SINK_EVENT_DRAIN_ATTEMPT_TOTAL.labels(sink=self.name).inc(delta)

    def add_to_event_drain_success(self, delta: int) -> None:
        self._add("event_drain_success_count", delta)
        SINK_EVENT_DRAIN_SUCCESS_TOTAL.labels(sink=self.name).inc(delta)

    def increment_connection_created(self) -> None:
        self._add("connection_created_count", 1)
        SINK_CONNECTION_TOTAL.labels(sink=self.name, event="created").inc()

    def increment_connection_closed(self) -> None:
        self._add("connection_closed_count", 1)
        SINK_CONNECTION_TOTAL.labels(sink=self.name, event="closed").inc()

    def increment_connection_failed(self) -> None:
        self._add("connection_failed_count", 1)
        SINK_CONNECTION_TOTAL.labels(sink=self.name, event="failed").inc()

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def __getattr__(self, item: str) -> int:
        # expose counts as attributes, e.g. counter.batch_empty_count
        if item in _FIELDS:
            return self.snapshot()[item]
        raise AttributeError(item)

    def __str__(self) -> str:
        counts = ", ".join(f"{k}={v}" for k, v in self.snapshot().items())
        return f"SinkCounter[{self.name}]{{{counts}}}"
