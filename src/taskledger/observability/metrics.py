"""Lightweight in-process metrics registry."""

from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Any, Iterator


@dataclass
class Counter:
    value: float = 0.0


@dataclass
class Gauge:
    value: float = 0.0


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = value if self.minimum is None else min(self.minimum, value)
        self.maximum = value if self.maximum is None else max(self.maximum, value)

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": self.total / self.count if self.count else 0.0,
        }


class MetricsRegistry:
    """Thread-safe registry for ledger counters, gauges, and timings.

    Names are dotted, e.g. ``ledger.tasks.created`` or
    ``executor.dispatch.duration_ms``.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self.counters: dict[str, Counter] = {}
        self.gauges: dict[str, Gauge] = {}
        self.histograms: dict[str, Histogram] = {}

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self.counters.setdefault(name, Counter()).value += amount

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self.gauges.setdefault(name, Gauge()).value = value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self.histograms.setdefault(name, Histogram()).observe(value)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record the wall time of the wrapped block in milliseconds."""
        started = perf_counter()
        try:
            yield
        finally:
            self.observe(name, (perf_counter() - started) * 1000.0)

    def counter_value(self, name: str) -> float:
        with self._lock:
            counter = self.counters.get(name)
            return counter.value if counter else 0.0

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: c.value for name, c in self.counters.items()},
                "gauges": {name: g.value for name, g in self.gauges.items()},
                "histograms": {name: h.snapshot() for name, h in self.histograms.items()},
            }


metrics = MetricsRegistry()
