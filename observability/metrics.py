"""Lightweight in-process metrics helpers."""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Union


@dataclass
class _BaseMetric:
    name: str
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def snapshot(self) -> Union[float, Dict[str, float]]:
        with self._lock:
            return float(self._value)


class Counter(_BaseMetric):
    """Simple monotonically increasing counter."""

    def inc(self, amount: float = 1.0) -> None:
        if amount <= 0:
            return
        with self._lock:
            self._value += amount


class Gauge(_BaseMetric):
    """Gauge metric supporting set/add operations."""

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def add(self, amount: float) -> None:
        if amount == 0:
            return
        with self._lock:
            self._value += amount


@dataclass
class Timer(_BaseMetric):
    """Duration aggregate: number of observations, total and worst case."""

    _count: int = 0
    _max: float = 0.0

    def observe(self, seconds: float) -> None:
        value = max(0.0, float(seconds))
        with self._lock:
            self._count += 1
            self._value += value
            self._max = max(self._max, value)

    @contextmanager
    def time(self) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {
                "count": float(self._count),
                "total": round(self._value, 6),
                "max": round(self._max, 6),
            }


class MetricsRegistry:
    """Thread-safe registry storing metrics by name."""

    def __init__(self) -> None:
        self._metrics: Dict[str, _BaseMetric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, kind: type) -> _BaseMetric:
        with self._lock:
            metric = self._metrics.get(name)
            if isinstance(metric, kind):
                return metric
            created = kind(name=name)
            self._metrics[name] = created
            return created

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)  # type: ignore[return-value]

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)  # type: ignore[return-value]

    def timer(self, name: str) -> Timer:
        return self._get_or_create(name, Timer)  # type: ignore[return-value]

    def get(self, name: str) -> Optional[_BaseMetric]:
        return self._metrics.get(name)

    def snapshot(self) -> Dict[str, Union[float, Dict[str, float]]]:
        with self._lock:
            metrics = dict(self._metrics)
        return {name: metric.snapshot() for name, metric in metrics.items()}


_DEFAULT_REGISTRY = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    return _DEFAULT_REGISTRY


__all__ = [
    "Counter",
    "Gauge",
    "MetricsRegistry",
    "Timer",
    "get_registry",
]
