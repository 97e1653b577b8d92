"""
Discovery Metrics

Counters, gauges and timers kept by one engine and its transport. Series are
identified by a name plus an optional label set (``format=native``); the
rendered key ``name|k=v,...`` is what the stats snapshot exposes.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Mapping, Optional, Tuple, Union


logger = logging.getLogger(__name__)

Labels = Optional[Mapping[str, str]]
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]

_PERCENTILES = {"p50": 0.5, "p90": 0.9, "p99": 0.99}


def _series(name: str, labels: Labels) -> SeriesKey:
    return name, tuple(sorted((labels or {}).items()))


def _render(key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return name
    return name + "|" + ",".join(f"{k}={v}" for k, v in labels)


class MetricsCollector:
    """
    Lock-protected metric store.

    The engine updates it from the event loop while ``stats()`` may be read
    from any thread, so every access goes through one re-entrant lock.
    """

    def __init__(self, max_history: int = 1000):
        """
        Args:
            max_history: Timer samples retained per series; older ones drop off.
        """
        self._lock = threading.RLock()
        self._max_history = max_history
        self._counters: Counter = Counter()
        self._gauges: Dict[SeriesKey, Union[int, float]] = {}
        self._timers: Dict[SeriesKey, Deque[float]] = {}
        self._created = datetime.now()

    # Updates

    def increment_counter(self, name: str, value: int = 1, labels: Labels = None) -> None:
        """Add ``value`` to a counter series."""
        with self._lock:
            self._counters[_series(name, labels)] += value

    def set_gauge(self, name: str, value: Union[int, float], labels: Labels = None) -> None:
        with self._lock:
            self._gauges[_series(name, labels)] = value

    def record_timer(self, name: str, duration: float, labels: Labels = None) -> None:
        """Append one duration, in seconds, to a timer series."""
        key = _series(name, labels)
        with self._lock:
            samples = self._timers.get(key)
            if samples is None:
                samples = self._timers[key] = deque(maxlen=self._max_history)
            samples.append(duration)

    def start_timer(self, name: str, labels: Labels = None) -> "Timer":
        """Return a context manager that records the duration of its block."""
        return Timer(self, name, labels)

    # Reads

    def get_counter(self, name: str, labels: Labels = None) -> int:
        with self._lock:
            return self._counters.get(_series(name, labels), 0)

    def get_counter_total(self, name: str) -> int:
        """Sum a counter over every label set it was recorded with."""
        with self._lock:
            return sum(value for (series, _), value in self._counters.items() if series == name)

    def get_gauge(self, name: str, labels: Labels = None) -> Optional[Union[int, float]]:
        with self._lock:
            return self._gauges.get(_series(name, labels))

    def get_timer_stats(self, name: str, labels: Labels = None) -> Dict[str, float]:
        """
        Summarise a timer series.

        Returns:
            ``count``, ``min``, ``max``, ``mean`` and nearest-rank
            percentiles, or an empty dict for a series with no samples.
        """
        with self._lock:
            samples = sorted(self._timers.get(_series(name, labels), ()))
        return self._summarise(samples)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Snapshot of every series, keyed by rendered series name."""
        with self._lock:
            timers = {key: sorted(samples) for key, samples in self._timers.items()}
            return {
                "uptime_seconds": (datetime.now() - self._created).total_seconds(),
                "counters": {_render(key): value for key, value in self._counters.items()},
                "gauges": {_render(key): value for key, value in self._gauges.items()},
                "timers": {_render(key): self._summarise(samples) for key, samples in timers.items()},
            }

    def reset_metrics(self) -> None:
        """Drop every series and restart the uptime clock."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._timers.clear()
            self._created = datetime.now()
        logger.debug("Discovery metrics reset")

    @staticmethod
    def _summarise(samples) -> Dict[str, float]:
        if not samples:
            return {}

        count = len(samples)
        stats = {
            "count": count,
            "min": samples[0],
            "max": samples[-1],
            "mean": sum(samples) / count,
        }
        for label, fraction in _PERCENTILES.items():
            stats[label] = samples[int(count * fraction)]
        return stats


@dataclass
class Timer:
    """Measures a block with ``time.perf_counter`` and records it on exit."""

    collector: MetricsCollector
    name: str
    labels: Labels = None
    started: Optional[float] = field(default=None, init=False)

    def __enter__(self) -> "Timer":
        self.started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.started is None:
            return
        self.collector.record_timer(self.name, time.perf_counter() - self.started, self.labels)
