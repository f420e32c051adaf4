# kafka_to_opensearch/metrics.py
import logging
import math
import threading
import time
from typing import List, Optional

log = logging.getLogger(__name__)


def _percentile(sorted_samples: List[float], perc: float) -> float:
    if not sorted_samples:
        return 0.0
    idx = max(int(math.ceil(len(sorted_samples) * perc)) - 1, 0)
    return sorted_samples[idx]


class TimerMetrics:
    """Latency samples for one publisher.

    Every `status_every` samples an aggregate line is logged and the window
    starts over. `status_every=0` keeps counting but never logs.
    """

    def __init__(self, status_every: int, prefix: str = "[metrics]:"):
        self.status_every = status_every
        self.prefix = prefix
        self.count = 0
        self._window: List[float] = []
        self._window_started = time.monotonic()
        self._lock = threading.Lock()

    def status(self, start_time: float, now: Optional[float] = None) -> None:
        """Record the time elapsed since `start_time` (a time.monotonic() value)."""
        end = time.monotonic() if now is None else now
        self.record(end - start_time)

    def record(self, seconds: float) -> None:
        with self._lock:
            self.count += 1
            if self.status_every <= 0:
                return
            self._window.append(seconds)
            if len(self._window) < self.status_every:
                return
            window, self._window = self._window, []
            now = time.monotonic()
            elapsed, self._window_started = now - self._window_started, now
            total = self.count
        self._emit(window, total, elapsed)

    def _emit(self, window: List[float], total: int, elapsed: float) -> None:
        ordered = sorted(window)
        avg = sum(ordered) / len(ordered)
        rate = len(ordered) / elapsed if elapsed > 0 else 0.0
        p99 = _percentile(ordered, 0.99) * 1000
        p95 = _percentile(ordered, 0.95) * 1000
        log.info(
            f"{self.prefix} finished {total} - 99th: {p99:.02f}ms - 95th: {p95:.02f}ms - "
            f"avg: {avg * 1000:.02f}ms - rate: {rate:.01f}/s"
        )
