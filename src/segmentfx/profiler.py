from __future__ import annotations
import time
from collections import deque
from contextlib import contextmanager

from .logging import get_logger

_profiler = None


def get_profiler():
    global _profiler
    if _profiler is None:
        _profiler = Profiler()
    return _profiler


class Profiler:
    """
    Wall-clock timings per pipeline stage.

    Keeps an exponential moving average, a window of the most recent samples
    (for the worst case, e.g. one slow prompt among hundreds) and call counts.
    """

    def __init__(self, ema_alpha=0.1, maxlen=100):
        self._recent = {}
        self._ema = {}
        self._counts = {}
        self.ema_alpha = ema_alpha
        self.maxlen = maxlen
        self.logger = get_logger("Profiler")

    @contextmanager
    def record(self, name: str):
        start_t = time.perf_counter()
        try:
            yield
        finally:
            dt = time.perf_counter() - start_t

            self._recent.setdefault(name, deque(maxlen=self.maxlen)).append(dt)
            self._counts[name] = self._counts.get(name, 0) + 1
            prev = self._ema.get(name)
            self._ema[name] = dt if prev is None else (
                self.ema_alpha * dt + (1.0 - self.ema_alpha) * prev
            )

    def get_timings(self):
        return self._ema.copy()

    def get_counts(self):
        return self._counts.copy()

    def get_worst(self):
        """Slowest sample per stage among the last ``maxlen`` calls."""
        return {k: max(v) for k, v in self._recent.items()}

    def reset(self):
        self._recent.clear()
        self._ema.clear()
        self._counts.clear()

    def log_stats(self):
        worst = self.get_worst()
        stats = []
        for k, v in sorted(self._ema.items()):
            stats.append(
                f"{k}: {v*1000:.2f}ms (max {worst[k]*1000:.2f}ms) x{self._counts[k]}"
            )
        self.logger.info(" | ".join(stats))
