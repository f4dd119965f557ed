from __future__ import annotations

import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator

LOG = logging.getLogger(__name__)


@dataclass
class TimingStats:
    name: str
    total_time: float = 0.0
    count: int = 0
    last: float = 0.0

    def add_measurement(self, seconds: float) -> None:
        self.total_time += float(seconds)
        self.count += 1
        self.last = float(seconds)
        LOG.debug(
            "%s - Current: %.2fms, Avg: %.2fms, Count: %d",
            self.name,
            seconds * 1000.0,
            self.average_ms(),
            self.count,
        )

    def average_ms(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_time * 1000.0 / self.count

    def reset(self) -> None:
        self.total_time = 0.0
        self.count = 0
        self.last = 0.0


@contextlib.contextmanager
def scoped(stats: TimingStats) -> Iterator[TimingStats]:
    start = time.perf_counter()
    try:
        yield stats
    finally:
        stats.add_measurement(time.perf_counter() - start)


@dataclass
class FrameRateTracker:
    """Render rate over a sliding window of recent frame timestamps."""

    window_s: float = 1.0
    max_samples: int = 240
    _stamps: deque[float] = field(default_factory=deque, repr=False)

    def record(self, now: float | None = None) -> None:
        stamp = time.monotonic() if now is None else float(now)
        self._stamps.append(stamp)
        while len(self._stamps) > self.max_samples:
            self._stamps.popleft()
        while self._stamps and stamp - self._stamps[0] > self.window_s:
            self._stamps.popleft()

    def fps(self) -> float:
        if len(self._stamps) < 2:
            return 0.0
        span = self._stamps[-1] - self._stamps[0]
        if span <= 0:
            return 0.0
        return (len(self._stamps) - 1) / span

    def reset(self) -> None:
        self._stamps.clear()


@dataclass
class NavigationTiming:
    """Timing state owned by a single navigator."""

    update: TimingStats = field(default_factory=lambda: TimingStats("Update"))
    render: TimingStats = field(default_factory=lambda: TimingStats("Render commit"))
    decode: TimingStats = field(default_factory=lambda: TimingStats("Upload"))
    frame_rate: FrameRateTracker = field(default_factory=FrameRateTracker)
