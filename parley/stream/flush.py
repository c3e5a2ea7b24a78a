"""Adaptive flush scheduling for streamed text commits.

Committing on every fragment makes the observer the bottleneck on
token-level streams. The scheduler batches: it commits when the buffer
reaches a size threshold or a time interval has elapsed, and widens both
as the response grows and as observed commit cost rises.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_INTERVAL_MS = 500.0
MAX_BUFFER_CHARS = 4096

# (cumulative chars upper bound, interval ms, buffer chars); last row is open-ended
BASE_STEPS: tuple[tuple[int | None, float, int], ...] = (
    (4_000, 50, 256),
    (16_000, 75, 384),
    (48_000, 110, 512),
    (96_000, 160, 768),
    (160_000, 220, 1_024),
    (260_000, 300, 1_536),
    (420_000, 380, 2_048),
    (None, 500, 3_072),
)

# (worst commit ms upper bound, multiplier)
BACKPRESSURE_STEPS: tuple[tuple[float | None, float], ...] = (
    (16, 1.0),
    (33, 1.25),
    (60, 1.5),
    (None, 2.0),
)


@dataclass(frozen=True)
class FlushTuning:
    """Current cadence. Recomputed on demand, never persisted."""

    interval_ms: float
    max_buffer_chars: int
    longest_commit_ms: float


def base_tuning(total_chars: int) -> tuple[float, int]:
    """Step function of cumulative output size -> (interval_ms, buffer chars)."""
    for bound, interval_ms, buffer_chars in BASE_STEPS:
        if bound is None or total_chars < bound:
            return interval_ms, buffer_chars
    raise AssertionError("BASE_STEPS must end with an open-ended row")


def backpressure_factor(longest_commit_ms: float) -> float:
    for bound, factor in BACKPRESSURE_STEPS:
        if bound is None or longest_commit_ms < bound:
            return factor
    raise AssertionError("BACKPRESSURE_STEPS must end with an open-ended row")


class FlushScheduler:
    """Per-session commit cadence.

    Tracks cumulative classified characters and the worst commit latency
    seen this session. ``clock`` returns seconds (monotonic).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._total_chars = 0
        self._longest_commit_ms = 0.0
        self._last_commit = clock()

    @property
    def total_chars(self) -> int:
        return self._total_chars

    @property
    def longest_commit_ms(self) -> float:
        return self._longest_commit_ms

    def tuning(self) -> FlushTuning:
        interval_ms, buffer_chars = base_tuning(self._total_chars)
        factor = backpressure_factor(self._longest_commit_ms)
        return FlushTuning(
            interval_ms=min(MAX_INTERVAL_MS, interval_ms * factor),
            max_buffer_chars=min(MAX_BUFFER_CHARS, int(buffer_chars * factor)),
            longest_commit_ms=self._longest_commit_ms,
        )

    def note_output(self, chars: int) -> None:
        """Count newly classified characters toward the cumulative total."""
        self._total_chars += chars

    def should_commit(self, buffered_chars: int, now: float | None = None) -> bool:
        """True once the buffer or the elapsed time reaches the current threshold."""
        if buffered_chars <= 0:
            return False
        now = self._clock() if now is None else now
        tuning = self.tuning()
        elapsed_ms = (now - self._last_commit) * 1000
        return buffered_chars >= tuning.max_buffer_chars or elapsed_ms >= tuning.interval_ms

    def record_commit(self, started: float, finished: float | None = None) -> float:
        """Record a commit that ran from ``started`` to ``finished``. Returns its ms."""
        finished = self._clock() if finished is None else finished
        duration_ms = max(0.0, (finished - started) * 1000)
        if duration_ms > self._longest_commit_ms:
            self._longest_commit_ms = duration_ms
            logger.debug("Slowest commit so far: %.1fms -> %s", duration_ms, self.tuning())
        self._last_commit = finished
        return duration_ms

    def now(self) -> float:
        return self._clock()
