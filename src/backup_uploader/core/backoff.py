"""Exponential backoff timetables with jitter."""

import logging
import random
import time
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


def calculate_backoff_series(
    initial: float,
    multiplier: float,
    max_retries: int,
    max_wait: float,
    max_total_wait: float,
    jitter_factor: float,
) -> List[float]:
    """Create a series of times to wait between retries of a fallible external service.

    All input and output times are in seconds.

    Args:
        initial: The first time in the series.
        multiplier: How much to multiply each time by to get the next one. Clamped to at least 1.
        max_retries: The maximum number of values in the series.
        max_wait: The maximum individual value. Once a calculated value exceeds this, it and
            every value after it are clamped to the maximum.
        max_total_wait: The maximum total of all values. If this would be exceeded the series
            ends, and the last value is cut so the total lands exactly on the maximum.
        jitter_factor: Multiplied by each value to get the most jitter that can be added to it.
            Should generally be less than 1.

    Returns:
        List of wait times, one per retry.

    Example:
        >>> calculate_backoff_series(1.0, 2.0, 10, 60.0, 100.0, 0.0)
        [1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 37.0]
    """
    initial = max(initial, 0.1)
    multiplier = max(multiplier, 1.0)
    max_wait = max(max_wait, 0.1)
    max_total_wait = max(max_total_wait, 0.1)
    jitter_factor = max(jitter_factor, 0.0)

    series: List[float] = []
    if max_retries < 1:
        return series
    current = float(initial)
    total = 0.0
    while True:
        next_total = total + current
        if next_total > max_total_wait:
            series.append(max_total_wait - total)
            break
        series.append(current)
        total = next_total
        if len(series) >= max_retries:
            break

        current *= multiplier
        current += current * jitter_factor * random.random()
        current = min(current, max_wait)
    return series


class BackoffTracker:
    """Walk a backoff series across consecutive failures of one long operation.

    Each failure moves one step further along the series. Running off the end of
    the series means give up. If enough time has passed since the last failure
    (the last wait plus ``cooloff_base``), the operation is considered healthy
    again and the walk restarts at the first step.
    """

    def __init__(
        self,
        series: Sequence[float],
        cooloff_base: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not series:
            raise ValueError("backoff series must not be empty")
        self.series = list(series)
        self.cooloff_base = cooloff_base
        self.clock = clock
        self._last: Optional[tuple] = None  # (index, when)

    @classmethod
    def rounded(cls, series: Sequence[float], **kwargs) -> "BackoffTracker":
        """Build a tracker from a series rounded to whole seconds."""
        return cls([float(round(s)) for s in series], **kwargs)

    def reset(self) -> None:
        self._last = None

    def next_wait(self) -> Optional[float]:
        """Return how long to wait before the next retry, or None to abort."""
        now = self.clock()
        if self._last is None:
            self._last = (0, now)
            return self.series[0]

        index, when = self._last
        if now - when > self.series[index] + self.cooloff_base:
            logger.debug("Backoff cool-off elapsed, restarting series")
            self._last = (0, now)
            return self.series[0]

        if index + 1 >= len(self.series):
            return None

        self._last = (index + 1, now)
        return self.series[index + 1]
