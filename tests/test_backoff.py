"""
Tests for backoff series generation.

Covers calculate_backoff_series() and the BackoffTracker policy built on it.
"""

import pytest

from backup_uploader.core.backoff import BackoffTracker, calculate_backoff_series


class TestCalculateBackoffSeries:
    """Tests for calculate_backoff_series()."""

    def test_full_doubling_under_caps(self):
        """Neither cap is reached: plain powers of two."""
        assert calculate_backoff_series(1, 2, 10, 600, 6000, 0) == [1, 2, 4, 8, 16, 32, 64, 128, 256, 512]

    def test_max_wait_clamps_values(self):
        """Values past max_wait are clamped, and later ones stay clamped."""
        assert calculate_backoff_series(1, 2, 10, 60, 600, 0) == [1, 2, 4, 8, 16, 32, 60, 60, 60, 60]

    def test_max_total_wait_truncates_last(self):
        """The series ends early, with the last value cut to hit the total exactly."""
        series = calculate_backoff_series(1, 2, 10, 60, 100, 0)
        assert series == [1, 2, 4, 8, 16, 32, 37]
        assert sum(series) == 100

    def test_jitter_within_bounds(self):
        """Full jitter lands between no jitter and doubling the multiplier."""
        low = sum(calculate_backoff_series(1, 2, 5, 1000, 10000, 0))
        high = sum([1, 4, 16, 64, 256])
        for _ in range(50):
            total = sum(calculate_backoff_series(1, 2, 5, 1000, 10000, 1.0))
            assert low <= total <= high

    def test_jitter_zero_deterministic(self):
        """Without jitter the series is the same every time."""
        first = calculate_backoff_series(0.5, 1.5, 10, 60, 600, 0)
        assert first == calculate_backoff_series(0.5, 1.5, 10, 60, 600, 0)

    def test_never_exceeds_limits(self):
        """Every value respects max_wait and the total respects max_total_wait."""
        for _ in range(20):
            series = calculate_backoff_series(0.5, 1.5, 10, 60, 600, 0.5)
            assert len(series) <= 10
            assert all(0 < s <= 60 for s in series)
            assert sum(series) <= 600 + 1e-9

    def test_inputs_clamped(self):
        """Nonsense inputs are clamped to usable minimums."""
        series = calculate_backoff_series(0, 0.5, 3, 0, 0, -1)
        assert series == pytest.approx([0.1, 0.0])

    def test_single_retry(self):
        """max_retries of one gives a single value."""
        assert calculate_backoff_series(2, 2, 1, 60, 600, 0) == [2]

    @pytest.mark.parametrize("max_retries", [0, -3])
    def test_no_retries_gives_empty_series(self, max_retries):
        assert calculate_backoff_series(1, 2, max_retries, 60, 600, 0) == []


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBackoffTracker:
    """Tests for BackoffTracker."""

    def test_walks_series_then_aborts(self):
        """Consecutive failures walk the series; running off the end means abort."""
        clock = FakeClock()
        tracker = BackoffTracker([1, 2, 4], clock=clock)
        assert tracker.next_wait() == 1
        assert tracker.next_wait() == 2
        assert tracker.next_wait() == 4
        assert tracker.next_wait() is None

    def test_cooloff_restarts_series(self):
        """After a quiet period longer than the last wait plus cool-off, start over."""
        clock = FakeClock()
        tracker = BackoffTracker([1, 2, 4], cooloff_base=300, clock=clock)
        tracker.next_wait()
        tracker.next_wait()
        clock.now += 2 + 300 + 1
        assert tracker.next_wait() == 1

    def test_within_cooloff_keeps_escalating(self):
        """Failures inside the cool-off window keep escalating."""
        clock = FakeClock()
        tracker = BackoffTracker([1, 2, 4], cooloff_base=300, clock=clock)
        tracker.next_wait()
        clock.now += 100
        assert tracker.next_wait() == 2

    def test_reset(self):
        """reset() forgets past failures."""
        tracker = BackoffTracker([1, 2], clock=FakeClock())
        tracker.next_wait()
        tracker.next_wait()
        tracker.reset()
        assert tracker.next_wait() == 1

    def test_rounded(self):
        """rounded() rounds the series to whole seconds."""
        tracker = BackoffTracker.rounded([1.4, 2.6])
        assert tracker.series == [1.0, 3.0]

    def test_empty_series_rejected(self):
        with pytest.raises(ValueError):
            BackoffTracker([])
