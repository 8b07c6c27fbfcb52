"""HDR histogram backing the live percentile in progress snapshots.

Final percentiles are computed exactly by the statistics engine; this
histogram only gives listeners a cheap running estimate while the workers
are still producing results.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# Range: 1 microsecond to 10 minutes (in microseconds)
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Millisecond-facing wrapper around ``hdrh``'s integer histogram.

    Values are stored as integer microseconds and clamped to the trackable
    range. Not thread-safe: callers hold their own lock.
    """

    def __init__(self, significant_digits: int = _SIGNIFICANT_DIGITS) -> None:
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, significant_digits
        )

    def record(self, latency_ms: float) -> None:
        value_us = int(latency_ms * 1000)
        value_us = max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        self._histogram.record_value(value_us)

    def percentile(self, percentile: float) -> float:
        """Return the value at ``percentile`` (0-100) in ms, 0.0 when empty."""
        if self._histogram.total_count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    @property
    def count(self) -> int:
        return int(self._histogram.total_count)
