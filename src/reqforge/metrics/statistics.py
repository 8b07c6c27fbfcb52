"""Reduction of raw attempt results into execution statistics.

``reduce_results`` is a pure function. Results are canonicalised by their
sequence index before any fold, so the aggregates never depend on the order
in which workers happened to emit them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from reqforge.metrics.models import (
    ConcurrentExecutionResult,
    EnhancedConcurrentResult,
    ResponseTimePercentiles,
    ThroughputStats,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from reqforge.engine.protocol import ExecutionStatus
    from reqforge.metrics.models import ErrorCategory, SingleRequestResult


@dataclass(frozen=True)
class RunMetadata:
    """Execution facts the results themselves do not carry.

    Attributes:
        execution_id: Execution identifier.
        status: Terminal status of the execution.
        thread_count: Number of workers.
        iterations_per_thread: Planned attempts per worker.
        start_time: Monotonic time the execution started.
        end_time: Monotonic time the last worker joined.
        started_at: Wall-clock time the execution was created.
    """

    execution_id: str
    status: ExecutionStatus
    thread_count: int
    iterations_per_thread: int
    start_time: float
    end_time: float
    started_at: datetime

    @property
    def total_requests(self) -> int:
        return self.thread_count * self.iterations_per_thread


def nearest_rank(sorted_values: np.ndarray, percent: int) -> float:
    """Return the nearest-rank percentile of an ascending array.

    The value is taken at index ``ceil(percent / 100 * n) - 1`` clamped to
    ``[0, n - 1]``. Integer arithmetic keeps the rank exact.

    Args:
        sorted_values: Values sorted ascending.
        percent: Percentile as an integer between 0 and 100.

    Returns:
        The percentile value, or 0.0 for an empty array.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    rank = -(-percent * n // 100)
    index = min(max(rank - 1, 0), n - 1)
    return float(sorted_values[index])


def compute_percentiles(elapsed_ms: Iterable[float]) -> ResponseTimePercentiles:
    """Compute p50/p95/p99 over response times in milliseconds."""
    arr = np.sort(np.fromiter(elapsed_ms, dtype=np.float64))
    if arr.size == 0:
        return ResponseTimePercentiles()
    return ResponseTimePercentiles(
        p50=nearest_rank(arr, 50),
        p95=nearest_rank(arr, 95),
        p99=nearest_rank(arr, 99),
    )


def compute_throughput(results: list[SingleRequestResult]) -> ThroughputStats:
    """Compute request and byte throughput over the attempts' wall-clock span.

    The span runs from the earliest attempt start to the latest attempt
    completion, so ramp-up idle time before the first request is excluded.

    Args:
        results: Attempt results.

    Returns:
        Throughput figures, all zero when there is nothing to divide by.
    """
    if not results:
        return ThroughputStats()

    total_bytes = sum(r.response_bytes for r in results)
    responses = sum(1 for r in results if r.status_code is not None)
    span = max(r.end_time for r in results) - min(r.start_time for r in results)

    return ThroughputStats(
        requests_per_second=len(results) / span if span > 0 else 0.0,
        bytes_per_second=total_bytes / span if span > 0 else 0.0,
        total_bytes=total_bytes,
        average_response_size=total_bytes / responses if responses > 0 else 0.0,
    )


def classify_failures(results: list[SingleRequestResult]) -> dict[ErrorCategory, int]:
    """Count failed attempts per error category.

    Only categories that actually occurred are present, so the counts sum to
    the number of failed attempts.
    """
    counts = Counter(r.error for r in results if r.error is not None)
    return {category: counts[category] for category in sorted(counts, key=lambda c: c.value)}


def fold_results(
    results: Iterable[SingleRequestResult],
    meta: RunMetadata,
) -> ConcurrentExecutionResult:
    """Fold attempt results into a frozen ``ConcurrentExecutionResult``.

    Args:
        results: Attempt results in any order.
        meta: Execution facts.

    Returns:
        The basic execution result with min/avg/max response times.
    """
    ordered = sorted(results, key=lambda r: r.sequence)
    failed = sum(1 for r in ordered if r.error is not None)

    min_ms = avg_ms = max_ms = 0.0
    if ordered:
        arr = np.array([r.elapsed_ms for r in ordered], dtype=np.float64)
        min_ms = float(np.min(arr))
        avg_ms = float(np.mean(arr))
        max_ms = float(np.max(arr))

    return ConcurrentExecutionResult(
        execution_id=meta.execution_id,
        status=meta.status,
        thread_count=meta.thread_count,
        iterations_per_thread=meta.iterations_per_thread,
        total_requests=meta.total_requests,
        completed_requests=len(ordered),
        successful_requests=len(ordered) - failed,
        failed_requests=failed,
        start_time=meta.start_time,
        end_time=meta.end_time,
        started_at=meta.started_at,
        results=tuple(ordered),
        min_response_time_ms=min_ms,
        avg_response_time_ms=avg_ms,
        max_response_time_ms=max_ms,
    )


def reduce_results(
    results: Iterable[SingleRequestResult],
    meta: RunMetadata,
) -> EnhancedConcurrentResult:
    """Reduce every attempt of an execution into its enhanced statistics.

    Args:
        results: Attempt results in any order.
        meta: Execution facts.

    Returns:
        The enhanced result: basic fold, percentiles, throughput and error
        breakdown.
    """
    basic = fold_results(results, meta)
    ordered = list(basic.results)
    return EnhancedConcurrentResult(
        basic=basic,
        percentiles=compute_percentiles(r.elapsed_ms for r in ordered),
        throughput=compute_throughput(ordered),
        error_breakdown=classify_failures(ordered),
    )
