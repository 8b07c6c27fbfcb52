"""Result and statistics dataclasses for ReqForge."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from reqforge.engine.protocol import ExecutionStatus

__all__ = [
    "ConcurrentExecutionResult",
    "EnhancedConcurrentResult",
    "ErrorCategory",
    "ErrorStatistics",
    "ExecutionProgress",
    "ResponseTimePercentiles",
    "SingleRequestResult",
    "ThroughputStats",
]


class ErrorCategory(Enum):
    """Classification of a failed request attempt."""

    TIMEOUT = "Timeout"
    CONNECTION_REFUSED = "ConnectionRefused"
    DNS_RESOLUTION = "DnsResolution"
    TLS_HANDSHAKE = "TlsHandshake"
    RESPONSE_PARSE = "ResponseParse"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class SingleRequestResult:
    """Outcome of one request attempt, produced by exactly one worker.

    Attributes:
        worker_id: Worker that made the attempt.
        iteration: Zero-based iteration index within that worker.
        sequence: Execution-wide index (worker_id * iterations + iteration).
        start_time: Monotonic timestamp when the attempt started.
        end_time: Monotonic timestamp when the attempt finished.
        elapsed_ms: Response time in milliseconds.
        status_code: HTTP status code, None when the transport failed.
        response_bytes: Response body size in bytes.
        error: Failure classification, None for a successful attempt.
        error_message: Description of the failure, if any.
    """

    worker_id: int
    iteration: int
    sequence: int
    start_time: float
    end_time: float
    elapsed_ms: float
    status_code: int | None = None
    response_bytes: int = 0
    error: ErrorCategory | None = None
    error_message: str | None = None

    @property
    def is_success(self) -> bool:
        """Return True if the attempt produced an HTTP response."""
        return self.error is None


@dataclass(frozen=True)
class ExecutionProgress:
    """Point-in-time progress of one execution, handed to listeners.

    A new instance is built for every publication and never mutated after it
    has been handed out.

    Attributes:
        execution_id: Execution the snapshot belongs to.
        total_requests: Planned number of attempts.
        completed_requests: Attempts finished so far.
        successful_requests: Finished attempts without an error.
        failed_requests: Finished attempts with an error.
        average_response_time_ms: Running mean response time, None before the
            first result arrives.
        latency_p95_ms: Approximate running 95th percentile response time.
        elapsed_seconds: Seconds since the execution was registered.
        status: Execution status when the snapshot was taken.
        is_final: True for the single snapshot published at the end.
    """

    execution_id: str
    total_requests: int
    completed_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float | None = None
    latency_p95_ms: float = 0.0
    elapsed_seconds: float = 0.0
    status: ExecutionStatus | None = None
    is_final: bool = False

    @property
    def percent_complete(self) -> float:
        """Return completion as a percentage of the planned attempts."""
        if self.total_requests <= 0:
            return 0.0
        return self.completed_requests / self.total_requests * 100.0


@dataclass(frozen=True)
class ConcurrentExecutionResult:
    """Frozen fold of every attempt of a finished execution.

    Attributes:
        execution_id: Execution identifier.
        status: Terminal status of the execution.
        thread_count: Number of workers.
        iterations_per_thread: Planned attempts per worker.
        total_requests: Planned attempts (thread_count * iterations).
        completed_requests: Attempts actually made.
        successful_requests: Attempts without an error.
        failed_requests: Attempts with an error.
        start_time: Monotonic time the execution started.
        end_time: Monotonic time the last worker joined.
        started_at: Wall-clock time the execution was created.
        results: Every attempt, ordered by sequence.
        min_response_time_ms: Fastest attempt.
        avg_response_time_ms: Mean response time.
        max_response_time_ms: Slowest attempt.
    """

    execution_id: str
    status: ExecutionStatus
    thread_count: int
    iterations_per_thread: int
    total_requests: int
    completed_requests: int
    successful_requests: int
    failed_requests: int
    start_time: float
    end_time: float
    started_at: datetime
    results: tuple[SingleRequestResult, ...] = ()
    min_response_time_ms: float = 0.0
    avg_response_time_ms: float = 0.0
    max_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Return successful attempts as a percentage of completed ones."""
        if self.completed_requests <= 0:
            return 0.0
        return self.successful_requests / self.completed_requests * 100.0

    @property
    def failure_rate(self) -> float:
        """Return failed attempts as a percentage of completed ones."""
        if self.completed_requests <= 0:
            return 0.0
        return self.failed_requests / self.completed_requests * 100.0

    @property
    def total_duration_seconds(self) -> float:
        """Return the wall-clock duration of the execution."""
        return max(self.end_time - self.start_time, 0.0)

    def status_code_distribution(self) -> dict[int, int]:
        """Count responses per HTTP status code."""
        counts = Counter(r.status_code for r in self.results if r.status_code is not None)
        return dict(sorted(counts.items()))

    def validate(self) -> list[str]:
        """Return internal consistency problems (empty when consistent)."""
        errors: list[str] = []
        if self.completed_requests < 0:
            errors.append("Completed requests cannot be negative")
        if self.successful_requests < 0:
            errors.append("Successful requests cannot be negative")
        if self.failed_requests < 0:
            errors.append("Failed requests cannot be negative")
        if self.successful_requests + self.failed_requests != self.completed_requests:
            errors.append("Sum of successful and failed requests must equal completed requests")
        if self.completed_requests > self.total_requests:
            errors.append("Completed requests cannot exceed total requests")
        if self.thread_count < 1:
            errors.append("Thread count must be at least 1")
        if self.end_time < self.start_time:
            errors.append("End time cannot be before start time")
        return errors

    def summary(self) -> str:
        """Return a one-line summary."""
        return (
            f"Total: {self.completed_requests}/{self.total_requests} | "
            f"Success: {self.success_rate:.1f}% | "
            f"Avg Time: {self.avg_response_time_ms:.0f}ms"
        )


@dataclass(frozen=True)
class ResponseTimePercentiles:
    """Nearest-rank response time percentiles in milliseconds."""

    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0

    @property
    def median(self) -> float:
        return self.p50


@dataclass(frozen=True)
class ThroughputStats:
    """Throughput over the wall-clock span of the attempts.

    Attributes:
        requests_per_second: Completed attempts per second.
        bytes_per_second: Response bytes per second.
        total_bytes: Sum of response body sizes.
        average_response_size: Mean body size over attempts with a response.
    """

    requests_per_second: float = 0.0
    bytes_per_second: float = 0.0
    total_bytes: int = 0
    average_response_size: float = 0.0


@dataclass(frozen=True)
class ErrorStatistics:
    """Per-category failure counts with their share of all failures.

    Both mappings are read-only copies of the ones passed in.
    """

    total_errors: int
    breakdown: Mapping[ErrorCategory, int] = field(default_factory=dict)
    percentages: Mapping[ErrorCategory, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "breakdown", MappingProxyType(dict(self.breakdown)))
        object.__setattr__(self, "percentages", MappingProxyType(dict(self.percentages)))

    def most_common(self) -> ErrorCategory | None:
        """Return the category with the most failures, None without failures."""
        if not self.breakdown:
            return None
        return max(self.breakdown.items(), key=lambda item: item[1])[0]

    def summary(self) -> str:
        """Return a one-line description of the failures."""
        if self.total_errors == 0:
            return "No errors"
        parts = [
            f"{category.value}: {count} ({self.percentages.get(category, 0.0):.1f}%)"
            for category, count in sorted(
                self.breakdown.items(), key=lambda item: (-item[1], item[0].value)
            )
        ]
        return f"Total Errors: {self.total_errors} | " + ", ".join(parts)


@dataclass(frozen=True)
class EnhancedConcurrentResult:
    """Basic result enriched with percentiles, throughput and error taxonomy.

    Derived once per execution and read-only afterwards.

    Attributes:
        basic: The folded execution result.
        percentiles: p50/p95/p99 response times.
        throughput: Requests and bytes per second.
        error_breakdown: Failed attempts per category (non-zero entries only),
            kept as a read-only copy.
    """

    basic: ConcurrentExecutionResult
    percentiles: ResponseTimePercentiles = field(default_factory=ResponseTimePercentiles)
    throughput: ThroughputStats = field(default_factory=ThroughputStats)
    error_breakdown: Mapping[ErrorCategory, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "error_breakdown", MappingProxyType(dict(self.error_breakdown)))

    @property
    def execution_id(self) -> str:
        return self.basic.execution_id

    @property
    def status(self) -> ExecutionStatus:
        return self.basic.status

    @property
    def total_requests(self) -> int:
        return self.basic.total_requests

    @property
    def completed_requests(self) -> int:
        return self.basic.completed_requests

    @property
    def successful_requests(self) -> int:
        return self.basic.successful_requests

    @property
    def failed_requests(self) -> int:
        return self.basic.failed_requests

    @property
    def success_rate(self) -> float:
        return self.basic.success_rate

    @property
    def failure_rate(self) -> float:
        return self.basic.failure_rate

    @property
    def requests_per_second(self) -> float:
        return self.throughput.requests_per_second

    def error_statistics(self) -> ErrorStatistics:
        """Return failure counts with their percentage of all failures."""
        failed = self.basic.failed_requests
        percentages = {
            category: (count / failed * 100.0 if failed > 0 else 0.0)
            for category, count in self.error_breakdown.items()
        }
        return ErrorStatistics(
            total_errors=failed,
            breakdown=self.error_breakdown,
            percentages=percentages,
        )

    def summary(self) -> str:
        """Return a one-line summary including percentiles and throughput."""
        return (
            f"{self.basic.summary()} | RPS: {self.throughput.requests_per_second:.1f} | "
            f"P50: {self.percentiles.p50:.0f}ms | "
            f"P95: {self.percentiles.p95:.0f}ms | "
            f"P99: {self.percentiles.p99:.0f}ms"
        )
