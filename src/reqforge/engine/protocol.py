"""Types exchanged between the caller, the coordinator and its workers."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

if TYPE_CHECKING:
    from reqforge._internal.types import Headers

MIN_THREAD_COUNT = 1
MAX_THREAD_COUNT = 100
MIN_ITERATIONS = 1
MAX_ITERATIONS = 10_000
MAX_TOTAL_REQUESTS = 100_000
MAX_RAMP_UP_SECONDS = 60.0

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})


@dataclass(frozen=True)
class RequestTemplate:
    """The HTTP request every attempt of an execution sends.

    Attributes:
        method: HTTP method (GET, POST, etc.).
        url: Absolute http(s) URL.
        headers: Request headers. A read-only copy is kept, so later edits
            to the mapping passed in do not reach running workers.
        body: Optional request body.
        timeout: Per-request timeout in seconds.
        follow_redirects: Whether 3xx responses are followed.
    """

    method: str
    url: str
    headers: Headers = field(default_factory=dict)
    body: str | bytes | None = None
    timeout: float = 30.0
    follow_redirects: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def validate(self) -> list[str]:
        """Return every problem with this template (empty when valid)."""
        errors: list[str] = []
        if self.method.upper() not in HTTP_METHODS:
            errors.append(f"Unsupported HTTP method: {self.method!r}")

        if not self.url.strip():
            errors.append("URL must not be empty")
        else:
            parts = urlsplit(self.url)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                errors.append(f"URL must be an absolute http(s) URL (provided: {self.url})")

        if self.timeout <= 0:
            errors.append(f"Timeout must be positive (provided: {self.timeout})")
        return errors


@dataclass(frozen=True)
class ExecutionRequest:
    """A request template plus the load parameters of one execution.

    Attributes:
        template: The request every attempt sends.
        thread_count: Number of concurrent workers.
        iterations_per_thread: Sequential attempts made by each worker.
        ramp_up_seconds: Window over which worker start times are spread.
    """

    template: RequestTemplate
    thread_count: int = 1
    iterations_per_thread: int = 1
    ramp_up_seconds: float = 0.0

    @property
    def total_requests(self) -> int:
        """Return the number of attempts the execution plans to make."""
        return self.thread_count * self.iterations_per_thread

    def validate(self) -> list[str]:
        """Check the load limits and the template.

        Every violated rule is reported, not just the first one. The total
        request cap is only checked when both factors are individually in
        range.

        Returns:
            List of violation messages, empty when the request is valid.
        """
        errors: list[str] = []

        if self.thread_count < MIN_THREAD_COUNT:
            errors.append(f"Thread count must be at least {MIN_THREAD_COUNT}")
        elif self.thread_count > MAX_THREAD_COUNT:
            errors.append(
                f"Thread count cannot exceed {MAX_THREAD_COUNT} (provided: {self.thread_count})"
            )

        if self.iterations_per_thread < MIN_ITERATIONS:
            errors.append(f"Iterations must be at least {MIN_ITERATIONS}")
        elif self.iterations_per_thread > MAX_ITERATIONS:
            errors.append(
                f"Iterations cannot exceed {MAX_ITERATIONS} "
                f"(provided: {self.iterations_per_thread})"
            )

        threads_ok = MIN_THREAD_COUNT <= self.thread_count <= MAX_THREAD_COUNT
        iterations_ok = MIN_ITERATIONS <= self.iterations_per_thread <= MAX_ITERATIONS
        if threads_ok and iterations_ok and self.total_requests > MAX_TOTAL_REQUESTS:
            errors.append(
                f"Total requests (threadCount x iterations = {self.total_requests}) "
                f"exceeds maximum of {MAX_TOTAL_REQUESTS:,}"
            )

        if self.ramp_up_seconds < 0:
            errors.append(f"Ramp-up period cannot be negative (provided: {self.ramp_up_seconds})")
        elif self.ramp_up_seconds > MAX_RAMP_UP_SECONDS:
            errors.append(
                f"Ramp-up period cannot exceed {MAX_RAMP_UP_SECONDS:g} seconds "
                f"(provided: {self.ramp_up_seconds})"
            )

        errors.extend(self.template.validate())
        return errors


class ExecutionStatus(Enum):
    """Lifecycle state of one load execution."""

    PENDING = "pending"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True for states that never change again."""
        return self in _TERMINAL


_TERMINAL = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)

_ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.CANCELLING, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.CANCELLING, ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.CANCELLING: frozenset({ExecutionStatus.CANCELLED, ExecutionStatus.FAILED}),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.CANCELLED: frozenset(),
}


class ExecutionHandle:
    """Identity and status record of one load execution.

    State machine: PENDING -> RUNNING -> COMPLETED
                                      -> CANCELLING -> CANCELLED
                                      -> FAILED (from any non-terminal state)

    Transitions are monotonic: a terminal execution is never resurrected.

    Attributes:
        execution_id: Opaque identifier handed to callers.
        created_at: UTC timestamp of the ``start`` call.
    """

    def __init__(self, execution_id: str | None = None) -> None:
        self.execution_id = execution_id or uuid.uuid4().hex
        self.created_at = datetime.now(tz=UTC)
        self._status = ExecutionStatus.PENDING
        self._lock = threading.Lock()

    @property
    def status(self) -> ExecutionStatus:
        """Return the current status."""
        with self._lock:
            return self._status

    def transition_to(self, status: ExecutionStatus) -> bool:
        """Move to ``status`` if the state machine allows it.

        Args:
            status: Desired next status.

        Returns:
            True if the status changed, False if the transition is not allowed.
        """
        with self._lock:
            if status not in _ALLOWED_TRANSITIONS[self._status]:
                return False
            self._status = status
            return True

    def __repr__(self) -> str:
        return f"ExecutionHandle(execution_id={self.execution_id!r}, status={self.status.name})"


@dataclass(frozen=True)
class WorkerResult:
    """Summary a worker reports back to the coordinator when it exits.

    Attributes:
        worker_id: Identifier of the worker that produced this result.
        attempts: Requests the worker started (and recorded).
        failures: Attempts that ended with an error classification.
        stopped_early: Whether cancellation stopped the worker before it ran
            all of its iterations.
        success: Whether the worker exited without a fatal error.
        error_message: Fatal error description if the worker failed.
    """

    worker_id: int
    attempts: int
    failures: int
    stopped_early: bool = False
    success: bool = True
    error_message: str | None = None
