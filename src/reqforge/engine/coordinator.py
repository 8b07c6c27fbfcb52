"""Execution coordinator: lifecycle, worker pool supervision and results."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from reqforge._internal.config import ReqForgeConfig
from reqforge._internal.errors import (
    EngineError,
    ExecutionNotFinishedError,
    UnknownExecutionError,
    ValidationError,
)
from reqforge._internal.logging import get_logger
from reqforge.engine.cancellation import CancellationRegistry
from reqforge.engine.executor import AiohttpExecutor
from reqforge.engine.protocol import ExecutionHandle, ExecutionStatus, WorkerResult
from reqforge.engine.scheduler import RampUpScheduler
from reqforge.engine.worker import run_worker
from reqforge.metrics.aggregator import ProgressAggregator
from reqforge.metrics.collector import ResultCollector
from reqforge.metrics.statistics import RunMetadata, reduce_results

if TYPE_CHECKING:
    from reqforge._internal.types import ProgressCallback, ResultSink
    from reqforge.engine.cancellation import CancellationToken
    from reqforge.engine.executor import ExecutorFactory
    from reqforge.engine.protocol import ExecutionRequest
    from reqforge.metrics.models import EnhancedConcurrentResult, SingleRequestResult

logger = get_logger("engine.coordinator")

_CANCELLED_BY_CALLER = "cancelled by caller"


@dataclass
class _Execution:
    """Everything the coordinator tracks for one execution."""

    handle: ExecutionHandle
    request: ExecutionRequest
    token: CancellationToken
    collector: ResultCollector = field(default_factory=ResultCollector)
    lock: threading.Lock = field(default_factory=threading.Lock)
    done: threading.Event = field(default_factory=threading.Event)
    worker_results: list[WorkerResult] = field(default_factory=list)
    cancel_requested: bool = False
    fatal_error: str | None = None
    supervisor: threading.Thread | None = None
    result: EnhancedConcurrentResult | None = None

    @property
    def execution_id(self) -> str:
        return self.handle.execution_id


class ExecutionCoordinator:
    """Runs load executions on a pool of worker threads.

    Each execution gets a supervisor thread that releases one worker thread
    per ``thread_count`` according to the ramp-up schedule, waits for all of
    them, reduces the collected results and records the terminal status.
    Several executions may run at the same time; they share nothing but the
    coordinator's bookkeeping.

    Attributes:
        config: Engine configuration.
    """

    def __init__(
        self,
        executor_factory: ExecutorFactory | None = None,
        *,
        config: ReqForgeConfig | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            executor_factory: Creates one request executor per worker.
                Defaults to ``AiohttpExecutor``.
            config: Engine configuration, defaults to ``ReqForgeConfig()``.
        """
        self.config = config or ReqForgeConfig()
        self._executor_factory: ExecutorFactory = executor_factory or AiohttpExecutor
        self._registry = CancellationRegistry()
        self._aggregator = ProgressAggregator(
            publish_interval=self.config.progress_interval,
            queue_size=self.config.listener_queue_size,
        )
        self._executions: dict[str, _Execution] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def aggregator(self) -> ProgressAggregator:
        """Return the progress aggregator shared by all executions."""
        return self._aggregator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, request: ExecutionRequest) -> str:
        """Validate a request and start executing it in the background.

        Args:
            request: Template and load parameters.

        Returns:
            The id of the new execution.

        Raises:
            ValidationError: If the request breaks one or more load limits.
                Nothing is started in that case.
            EngineError: If the coordinator is shut down or the supervisor
                thread cannot be started.
        """
        violations = request.validate()
        if violations:
            raise ValidationError(violations)
        if self._closed:
            msg = "Coordinator has been shut down"
            raise EngineError(msg)

        handle = ExecutionHandle()
        execution_id = handle.execution_id
        token = self._registry.create(execution_id)
        self._aggregator.open(execution_id, request.total_requests)

        run = _Execution(handle=handle, request=request, token=token)
        with self._lock:
            self._executions[execution_id] = run

        run.supervisor = threading.Thread(
            target=self._supervise,
            args=(run,),
            name=f"reqforge-supervisor-{execution_id[:8]}",
            daemon=True,
        )
        try:
            run.supervisor.start()
        except RuntimeError as exc:
            run.fatal_error = f"Could not start supervisor: {exc}"
            self._finalize(run, time.monotonic(), time.monotonic())
            msg = f"Execution {execution_id} could not be started: {exc}"
            raise EngineError(msg) from exc

        logger.info(
            "Execution %s started: %s %s, threads=%d, iterations=%d, ramp_up=%.1fs",
            execution_id,
            request.template.method.upper(),
            request.template.url,
            request.thread_count,
            request.iterations_per_thread,
            request.ramp_up_seconds,
        )
        return execution_id

    def cancel(self, execution_id: str) -> bool:
        """Request cooperative cancellation of an execution.

        Workers stop at their next iteration boundary; requests already in
        flight end through their own timeout.

        Returns:
            True if the execution is now cancelling, False if it is unknown
            or already terminal.
        """
        with self._lock:
            run = self._executions.get(execution_id)
        if run is None:
            return False

        with run.lock:
            status = run.handle.status
            if status.is_terminal:
                return False
            if status is ExecutionStatus.CANCELLING:
                return True
            run.cancel_requested = True
            run.handle.transition_to(ExecutionStatus.CANCELLING)
            self._registry.cancel(execution_id, _CANCELLED_BY_CALLER)

        logger.info("Execution %s: cancellation requested", execution_id)
        return True

    def wait(self, execution_id: str, timeout: float | None = None) -> bool:
        """Block until an execution is terminal.

        Returns:
            True if the execution finished within ``timeout``.

        Raises:
            UnknownExecutionError: If the execution id is not known.
        """
        return self._require(execution_id).done.wait(timeout)

    def run(
        self, request: ExecutionRequest, *, progress: ProgressCallback | None = None
    ) -> EnhancedConcurrentResult:
        """Start an execution and block until its result is available.

        Args:
            request: Template and load parameters.
            progress: Optional progress listener attached before any result
                is ingested.

        Returns:
            The enhanced result of the finished execution.
        """
        execution_id = self.start(request)
        if progress is not None:
            self.add_progress_listener(execution_id, progress)
        self.wait(execution_id)
        return self.get_result(execution_id)

    def discard(self, execution_id: str) -> None:
        """Forget a terminal execution and release its progress state.

        Raises:
            UnknownExecutionError: If the execution id is not known.
            ExecutionNotFinishedError: If the execution is still running.
        """
        run = self._require(execution_id)
        if not run.done.is_set():
            msg = f"Execution {execution_id} is still {run.handle.status.value}"
            raise ExecutionNotFinishedError(msg)
        with self._lock:
            self._executions.pop(execution_id, None)
        self._aggregator.close(execution_id)

    def shutdown(self, timeout: float | None = None) -> bool:
        """Cancel every active execution and wait for their supervisors.

        Args:
            timeout: Seconds to wait per supervisor, defaults to
                ``config.join_timeout``.

        Returns:
            True if every execution reached a terminal state in time.
        """
        self._closed = True
        join_timeout = self.config.join_timeout if timeout is None else timeout
        for execution_id in self.active_executions():
            self.cancel(execution_id)

        with self._lock:
            runs = list(self._executions.values())

        all_done = True
        for run in runs:
            if not run.done.wait(join_timeout):
                logger.warning(
                    "Execution %s did not finish within %.1fs", run.execution_id, join_timeout
                )
                all_done = False
        return all_done

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, execution_id: str) -> ExecutionStatus:
        """Return the current status of an execution.

        Raises:
            UnknownExecutionError: If the execution id is not known.
        """
        return self._require(execution_id).handle.status

    def handle(self, execution_id: str) -> ExecutionHandle:
        """Return the handle of an execution.

        Raises:
            UnknownExecutionError: If the execution id is not known.
        """
        return self._require(execution_id).handle

    def get_result(self, execution_id: str) -> EnhancedConcurrentResult:
        """Return the frozen result of a terminal execution.

        Repeated calls return the same object.

        Raises:
            UnknownExecutionError: If the execution id is not known.
            ExecutionNotFinishedError: If the execution is not terminal yet.
        """
        run = self._require(execution_id)
        with run.lock:
            status = run.handle.status
            result = run.result
        if not status.is_terminal or result is None:
            msg = f"Execution {execution_id} is still {status.value}"
            raise ExecutionNotFinishedError(msg)
        return result

    def active_executions(self) -> list[str]:
        """Return the ids of executions that are not terminal yet."""
        with self._lock:
            runs = list(self._executions.values())
        return [run.execution_id for run in runs if not run.handle.status.is_terminal]

    def add_progress_listener(self, execution_id: str, callback: ProgressCallback) -> int:
        """Register a callback for progress snapshots of an execution.

        Callbacks run on a dedicated thread per listener. Every listener gets
        the final snapshot exactly once, even when added after the execution
        finished.

        Returns:
            Listener id for ``remove_progress_listener``.

        Raises:
            UnknownExecutionError: If the execution id is not known.
        """
        self._require(execution_id)
        return self._aggregator.add_listener(execution_id, callback)

    def remove_progress_listener(self, execution_id: str, listener_id: int) -> bool:
        """Unregister a progress listener.

        Returns:
            True if the listener was registered.
        """
        return self._aggregator.remove_listener(execution_id, listener_id)

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def _supervise(self, run: _Execution) -> None:
        """Run the worker pool of one execution to completion."""
        start_time = time.monotonic()
        end_time = start_time
        try:
            run.handle.transition_to(ExecutionStatus.RUNNING)
            self._run_pool(run, start_time)
            end_time = time.monotonic()
        except Exception as exc:
            end_time = time.monotonic()
            logger.exception("Execution %s: supervisor failed", run.execution_id)
            run.fatal_error = f"Supervisor failed: {exc}"
            run.token.cancel(run.fatal_error)
        finally:
            self._finalize(run, start_time, end_time)

    def _run_pool(self, run: _Execution, start_time: float) -> None:
        """Start every worker thread on schedule and join them all."""
        request = run.request

        def sink(result: SingleRequestResult) -> None:
            run.collector.record(result)
            self._aggregator.ingest(run.execution_id, result)

        scheduler = RampUpScheduler(request.thread_count, request.ramp_up_seconds)
        threads: list[threading.Thread] = []
        for command in scheduler.iter_releases():
            thread = threading.Thread(
                target=self._worker_main,
                args=(run, command.worker_id, start_time + command.offset_seconds, sink),
                name=f"reqforge-{run.execution_id[:8]}-worker-{command.worker_id}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                run.fatal_error = f"Could not start worker {command.worker_id}: {exc}"
                logger.error("Execution %s: %s", run.execution_id, run.fatal_error)
                run.token.cancel(run.fatal_error)
                break
            threads.append(thread)

        logger.debug(
            "Execution %s: %d workers started (delay per worker %.3fs)",
            run.execution_id,
            len(threads),
            scheduler.delay_per_worker,
        )
        for thread in threads:
            thread.join()

    def _worker_main(
        self,
        run: _Execution,
        worker_id: int,
        release_at: float,
        sink: ResultSink,
    ) -> None:
        result = run_worker(
            worker_id,
            run.request,
            release_at,
            run.token,
            sink,
            self._executor_factory,
        )
        run.worker_results.append(result)
        if not result.success:
            if run.fatal_error is None:
                run.fatal_error = f"Worker {worker_id} failed: {result.error_message}"
            run.token.cancel(f"worker {worker_id} failed")

    def _finalize(self, run: _Execution, start_time: float, end_time: float) -> None:
        """Reduce results, publish the final snapshot and set the terminal status."""
        execution_id = run.execution_id
        results = run.collector.drain()

        with run.lock:
            if run.cancel_requested:
                status = ExecutionStatus.CANCELLED
            elif run.fatal_error is not None:
                status = ExecutionStatus.FAILED
            else:
                status = ExecutionStatus.COMPLETED

            meta = RunMetadata(
                execution_id=execution_id,
                status=status,
                thread_count=run.request.thread_count,
                iterations_per_thread=run.request.iterations_per_thread,
                start_time=start_time,
                end_time=end_time,
                started_at=run.handle.created_at,
            )
            run.result = reduce_results(results, meta)
            self._aggregator.finish(execution_id, status)
            self._registry.clear(execution_id)
            if not run.handle.transition_to(status):
                logger.error(
                    "Execution %s: invalid transition %s -> %s",
                    execution_id,
                    run.handle.status.name,
                    status.name,
                )
        run.done.set()

        if status is ExecutionStatus.FAILED:
            logger.error("Execution %s failed: %s", execution_id, run.fatal_error)
        logger.info("Execution %s %s: %s", execution_id, status.value, run.result.summary())

    def _require(self, execution_id: str) -> _Execution:
        with self._lock:
            run = self._executions.get(execution_id)
        if run is None:
            raise UnknownExecutionError(execution_id)
        return run
