"""Live progress aggregation and listener fan-out.

The ``ProgressAggregator`` keeps running counters per execution and turns
them into ``ExecutionProgress`` snapshots. Snapshots reach listeners through
one bounded queue and one daemon dispatcher thread per listener, so worker
threads never run listener code and a slow listener never slows ingestion.
"""

from __future__ import annotations

import itertools
import queue
import threading
import time
from typing import TYPE_CHECKING

from reqforge._internal.errors import UnknownExecutionError
from reqforge._internal.logging import get_logger
from reqforge.metrics.histogram import LatencyHistogram
from reqforge.metrics.models import ExecutionProgress

if TYPE_CHECKING:
    from reqforge._internal.types import ProgressCallback
    from reqforge.engine.protocol import ExecutionStatus
    from reqforge.metrics.models import SingleRequestResult

logger = get_logger("metrics.aggregator")

_listener_ids = itertools.count(1)


class _ListenerChannel:
    """Bounded snapshot queue drained by a dedicated daemon thread.

    The dispatcher exits after delivering a final snapshot, or as soon as the
    channel is stopped. When the queue is full the oldest pending snapshot is
    dropped: snapshots are cumulative, so the newest one supersedes it.
    """

    def __init__(
        self,
        listener_id: int,
        execution_id: str,
        callback: ProgressCallback,
        queue_size: int,
    ) -> None:
        self.listener_id = listener_id
        self.execution_id = execution_id
        self._callback = callback
        self._queue: queue.Queue[ExecutionProgress | None] = queue.Queue(maxsize=queue_size)
        self._stopped = threading.Event()
        self.dropped = 0
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"reqforge-progress-{listener_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def offer(self, snapshot: ExecutionProgress) -> None:
        """Enqueue a snapshot, evicting the oldest pending one when full.

        Only called with the owning execution's lock held, so there is a
        single producer per channel.
        """
        while True:
            try:
                self._queue.put_nowait(snapshot)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    continue

    def stop(self) -> None:
        """Discard pending snapshots and end the dispatcher.

        A callback that is already running is allowed to finish.
        """
        self._stopped.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put_nowait(None)

    def join(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run_loop(self) -> None:
        while True:
            snapshot = self._queue.get()
            if snapshot is None or self._stopped.is_set():
                break
            try:
                self._callback(snapshot)
            except Exception:
                logger.warning(
                    "Progress listener %d raised for execution %s",
                    self.listener_id,
                    self.execution_id,
                    exc_info=True,
                )
            if snapshot.is_final:
                break
        if self.dropped:
            logger.debug(
                "Progress listener %d for execution %s skipped %d superseded snapshots",
                self.listener_id,
                self.execution_id,
                self.dropped,
            )


class _ExecutionState:
    """Counters, histogram and listeners of one execution."""

    def __init__(self, execution_id: str, total_requests: int) -> None:
        self.execution_id = execution_id
        self.total_requests = total_requests
        self.lock = threading.Lock()
        self.opened_at = time.monotonic()
        self.last_publish = float("-inf")

        self.completed = 0
        self.successful = 0
        self.failed = 0
        self.elapsed_sum_ms = 0.0
        self.histogram = LatencyHistogram()

        self.listeners: dict[int, _ListenerChannel] = {}
        self.final: ExecutionProgress | None = None

    def build_snapshot(
        self, status: ExecutionStatus | None = None, *, is_final: bool = False
    ) -> ExecutionProgress:
        average = self.elapsed_sum_ms / self.completed if self.completed > 0 else None
        return ExecutionProgress(
            execution_id=self.execution_id,
            total_requests=self.total_requests,
            completed_requests=self.completed,
            successful_requests=self.successful,
            failed_requests=self.failed,
            average_response_time_ms=average,
            latency_p95_ms=self.histogram.percentile(95.0),
            elapsed_seconds=time.monotonic() - self.opened_at,
            status=status,
            is_final=is_final,
        )


class ProgressAggregator:
    """Aggregates attempt results into throttled progress snapshots.

    Every execution has its own lock; ingestion for one execution never
    contends with another. The HTTP call itself is never made under a lock,
    only the counter update that follows it.

    Attributes:
        publish_interval: Minimum seconds between two non-final snapshots of
            the same execution. 0 publishes on every result.
        queue_size: Maximum pending snapshots per listener.
    """

    def __init__(self, *, publish_interval: float = 0.1, queue_size: int = 64) -> None:
        self.publish_interval = publish_interval
        self.queue_size = queue_size
        self._states: dict[str, _ExecutionState] = {}
        self._states_lock = threading.Lock()

    def open(self, execution_id: str, total_requests: int) -> None:
        """Start tracking an execution.

        Raises:
            ValueError: If the execution is already tracked.
        """
        with self._states_lock:
            if execution_id in self._states:
                msg = f"Execution {execution_id} is already tracked"
                raise ValueError(msg)
            self._states[execution_id] = _ExecutionState(execution_id, total_requests)

    def ingest(self, execution_id: str, result: SingleRequestResult) -> None:
        """Fold one attempt result into the running counters.

        Publishes a snapshot to every listener if the throttle window since
        the last publication has elapsed.

        Args:
            execution_id: Execution the result belongs to.
            result: The attempt outcome.

        Raises:
            UnknownExecutionError: If the execution is not tracked.
        """
        state = self._require(execution_id)
        with state.lock:
            if state.final is not None:
                logger.debug("Execution %s: result after final snapshot ignored", execution_id)
                return

            state.completed += 1
            if result.error is None:
                state.successful += 1
            else:
                state.failed += 1
            state.elapsed_sum_ms += result.elapsed_ms
            state.histogram.record(result.elapsed_ms)

            if not state.listeners:
                return
            now = time.monotonic()
            if now - state.last_publish < self.publish_interval:
                return
            state.last_publish = now
            snapshot = state.build_snapshot()
            for channel in state.listeners.values():
                channel.offer(snapshot)

    def add_listener(self, execution_id: str, callback: ProgressCallback) -> int:
        """Register a progress callback.

        A listener added after the execution finished receives the final
        snapshot once and nothing else.

        Args:
            execution_id: Execution to observe.
            callback: Called with each snapshot on the listener's own thread.

        Returns:
            Identifier to pass to ``remove_listener``.

        Raises:
            UnknownExecutionError: If the execution is not tracked.
        """
        state = self._require(execution_id)
        listener_id = next(_listener_ids)
        channel = _ListenerChannel(listener_id, execution_id, callback, self.queue_size)
        with state.lock:
            state.listeners[listener_id] = channel
            channel.start()
            if state.final is not None:
                channel.offer(state.final)
        logger.debug("Listener %d added to execution %s", listener_id, execution_id)
        return listener_id

    def remove_listener(self, execution_id: str, listener_id: int) -> bool:
        """Unregister a listener, dropping its undelivered snapshots.

        Returns:
            True if the listener was registered.
        """
        state = self._states.get(execution_id)
        if state is None:
            return False
        with state.lock:
            channel = state.listeners.pop(listener_id, None)
        if channel is None:
            return False
        channel.stop()
        logger.debug("Listener %d removed from execution %s", listener_id, execution_id)
        return True

    def finish(self, execution_id: str, status: ExecutionStatus) -> ExecutionProgress:
        """Publish the final snapshot of an execution.

        Calling it again returns the same snapshot without publishing twice.

        Raises:
            UnknownExecutionError: If the execution is not tracked.
        """
        state = self._require(execution_id)
        with state.lock:
            if state.final is None:
                state.final = state.build_snapshot(status, is_final=True)
                for channel in state.listeners.values():
                    channel.offer(state.final)
            return state.final

    def snapshot(self, execution_id: str) -> ExecutionProgress:
        """Return the current progress without publishing it.

        Raises:
            UnknownExecutionError: If the execution is not tracked.
        """
        state = self._require(execution_id)
        with state.lock:
            if state.final is not None:
                return state.final
            return state.build_snapshot()

    def join_listeners(self, execution_id: str, timeout: float | None = None) -> bool:
        """Wait until every listener of a finished execution got the final snapshot.

        Args:
            execution_id: Execution whose dispatchers to join.
            timeout: Maximum seconds to wait per listener.

        Returns:
            True if every dispatcher thread has exited.
        """
        state = self._states.get(execution_id)
        if state is None:
            return True
        with state.lock:
            channels = list(state.listeners.values())
        return all([channel.join(timeout) for channel in channels])

    def close(self, execution_id: str) -> None:
        """Stop tracking an execution and stop its remaining dispatchers."""
        with self._states_lock:
            state = self._states.pop(execution_id, None)
        if state is None:
            return
        with state.lock:
            channels = list(state.listeners.values())
            state.listeners.clear()
            finished = state.final is not None
        if not finished:
            for channel in channels:
                channel.stop()

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._states

    def _require(self, execution_id: str) -> _ExecutionState:
        state = self._states.get(execution_id)
        if state is None:
            raise UnknownExecutionError(execution_id)
        return state
