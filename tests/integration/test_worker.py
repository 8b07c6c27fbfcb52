"""Integration tests for a single worker thread."""

from __future__ import annotations

import threading
import time

import pytest

from reqforge.engine.cancellation import CancellationToken
from reqforge.engine.executor import AiohttpExecutor, ExecutorResponse
from reqforge.engine.protocol import ExecutionRequest, RequestTemplate
from reqforge.engine.worker import run_worker
from reqforge.metrics.models import ErrorCategory, SingleRequestResult


def _request(url: str = "http://127.0.0.1/", *, iterations: int = 5, timeout: float = 5.0):
    template = RequestTemplate(method="GET", url=url, timeout=timeout)
    return ExecutionRequest(template=template, thread_count=2, iterations_per_thread=iterations)


class _Sink:
    def __init__(self) -> None:
        self.results: list[SingleRequestResult] = []
        self._lock = threading.Lock()

    def __call__(self, result: SingleRequestResult) -> None:
        with self._lock:
            self.results.append(result)


class TestRunWorker:
    @pytest.mark.timeout(15)
    def test_runs_every_iteration(self, fake_executor):
        sink = _Sink()
        result = run_worker(
            1, _request(iterations=5), time.monotonic(), CancellationToken(), sink, fake_executor
        )

        assert result.success
        assert result.attempts == 5
        assert result.failures == 0
        assert not result.stopped_early
        assert [r.sequence for r in sink.results] == [5, 6, 7, 8, 9]
        assert [r.iteration for r in sink.results] == [0, 1, 2, 3, 4]
        assert all(r.worker_id == 1 for r in sink.results)
        assert all(r.elapsed_ms == 10.0 for r in sink.results)

    @pytest.mark.timeout(15)
    def test_failures_do_not_stop_the_worker(self, fake_executor):
        def _outcome(i: int) -> ExecutorResponse | BaseException:
            if i % 2:
                return ConnectionRefusedError(111, "refused")
            return ExecutorResponse(200, b"ok")

        sink = _Sink()
        result = run_worker(
            0,
            _request(iterations=6),
            time.monotonic(),
            CancellationToken(),
            sink,
            lambda: fake_executor(_outcome),
        )

        assert result.success
        assert result.attempts == 6
        assert result.failures == 3
        errors = [r.error for r in sink.results]
        assert errors.count(ErrorCategory.CONNECTION_REFUSED) == 3
        failed = next(r for r in sink.results if r.error is not None)
        assert failed.status_code is None
        assert failed.error_message == "ConnectionRefusedError: [Errno 111] refused"

    @pytest.mark.timeout(15)
    def test_measures_wall_time_when_executor_does_not(self, fake_executor):
        sink = _Sink()
        run_worker(
            0,
            _request(iterations=1),
            time.monotonic(),
            CancellationToken(),
            sink,
            lambda: fake_executor(lambda _i: ExecutorResponse(200, b"abc"), delay=0.05),
        )

        (result,) = sink.results
        assert result.elapsed_ms >= 40.0
        assert result.response_bytes == 3
        assert result.end_time >= result.start_time

    @pytest.mark.timeout(15)
    def test_template_timeout_bounds_each_request(self, fake_executor):
        sink = _Sink()
        result = run_worker(
            0,
            _request(iterations=2, timeout=0.1),
            time.monotonic(),
            CancellationToken(),
            sink,
            lambda: fake_executor(delay=5.0),
        )

        assert result.failures == 2
        assert all(r.error is ErrorCategory.TIMEOUT for r in sink.results)
        assert sink.results[0].error_message == "Request timed out after 0.1s"
        assert all(r.elapsed_ms < 1000.0 for r in sink.results)

    def test_cancelled_before_release(self, fake_executor):
        token = CancellationToken()
        token.cancel()
        sink = _Sink()

        result = run_worker(0, _request(), time.monotonic() + 60, token, sink, fake_executor)

        assert result.attempts == 0
        assert result.stopped_early
        assert sink.results == []

    @pytest.mark.timeout(15)
    def test_cancel_during_ramp_up_wait_returns_promptly(self, fake_executor):
        token = CancellationToken()
        threading.Timer(0.1, token.cancel).start()

        start = time.monotonic()
        result = run_worker(0, _request(), start + 30, token, _Sink(), fake_executor)

        assert result.stopped_early
        assert time.monotonic() - start < 5.0

    @pytest.mark.timeout(15)
    def test_waits_for_release_time(self, fake_executor):
        sink = _Sink()
        release_at = time.monotonic() + 0.2
        run_worker(0, _request(iterations=1), release_at, CancellationToken(), sink, fake_executor)
        assert sink.results[0].start_time >= release_at

    @pytest.mark.timeout(15)
    def test_cancel_stops_at_iteration_boundary(self, fake_executor):
        token = CancellationToken()

        def _outcome(i: int) -> ExecutorResponse:
            if i == 2:
                token.cancel()
            return ExecutorResponse(200, b"")

        sink = _Sink()
        result = run_worker(
            0,
            _request(iterations=10),
            time.monotonic(),
            token,
            sink,
            lambda: fake_executor(_outcome),
        )

        # The in-flight request completes and is recorded, nothing after it starts
        assert result.attempts == 3
        assert result.stopped_early
        assert len(sink.results) == 3

    def test_executor_factory_failure_is_fatal(self):
        def _factory():
            raise RuntimeError("no executor")

        result = run_worker(
            3, _request(), time.monotonic(), CancellationToken(), _Sink(), _factory
        )

        assert not result.success
        assert result.attempts == 0
        assert result.error_message == "RuntimeError: no executor"

    @pytest.mark.timeout(15)
    def test_executor_is_entered_and_exited(self, fake_executor):
        executors = []

        def _factory():
            executor = fake_executor()
            executors.append(executor)
            return executor

        run_worker(
            0, _request(iterations=2), time.monotonic(), CancellationToken(), _Sink(), _factory
        )

        (executor,) = executors
        assert executor.entered
        assert executor.exited
        assert executor.calls == 2

    @pytest.mark.timeout(30)
    def test_against_real_server(self, sync_echo_server: str):
        sink = _Sink()
        result = run_worker(
            0,
            _request(f"{sync_echo_server}/bytes?size=64", iterations=3),
            time.monotonic(),
            CancellationToken(),
            sink,
            AiohttpExecutor,
        )

        assert result.success
        assert result.attempts == 3
        assert [r.status_code for r in sink.results] == [200, 200, 200]
        assert all(r.response_bytes == 64 for r in sink.results)
