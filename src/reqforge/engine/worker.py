"""Worker entry point: one OS thread, one event loop, one executor.

Each worker waits for its ramp-up release, then makes its iterations
sequentially, handing every attempt result to the coordinator's sink.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from reqforge._internal.logging import get_logger
from reqforge.engine.executor import classify_error, describe_error
from reqforge.engine.protocol import WorkerResult
from reqforge.metrics.models import SingleRequestResult

if TYPE_CHECKING:
    from reqforge._internal.types import ResultSink
    from reqforge.engine.cancellation import CancellationToken
    from reqforge.engine.executor import ExecutorFactory, RequestExecutor
    from reqforge.engine.protocol import ExecutionRequest, RequestTemplate

logger = get_logger("engine.worker")


@dataclass
class _Tally:
    attempts: int = 0
    failures: int = 0
    stopped_early: bool = False


def run_worker(
    worker_id: int,
    request: ExecutionRequest,
    release_at: float,
    token: CancellationToken,
    sink: ResultSink,
    executor_factory: ExecutorFactory,
) -> WorkerResult:
    """Run one worker to completion on the calling thread.

    Blocks on the cancellation token until ``release_at``, so a cancelled
    execution never starts its pending workers. Per-request failures are
    recorded and never stop the worker; anything else (executor creation,
    session setup, the sink raising) ends it with ``success=False``.

    Args:
        worker_id: Zero-based worker index.
        request: The execution being run.
        release_at: Monotonic time at which the first iteration may start.
        token: Cancellation token of the execution.
        sink: Receives every attempt result.
        executor_factory: Creates this worker's private executor.

    Returns:
        WorkerResult summarising what the worker did.
    """
    tally = _Tally()

    if token.wait(release_at - time.monotonic()):
        logger.debug("Worker %d: cancelled before release", worker_id)
        return WorkerResult(worker_id=worker_id, attempts=0, failures=0, stopped_early=True)

    try:
        asyncio.run(_run_iterations(worker_id, request, token, sink, executor_factory, tally))
    except Exception as exc:
        logger.exception("Worker %d: failed", worker_id)
        return WorkerResult(
            worker_id=worker_id,
            attempts=tally.attempts,
            failures=tally.failures,
            stopped_early=tally.attempts < request.iterations_per_thread,
            success=False,
            error_message=describe_error(exc),
        )

    logger.debug(
        "Worker %d: done (attempts=%d, failures=%d, stopped_early=%s)",
        worker_id,
        tally.attempts,
        tally.failures,
        tally.stopped_early,
    )
    return WorkerResult(
        worker_id=worker_id,
        attempts=tally.attempts,
        failures=tally.failures,
        stopped_early=tally.stopped_early,
    )


async def _run_iterations(
    worker_id: int,
    request: ExecutionRequest,
    token: CancellationToken,
    sink: ResultSink,
    executor_factory: ExecutorFactory,
    tally: _Tally,
) -> None:
    iterations = request.iterations_per_thread
    executor = executor_factory()

    async with executor:
        for iteration in range(iterations):
            if token.is_cancelled:
                tally.stopped_early = True
                break

            result = await _attempt(
                executor,
                request.template,
                worker_id=worker_id,
                iteration=iteration,
                sequence=worker_id * iterations + iteration,
            )
            sink(result)

            tally.attempts += 1
            if result.error is not None:
                tally.failures += 1


async def _attempt(
    executor: RequestExecutor,
    template: RequestTemplate,
    *,
    worker_id: int,
    iteration: int,
    sequence: int,
) -> SingleRequestResult:
    """Send the template once and turn the outcome into a result."""
    start = time.monotonic()
    try:
        response = await asyncio.wait_for(
            executor.send(template, template.timeout),
            timeout=template.timeout,
        )
    except Exception as exc:
        end = time.monotonic()
        if isinstance(exc, TimeoutError) and not str(exc):
            message = f"Request timed out after {template.timeout:g}s"
        else:
            message = describe_error(exc)
        return SingleRequestResult(
            worker_id=worker_id,
            iteration=iteration,
            sequence=sequence,
            start_time=start,
            end_time=end,
            elapsed_ms=(end - start) * 1000,
            error=classify_error(exc),
            error_message=message,
        )

    end = time.monotonic()
    elapsed_ms = response.elapsed_ms if response.elapsed_ms is not None else (end - start) * 1000
    return SingleRequestResult(
        worker_id=worker_id,
        iteration=iteration,
        sequence=sequence,
        start_time=start,
        end_time=end,
        elapsed_ms=elapsed_ms,
        status_code=response.status_code,
        response_bytes=len(response.body),
    )
