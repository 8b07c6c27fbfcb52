"""Shared test fixtures for the ReqForge test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from reqforge.engine.executor import ExecutorResponse
from reqforge.metrics.models import ErrorCategory, SingleRequestResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from reqforge.engine.protocol import RequestTemplate


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


@pytest.fixture
def closed_port_url() -> str:
    """URL of a localhost port nothing listens on."""
    return f"http://127.0.0.1:{_get_free_port()}/"


# =============================================================================
# Echo HTTP Server handlers
# =============================================================================


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


async def _bytes_handler(request: web.Request) -> web.Response:
    """Return a body of exactly ``?size=N`` bytes."""
    size = int(request.query.get("size", "100"))
    return web.Response(body=b"x" * size, content_type="application/octet-stream")


async def _redirect_handler(request: web.Request) -> web.Response:
    """Redirect to /health."""
    raise web.HTTPFound("/health")


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok"})


def _create_echo_app() -> web.Application:
    """Build the echo server app with all test routes."""
    app = web.Application()
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/error", _error_handler)
    app.router.add_get("/bytes", _bytes_handler)
    app.router.add_get("/redirect", _redirect_handler)
    app.router.add_get("/health", _health_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def echo_server() -> AsyncIterator[str]:
    """Aiohttp echo server fixture.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_echo_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_echo_server() -> Iterator[str]:
    """Echo server running in a background thread for sync tests.

    The coordinator blocks the calling thread and runs its own event loops
    on worker threads, so engine tests need a server that lives elsewhere.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        app = _create_echo_app()
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


# =============================================================================
# Fake executors and result builders
# =============================================================================


class FakeExecutor:
    """Scriptable in-memory executor.

    ``outcome`` is called with the zero-based call index and returns either
    an ExecutorResponse or an exception instance to raise.
    """

    def __init__(
        self,
        outcome: Callable[[int], ExecutorResponse | BaseException] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        self._outcome = outcome or (lambda _i: ExecutorResponse(200, b"ok", elapsed_ms=10.0))
        self._delay = delay
        self.calls = 0
        self.entered = False
        self.exited = False

    async def __aenter__(self) -> FakeExecutor:
        self.entered = True
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.exited = True

    async def send(self, template: RequestTemplate, timeout: float) -> ExecutorResponse:
        index = self.calls
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        outcome = self._outcome(index)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_result(
    sequence: int = 0,
    *,
    elapsed_ms: float = 10.0,
    status_code: int | None = 200,
    error: ErrorCategory | None = None,
    response_bytes: int = 100,
    start_time: float | None = None,
    worker_id: int = 0,
) -> SingleRequestResult:
    """Build a SingleRequestResult with sensible defaults."""
    start = time.monotonic() if start_time is None else start_time
    return SingleRequestResult(
        worker_id=worker_id,
        iteration=sequence,
        sequence=sequence,
        start_time=start,
        end_time=start + elapsed_ms / 1000,
        elapsed_ms=elapsed_ms,
        status_code=None if error is not None else status_code,
        response_bytes=0 if error is not None else response_bytes,
        error=error,
        error_message=error.value if error is not None else None,
    )


@pytest.fixture
def fake_executor() -> type[FakeExecutor]:
    """The scriptable FakeExecutor class."""
    return FakeExecutor


@pytest.fixture
def result_factory() -> Callable[..., SingleRequestResult]:
    """Builder for SingleRequestResult objects."""
    return make_result
