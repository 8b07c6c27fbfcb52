"""Single-request executor contract, default aiohttp implementation and
error classification.

The engine never speaks HTTP itself: every worker owns one executor created
by an ``ExecutorFactory`` and calls ``send`` once per iteration.
"""

from __future__ import annotations

import asyncio
import socket
import ssl
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import aiohttp
from aiohttp.http_exceptions import HttpProcessingError

from reqforge._internal.errors import RequestCancelledError
from reqforge.metrics.models import ErrorCategory

if TYPE_CHECKING:
    from reqforge.engine.protocol import RequestTemplate


@dataclass(frozen=True)
class ExecutorResponse:
    """What an executor reports for a request that produced a response.

    Attributes:
        status_code: HTTP response status code.
        body: Raw response body.
        elapsed_ms: Response time measured by the executor, None to let the
            worker use its own wall-clock measurement.
    """

    status_code: int
    body: bytes = b""
    elapsed_ms: float | None = None


@runtime_checkable
class RequestExecutor(Protocol):
    """Sends one HTTP request and reports the response.

    Implementations are async context managers so they can hold a connection
    pool for the lifetime of a worker. ``send`` raises on transport failure;
    the exception is classified with :func:`classify_error`.
    """

    async def __aenter__(self) -> RequestExecutor: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None: ...

    async def send(self, template: RequestTemplate, timeout: float) -> ExecutorResponse: ...


ExecutorFactory = Callable[[], RequestExecutor]


class AiohttpExecutor:
    """Request executor wrapping one ``aiohttp.ClientSession``.

    Each worker gets its own instance, so sessions (and their connection
    pools) are never shared between threads.

    Attributes:
        connection_limit: Maximum simultaneous connections of the session.
    """

    def __init__(self, connection_limit: int = 10) -> None:
        self.connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AiohttpExecutor:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=self.connection_limit),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def send(self, template: RequestTemplate, timeout: float) -> ExecutorResponse:
        """Send the template once and read the full body.

        Args:
            template: Request to send.
            timeout: Total timeout in seconds, covering connect and body read.

        Returns:
            The response status, body and measured response time.

        Raises:
            RuntimeError: If the executor is used outside of an async context
                manager.
            aiohttp.ClientError: On transport failures.
            TimeoutError: When the request exceeds ``timeout``.
        """
        if self._session is None:
            msg = "AiohttpExecutor must be used as an async context manager"
            raise RuntimeError(msg)

        start = time.monotonic()
        async with self._session.request(
            template.method.upper(),
            template.url,
            headers=dict(template.headers),
            data=template.body,
            allow_redirects=template.follow_redirects,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            body = await resp.read()
            status_code = resp.status
        elapsed_ms = (time.monotonic() - start) * 1000

        return ExecutorResponse(status_code=status_code, body=body, elapsed_ms=elapsed_ms)


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map a request failure onto the error taxonomy.

    Order matters: aiohttp's timeout and SSL errors subclass its generic
    connection errors.

    Args:
        exc: Exception raised while sending a request.

    Returns:
        The matching ErrorCategory, UNKNOWN when nothing matches.
    """
    if isinstance(exc, (asyncio.CancelledError, RequestCancelledError)):
        return ErrorCategory.CANCELLED

    if isinstance(exc, TimeoutError):
        return ErrorCategory.TIMEOUT

    if isinstance(exc, (aiohttp.ClientSSLError, ssl.SSLError)):
        return ErrorCategory.TLS_HANDSHAKE

    if isinstance(exc, aiohttp.ClientConnectorError):
        return _classify_os_error(exc.os_error)

    if isinstance(exc, OSError):
        category = _classify_os_error(exc)
        if category is not ErrorCategory.UNKNOWN:
            return category

    if isinstance(exc, (aiohttp.ClientResponseError, aiohttp.ClientPayloadError)):
        return ErrorCategory.RESPONSE_PARSE

    if isinstance(exc, (UnicodeDecodeError, HttpProcessingError)):
        return ErrorCategory.RESPONSE_PARSE

    return ErrorCategory.UNKNOWN


def _classify_os_error(error: OSError) -> ErrorCategory:
    if isinstance(error, socket.gaierror):
        return ErrorCategory.DNS_RESOLUTION
    if isinstance(error, ssl.SSLError):
        return ErrorCategory.TLS_HANDSHAKE
    if isinstance(error, ConnectionRefusedError):
        return ErrorCategory.CONNECTION_REFUSED
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.UNKNOWN


def describe_error(exc: BaseException) -> str:
    """Return ``"ExceptionType: message"`` for a failure."""
    message = str(exc)
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"
