"""Cooperative cancellation tokens keyed by execution id."""

from __future__ import annotations

import threading

from reqforge._internal.logging import get_logger

logger = get_logger("engine.cancellation")


class CancellationToken:
    """A one-way cancellation flag shared by the workers of one execution.

    ``cancel`` and ``is_cancelled`` are serialised by a small lock, so once
    ``cancel`` returns every later check observes it. Workers also block on
    the token while waiting for their ramp-up release, which makes the wait
    end as soon as the execution is cancelled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return why the token was cancelled, None while it is still live."""
        with self._lock:
            return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the flag.

        Args:
            reason: Short description kept for logging.

        Returns:
            True if this call cancelled the token, False if it already was.
        """
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses.

        Returns:
            True if the token is cancelled.
        """
        if timeout is not None and timeout <= 0:
            return self.is_cancelled
        return self._event.wait(timeout)


class CancellationRegistry:
    """Maps execution ids to their cancellation tokens.

    A token is created when an execution starts, before any of its workers
    exist, and cleared once the execution reaches a terminal state.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def create(self, execution_id: str) -> CancellationToken:
        """Register and return a fresh token for ``execution_id``.

        Raises:
            ValueError: If the execution already has a token.
        """
        with self._lock:
            if execution_id in self._tokens:
                msg = f"Execution {execution_id} already has a cancellation token"
                raise ValueError(msg)
            token = CancellationToken()
            self._tokens[execution_id] = token
            return token

    def get(self, execution_id: str) -> CancellationToken | None:
        with self._lock:
            return self._tokens.get(execution_id)

    def cancel(self, execution_id: str, reason: str = "cancelled") -> bool:
        """Signal the token of ``execution_id``.

        Returns:
            True if a live token was cancelled by this call.
        """
        token = self.get(execution_id)
        if token is None:
            return False
        cancelled = token.cancel(reason)
        if cancelled:
            logger.debug("Cancellation signalled: execution=%s, reason=%s", execution_id, reason)
        return cancelled

    def clear(self, execution_id: str) -> None:
        """Forget the token of a terminal execution."""
        with self._lock:
            self._tokens.pop(execution_id, None)

    def __contains__(self, execution_id: object) -> bool:
        with self._lock:
            return execution_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
