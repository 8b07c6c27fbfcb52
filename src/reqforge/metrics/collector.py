"""Append-only collection of the raw attempt results of one execution."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reqforge.metrics.models import SingleRequestResult


class ResultCollector:
    """Collects ``SingleRequestResult`` objects in a thread-safe deque.

    Workers only ever append (``deque.append`` is atomic in CPython), so no
    lock is taken on the hot path. The collection is read once, by the
    supervisor, after every worker has joined.
    """

    def __init__(self) -> None:
        self._buffer: deque[SingleRequestResult] = deque()

    def record(self, result: SingleRequestResult) -> None:
        """Append a result to the collection.

        Args:
            result: The attempt outcome to keep.
        """
        self._buffer.append(result)

    def drain(self) -> list[SingleRequestResult]:
        """Remove and return every collected result, ordered by sequence.

        Returns:
            The collected results sorted by their execution-wide sequence.
        """
        drained: list[SingleRequestResult] = []
        while self._buffer:
            drained.append(self._buffer.popleft())
        drained.sort(key=lambda r: r.sequence)
        return drained

    def __len__(self) -> int:
        return len(self._buffer)
