"""Ramp-up scheduler that converts load parameters into worker release times."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass(frozen=True)
class ReleaseCommand:
    """When one worker may begin its first iteration.

    Attributes:
        worker_id: Zero-based worker index.
        offset_seconds: Delay after the execution start.
    """

    worker_id: int
    offset_seconds: float

    @property
    def offset_ms(self) -> float:
        return self.offset_seconds * 1000.0


class RampUpScheduler:
    """Spreads worker start times evenly over the ramp-up period.

    Worker *k* is released at ``k * ramp_up_seconds / thread_count`` seconds
    after the execution starts. With no ramp-up every worker is released
    immediately.

    Args:
        thread_count: Number of workers.
        ramp_up_seconds: Ramp-up period in seconds.
    """

    def __init__(self, thread_count: int, ramp_up_seconds: float = 0.0) -> None:
        self._thread_count = thread_count
        self._ramp_up_seconds = ramp_up_seconds

    @property
    def delay_per_worker(self) -> float:
        """Return the gap in seconds between two consecutive releases."""
        if self._ramp_up_seconds <= 0 or self._thread_count <= 0:
            return 0.0
        return self._ramp_up_seconds / self._thread_count

    def iter_releases(self) -> Iterator[ReleaseCommand]:
        """Yield one ReleaseCommand per worker, in worker order.

        Yields:
            A ReleaseCommand for each worker.
        """
        delay = self.delay_per_worker
        for worker_id in range(self._thread_count):
            yield ReleaseCommand(worker_id=worker_id, offset_seconds=worker_id * delay)

    def release_offsets(self) -> list[float]:
        """Return the release offset of every worker in seconds."""
        return [command.offset_seconds for command in self.iter_releases()]
