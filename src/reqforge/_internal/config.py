"""Configuration loading for ReqForge."""

from __future__ import annotations

import os
from dataclasses import dataclass

from reqforge._internal.errors import ConfigError


@dataclass(frozen=True)
class ReqForgeConfig:
    """Global ReqForge configuration.

    Attributes:
        request_timeout: Default per-request timeout in seconds.
        progress_interval: Minimum seconds between two non-final progress
            snapshots for the same execution.
        listener_queue_size: Maximum pending snapshots per progress listener.
        join_timeout: Seconds to wait for worker threads on shutdown.
    """

    request_timeout: float = 30.0
    progress_interval: float = 0.1
    listener_queue_size: int = 64
    join_timeout: float = 10.0


def _read_float(name: str, default: str, *, allow_zero: bool = False) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None

    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        msg = f"{name} must be {qualifier}, got: {value}"
        raise ConfigError(msg)
    return value


def load_config() -> ReqForgeConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        REQFORGE_TIMEOUT: Request timeout in seconds (default: 30.0).
        REQFORGE_PROGRESS_INTERVAL: Progress throttle window in seconds
            (default: 0.1, 0 disables throttling).
        REQFORGE_LISTENER_QUEUE_SIZE: Pending snapshots per listener
            (default: 64).
        REQFORGE_JOIN_TIMEOUT: Worker join grace period in seconds
            (default: 10.0).

    Returns:
        Populated ReqForgeConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    timeout = _read_float("REQFORGE_TIMEOUT", "30.0")
    progress_interval = _read_float("REQFORGE_PROGRESS_INTERVAL", "0.1", allow_zero=True)
    join_timeout = _read_float("REQFORGE_JOIN_TIMEOUT", "10.0")

    queue_size_str = os.environ.get("REQFORGE_LISTENER_QUEUE_SIZE", "64")
    try:
        queue_size = int(queue_size_str)
    except ValueError:
        msg = f"REQFORGE_LISTENER_QUEUE_SIZE must be an integer, got: {queue_size_str!r}"
        raise ConfigError(msg) from None

    if queue_size < 1:
        msg = f"REQFORGE_LISTENER_QUEUE_SIZE must be >= 1, got: {queue_size}"
        raise ConfigError(msg)

    return ReqForgeConfig(
        request_timeout=timeout,
        progress_interval=progress_interval,
        listener_queue_size=queue_size,
        join_timeout=join_timeout,
    )
