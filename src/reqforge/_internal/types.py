"""Shared type aliases for ReqForge."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reqforge.metrics.models import ExecutionProgress, SingleRequestResult

# HTTP headers, read-only once they belong to a request template.
Headers = Mapping[str, str]

# Callback receiving progress snapshots for one execution.
ProgressCallback = Callable[["ExecutionProgress"], None]

# Ingestion point workers hand their results to.
ResultSink = Callable[["SingleRequestResult"], None]
