"""ReqForge: concurrent HTTP request execution with live statistics."""

from __future__ import annotations

from reqforge.engine.coordinator import ExecutionCoordinator
from reqforge.engine.executor import AiohttpExecutor, ExecutorResponse, RequestExecutor
from reqforge.engine.protocol import ExecutionRequest, ExecutionStatus, RequestTemplate
from reqforge.metrics.models import (
    EnhancedConcurrentResult,
    ErrorCategory,
    ExecutionProgress,
    SingleRequestResult,
)

__version__ = "0.1.0"

__all__ = [
    "AiohttpExecutor",
    "EnhancedConcurrentResult",
    "ErrorCategory",
    "ExecutionCoordinator",
    "ExecutionProgress",
    "ExecutionRequest",
    "ExecutionStatus",
    "ExecutorResponse",
    "RequestExecutor",
    "RequestTemplate",
    "SingleRequestResult",
]
