"""Custom exception hierarchy for ReqForge."""

from __future__ import annotations


class ReqForgeError(Exception):
    """Base exception for all ReqForge errors.

    All custom exceptions in the ReqForge engine inherit from this class,
    making it easy to catch any ReqForge-specific error with a single
    except clause.
    """


class ConfigError(ReqForgeError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Required environment variable has an invalid value.
        - Configuration value is out of acceptable range.
    """


class ValidationError(ReqForgeError):
    """Raised when an execution request violates one or more load limits.

    Every violated rule is collected so callers can show all problems at
    once instead of fixing them one by one.

    Attributes:
        violations: Human-readable description of each violated rule.
    """

    def __init__(self, violations: list[str]) -> None:
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


class EngineError(ReqForgeError):
    """Raised when the execution engine cannot run a load execution."""


class UnknownExecutionError(ReqForgeError, KeyError):
    """Raised when an execution id is not registered with the engine."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Unknown execution: {execution_id}")

    def __str__(self) -> str:
        return f"Unknown execution: {self.execution_id}"


class ExecutionNotFinishedError(ReqForgeError):
    """Raised when a result is requested before the execution is terminal."""


class RequestCancelledError(ReqForgeError):
    """Raised by an executor when an in-flight request is abandoned."""
