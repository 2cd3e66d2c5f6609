"""
Result types and error hierarchy for taskweave.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy

Usage:
    from taskweave.core.result import Ok, Err, Result, ValidationError

    def load(path: Path) -> Result[TaskPlan, ValidationError]:
        if not path.exists():
            return Err(ValidationError("Plan not found", context={"path": str(path)}))
        return Ok(parse(path))

    match load(path):
        case Ok(plan):
            run(plan)
        case Err(err):
            report(err)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class TaskweaveError(Exception):
    """Base exception for all taskweave errors.

    Carries an optional context mapping that is rendered after the message,
    so log lines and CLI output show which task, agent or file was involved.
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationError(TaskweaveError):
    """Raised for configuration issues.

    Examples:
    - Config file parse errors
    - Invalid config values
    """

    pass


class ValidationError(TaskweaveError):
    """Raised for input validation failures.

    Examples:
    - Duplicate task id
    - Malformed plan file
    - Unknown task id in a dependency query
    """

    pass


class AgentError(TaskweaveError):
    """Raised when an agent cannot be spawned or controlled.

    Examples:
    - Agent binary not found
    - Subprocess failed to start
    """

    pass


class SchedulingError(TaskweaveError):
    """Raised for dependency graph problems.

    Examples:
    - Circular dependencies
    - Dependency on a task that does not exist
    """

    pass


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "TaskweaveError",
    "ConfigurationError",
    "ValidationError",
    "AgentError",
    "SchedulingError",
]
