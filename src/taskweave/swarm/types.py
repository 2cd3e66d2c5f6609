"""Data types for parallel task execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskweave.agents.types import AgentHandle, AgentType
from taskweave.core.config import ExecutorSettings
from taskweave.structures.dag import Task

PromptBuilder = Callable[[Task], str]


class TaskPromptPair(NamedTuple):
    task: Task
    prompt: str


class ExecutorConfig(BaseModel):
    """Settings for one ``ParallelExecutor``.

    Attributes:
        max_parallel: Maximum agents in flight at once (clamped to >= 1)
        cwd: Working directory handed to every agent
        session_id: Session the spawned agents belong to
        dangerously_skip_permissions: Run agents without confirmation prompts
        max_turns: Optional turn cap per agent
        timeout: Per-agent timeout in seconds, enforced by the runtime
        stop_on_error: Stop dispatching new work after the first failure
        default_agent_type: Agent type for tasks that do not name one
    """

    model_config = ConfigDict(extra="forbid")

    max_parallel: int = 3
    cwd: Path = Field(default_factory=Path.cwd)
    session_id: str
    dangerously_skip_permissions: bool = False
    max_turns: int | None = None
    timeout: float | None = 30 * 60.0
    stop_on_error: bool = False
    default_agent_type: AgentType = AgentType.IMPLEMENTER

    @field_validator("max_parallel")
    @classmethod
    def clamp_max_parallel(cls, v: int) -> int:
        return max(1, v)

    @classmethod
    def from_settings(
        cls,
        settings: ExecutorSettings,
        *,
        cwd: Path,
        session_id: str,
        **overrides: Any,
    ) -> ExecutorConfig:
        """Build an executor config from application settings plus overrides."""
        values: dict[str, Any] = {
            "max_parallel": settings.max_parallel,
            "cwd": cwd,
            "session_id": session_id,
            "dangerously_skip_permissions": settings.dangerously_skip_permissions,
            "max_turns": settings.max_turns,
            "timeout": settings.timeout,
            "stop_on_error": settings.stop_on_error,
            "default_agent_type": settings.default_agent_type,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class TaskExecutionResult:
    """Outcome of running one task.

    Attributes:
        task_id: ID of the executed task
        success: Whether the agent reached ``completed``
        duration: Wall time in seconds
        agent: Handle of the spawned agent, if one was spawned
        error: Error details if failed
    """

    task_id: str
    success: bool
    duration: float
    agent: AgentHandle | None = None
    error: str | None = None


class ExecutionOutcome(StrEnum):
    NOTHING_ATTEMPTED = "nothing_attempted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class ParallelExecutionResult:
    """Aggregate of one executor run.

    ``results`` holds attempted tasks only. Tasks that were never started are
    listed in ``blocked_task_ids`` (unmet dependencies) or ``skipped_task_ids``
    (execution stopped first).
    """

    results: tuple[TaskExecutionResult, ...]
    total_duration: float
    blocked_task_ids: tuple[str, ...] = ()
    skipped_task_ids: tuple[str, ...] = ()

    @property
    def total_tasks(self) -> int:
        return len(self.results)

    @property
    def successful_tasks(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_tasks(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def all_success(self) -> bool:
        return self.failed_tasks == 0 and not self.blocked_task_ids and not self.skipped_task_ids

    @property
    def outcome(self) -> ExecutionOutcome:
        if self.failed_tasks:
            return ExecutionOutcome.FAILED
        if self.blocked_task_ids:
            return ExecutionOutcome.BLOCKED
        if not self.results:
            return ExecutionOutcome.NOTHING_ATTEMPTED
        return ExecutionOutcome.SUCCEEDED

    def get(self, task_id: str) -> TaskExecutionResult | None:
        return next((r for r in self.results if r.task_id == task_id), None)


__all__ = [
    "ExecutionOutcome",
    "ExecutorConfig",
    "ParallelExecutionResult",
    "PromptBuilder",
    "TaskExecutionResult",
    "TaskPromptPair",
]
