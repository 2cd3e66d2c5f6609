"""Task model and dependency grouping for parallel agent execution.

This module defines the unit of work handed to agents and the algorithm that
partitions a task list into groups that can run concurrently while respecting
dependency order.

Key classes:
- Task: Individual task node with description, dependencies and lifecycle fields
- IndependentTaskGroup: A batch of tasks safe to run concurrently
- TaskStatus / TaskPriority / TaskType: Enums for task lifecycle and metadata

Key functions:
- group_tasks_by_dependency: Level-by-level grouping that never drops a task
- are_tasks_independent: Cheap check that no task depends on another in the set
- validate_acyclic: Kahn's algorithm over the dependency edges
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from taskweave.agents.types import AgentType


class TaskStatus(StrEnum):
    """Lifecycle status for a task."""

    PENDING = "pending"  # Not yet started
    RUNNING = "running"  # Currently executing
    COMPLETED = "completed"  # Finished successfully
    FAILED = "failed"  # Finished with error
    BLOCKED = "blocked"  # Dependencies could not be satisfied
    SKIPPED = "skipped"  # Deliberately not run

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED)


class TaskPriority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def weight(self) -> int:
        """Sort weight; higher runs first."""
        return _PRIORITY_WEIGHT[self]


_PRIORITY_WEIGHT: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 1,
}


class TaskType(StrEnum):
    PLAN = "plan"
    IMPLEMENT = "implement"
    TEST = "test"
    REVIEW = "review"
    FIX = "fix"
    SECURITY = "security"


def new_task_id() -> str:
    return f"task-{uuid4()}"


def _now() -> datetime:
    return datetime.now(UTC)


class Task(BaseModel):
    """A single unit of agent work.

    Tasks are mutated in place by ``TaskQueue.update``; assignment is validated
    so a bad status or priority never slips into the queue.

    Attributes:
        id: Unique task identifier (e.g., 'task-<uuid>')
        description: What the agent should accomplish
        dependencies: Task IDs that must complete before this task runs
        status: Current lifecycle status
        agent_type: Which kind of agent should execute the task
        assigned_agent_id: Agent that ran the task, once known
        output: Structured output recorded on completion
        error: Error text recorded on failure
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: str = Field(default_factory=new_task_id)
    type: TaskType = TaskType.IMPLEMENT
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.NORMAL
    dependencies: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    agent_type: AgentType | None = None
    assigned_agent_id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: str | None = None
    retries: int = 0
    max_retries: int = 3
    created_at: datetime = Field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class IndependentTaskGroup:
    """Tasks that may run concurrently.

    ``dependencies`` is only populated for isolated singleton groups whose
    dependencies could not be resolved (cycles, unknown ids).
    """

    tasks: list[Task]
    is_independent: bool
    dependencies: list[str] = field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [task.id for task in self.tasks]

    @property
    def is_isolated(self) -> bool:
        return bool(self.dependencies)


def _dedupe(tasks: Iterable[Task]) -> list[Task]:
    seen: set[str] = set()
    ordered: list[Task] = []
    for task in tasks:
        if task.id in seen:
            continue
        seen.add(task.id)
        ordered.append(task)
    return ordered


def _independent_of(task: Task, group: Sequence[Task], group_ids: set[str]) -> bool:
    if any(dep in group_ids for dep in task.dependencies):
        return False
    return all(task.id not in member.dependencies for member in group)


def group_tasks_by_dependency(
    tasks: Iterable[Task],
    satisfied: Iterable[str] = (),
) -> list[IndependentTaskGroup]:
    """Partition tasks into dependency-ordered groups.

    Each pass walks the remaining tasks in input order and collects every task
    whose dependencies were all placed in earlier groups (or are listed in
    ``satisfied``) and which is independent of the tasks already collected in
    this pass. Passes repeat until no task qualifies. Whatever is left over is
    emitted as one singleton group per task, flagged not independent and
    carrying its unmet dependency ids, so that nothing is ever dropped.

    Args:
        tasks: Tasks in submission order; duplicate ids keep the first occurrence
        satisfied: Ids outside ``tasks`` that already count as completed

    Returns:
        Groups in execution order.
    """
    ordered = _dedupe(tasks)
    input_ids = {task.id for task in ordered}
    processed: set[str] = set(satisfied) - input_ids
    remaining = ordered
    groups: list[IndependentTaskGroup] = []

    while remaining:
        current: list[Task] = []
        current_ids: set[str] = set()
        for task in remaining:
            if not all(dep in processed for dep in task.dependencies):
                continue
            if current and not _independent_of(task, current, current_ids):
                continue
            current.append(task)
            current_ids.add(task.id)

        if not current:
            break

        groups.append(IndependentTaskGroup(tasks=current, is_independent=len(current) > 1))
        processed |= current_ids
        remaining = [task for task in remaining if task.id not in current_ids]

    for task in remaining:
        unmet = list(dict.fromkeys(dep for dep in task.dependencies if dep not in processed))
        groups.append(IndependentTaskGroup(tasks=[task], is_independent=False, dependencies=unmet))

    return groups


def are_tasks_independent(tasks: Sequence[Task]) -> bool:
    """True iff no task depends on any task in the same set."""
    ids = {task.id for task in tasks}
    return not any(ids.intersection(task.dependencies) for task in tasks)


def can_run_in_parallel(tasks: Sequence[Task]) -> bool:
    """True when there is more than one task and they are mutually independent."""
    return len(tasks) > 1 and are_tasks_independent(tasks)


def validate_acyclic(tasks: Sequence[Task]) -> bool:
    """Validate that the dependency graph has no cycles using Kahn's algorithm.

    Dependencies on ids outside ``tasks`` are ignored.

    Returns:
        True if the graph is acyclic, False if cycles detected
    """
    if not tasks:
        return True

    task_ids = {t.id for t in tasks}
    in_degree: dict[str, int] = {t.id: 0 for t in tasks}
    adjacency: dict[str, list[str]] = {t.id: [] for t in tasks}

    for task in tasks:
        for dep in set(task.dependencies):
            if dep == task.id:
                return False
            if dep in task_ids:
                adjacency[dep].append(task.id)
                in_degree[task.id] += 1

    queue = [tid for tid, deg in in_degree.items() if deg == 0]
    visited = 0

    while queue:
        current = queue.pop(0)
        visited += 1
        for neighbor in adjacency[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    return visited == len(in_degree)


__all__ = [
    "IndependentTaskGroup",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "are_tasks_independent",
    "can_run_in_parallel",
    "group_tasks_by_dependency",
    "new_task_id",
    "validate_acyclic",
]
