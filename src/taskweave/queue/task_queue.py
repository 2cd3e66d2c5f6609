"""In-memory task queue with dependency and priority resolution.

One queue holds every task for a session. Tasks are never removed during a
run: finished and failed tasks stay queryable so that dependency checks and
reports can see them. All mutation goes through ``TaskQueue.update``.

Key classes:
- TaskQueue: Owns the tasks, answers dependency queries, picks the next task
- TaskCreateOptions / TaskUpdate: Inputs for ``add`` and ``update``
- NextTaskResult: Either the next runnable task or the reason there is none
- TaskQueueState: Serializable snapshot for storage or transmission
- QueueStats: Aggregate counts produced by ``get_queue_stats``
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from taskweave.agents.types import AgentType
from taskweave.core.result import Err, Ok, Result, SchedulingError, ValidationError
from taskweave.structures.dag import (
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    new_task_id,
    validate_acyclic,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 3
DEFAULT_MAX_RETRIES = 3


class QueueStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskCreateOptions(BaseModel):
    """Fields accepted by ``TaskQueue.add``; an id is generated when omitted."""

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    type: TaskType = TaskType.IMPLEMENT
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.NORMAL
    dependencies: list[str] = Field(default_factory=list)
    agent_type: AgentType | None = None
    max_retries: int = DEFAULT_MAX_RETRIES
    input: dict[str, Any] = Field(default_factory=dict)


class TaskUpdate(BaseModel):
    """Partial patch for ``TaskQueue.update``.

    Only fields that were explicitly set are applied, so ``TaskUpdate(error=None)``
    clears an error while ``TaskUpdate()`` leaves it alone.
    """

    model_config = ConfigDict(extra="forbid")

    status: TaskStatus | None = None
    assigned_agent_id: str | None = None
    error: str | None = None
    output: dict[str, Any] | None = None
    increment_retry: bool = False


class NextTaskReason(StrEnum):
    QUEUE_EMPTY = "queue_empty"
    ALL_COMPLETED = "all_completed"
    ALL_FAILED = "all_failed"
    BLOCKED = "blocked"
    MAX_PARALLEL = "max_parallel"


@dataclass(frozen=True)
class NextTaskResult:
    task: Task | None
    reason: NextTaskReason | None = None


class TaskQueueState(BaseModel):
    """Serializable queue snapshot."""

    session_id: str
    tasks: list[Task]
    running_tasks: list[Task] = Field(default_factory=list)
    max_parallel: int = DEFAULT_MAX_PARALLEL
    status: QueueStatus = QueueStatus.IDLE
    created_at: datetime
    updated_at: datetime


@dataclass
class DependencyNode:
    task: Task
    dependencies: list[DependencyNode] = field(default_factory=list)


@dataclass(frozen=True)
class QueueStats:
    total: int
    by_status: dict[TaskStatus, int]
    by_type: dict[TaskType, int]
    by_priority: dict[TaskPriority, int]
    completion_percentage: int
    blocked: int
    ready: int


def _now() -> datetime:
    return datetime.now(UTC)


class TaskQueue:
    """Task store for one session with dependency-aware scheduling queries."""

    def __init__(self, session_id: str, max_parallel: int = DEFAULT_MAX_PARALLEL) -> None:
        self._session_id = session_id
        self._tasks: dict[str, Task] = {}
        self._max_parallel = max(1, max_parallel)
        self._status = QueueStatus.IDLE
        self._created_at = _now()
        self._updated_at = self._created_at

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def status(self) -> QueueStatus:
        return self._status

    @status.setter
    def status(self, value: QueueStatus) -> None:
        self._status = QueueStatus(value)
        self._touch()

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    @max_parallel.setter
    def max_parallel(self, value: int) -> None:
        self._max_parallel = max(1, value)

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def pending_tasks(self) -> list[Task]:
        """Tasks not yet started and not terminal (pending or blocked)."""
        return [
            t for t in self._tasks.values() if t.status in (TaskStatus.PENDING, TaskStatus.BLOCKED)
        ]

    @property
    def running_tasks(self) -> list[Task]:
        return self._with_status(TaskStatus.RUNNING)

    @property
    def completed_tasks(self) -> list[Task]:
        return self._with_status(TaskStatus.COMPLETED)

    @property
    def failed_tasks(self) -> list[Task]:
        return self._with_status(TaskStatus.FAILED)

    @property
    def blocked_tasks(self) -> list[Task]:
        return self._with_status(TaskStatus.BLOCKED)

    @property
    def size(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    def create(self, task: Task) -> Task:
        """Insert a fully built task.

        Raises:
            ValidationError: If a task with the same id already exists.
        """
        if task.id in self._tasks:
            raise ValidationError("Duplicate task id", context={"task_id": task.id})
        self._tasks[task.id] = task
        self._touch()
        logger.debug("Queued task %s (%s)", task.id, task.title or task.type)
        return task

    def add(self, options: TaskCreateOptions) -> Task:
        task = Task(
            id=options.id or new_task_id(),
            type=options.type,
            title=options.title,
            description=options.description,
            priority=options.priority,
            dependencies=list(options.dependencies),
            agent_type=options.agent_type,
            max_retries=options.max_retries,
            input=dict(options.input),
        )
        return self.create(task)

    def add_many(self, options_list: Iterable[TaskCreateOptions]) -> list[Task]:
        return [self.add(options) for options in options_list]

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def has(self, task_id: str) -> bool:
        return task_id in self._tasks

    def update(self, task_id: str, patch: TaskUpdate) -> bool:
        """Apply ``patch`` to a task and stamp the update time.

        Setting ``running`` stamps ``started_at`` once; terminal statuses stamp
        ``completed_at``.

        Returns:
            False if the task does not exist.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return False

        now = _now()
        changed = patch.model_fields_set

        if "status" in changed and patch.status is not None:
            task.status = patch.status
            if patch.status is TaskStatus.RUNNING and task.started_at is None:
                task.started_at = now
            elif patch.status.is_terminal:
                task.completed_at = now
        if "assigned_agent_id" in changed:
            task.assigned_agent_id = patch.assigned_agent_id
        if "error" in changed:
            task.error = patch.error
        if "output" in changed:
            task.output = patch.output
        if patch.increment_retry:
            task.retries += 1

        task.updated_at = now
        self._updated_at = now
        return True

    def delete(self, task_id: str) -> bool:
        if self._tasks.pop(task_id, None) is None:
            return False
        self._touch()
        return True

    def clear(self) -> None:
        self._tasks.clear()
        self._status = QueueStatus.IDLE
        self._touch()

    # ------------------------------------------------------------------
    # Priority handling
    # ------------------------------------------------------------------

    @staticmethod
    def sort_by_priority(tasks: Iterable[Task]) -> list[Task]:
        """Highest priority first; ties broken by creation time."""
        return sorted(tasks, key=lambda t: (-t.priority.weight, t.created_at))

    def get_pending_sorted_by_priority(self) -> list[Task]:
        return self.sort_by_priority(self.pending_tasks)

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    def are_dependencies_satisfied(self, task_id: str) -> bool:
        """True when every dependency exists and is ``completed``.

        Unknown task ids have nothing to wait for and return True.
        """
        task = self._tasks.get(task_id)
        if task is None or not task.dependencies:
            return True
        return not self.get_unmet_dependencies(task_id)

    def get_unmet_dependencies(self, task_id: str) -> list[str]:
        """Dependency ids that are missing from the queue or not yet completed."""
        task = self._tasks.get(task_id)
        if task is None:
            return []
        unmet: list[str] = []
        for dep_id in dict.fromkeys(task.dependencies):
            dep = self._tasks.get(dep_id)
            if dep is None or dep.status is not TaskStatus.COMPLETED:
                unmet.append(dep_id)
        return unmet

    def get_blocking_tasks(self, task_id: str) -> list[Task]:
        """Existing dependencies of ``task_id`` that have not completed."""
        task = self._tasks.get(task_id)
        if task is None:
            return []
        blocking: list[Task] = []
        for dep_id in task.dependencies:
            dep = self._tasks.get(dep_id)
            if dep is not None and dep.status is not TaskStatus.COMPLETED:
                blocking.append(dep)
        return blocking

    def is_executable(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        return (
            task.status in (TaskStatus.PENDING, TaskStatus.BLOCKED)
            and self.are_dependencies_satisfied(task_id)
        )

    def get_executable_tasks(self) -> list[Task]:
        return self.sort_by_priority(
            t for t in self.pending_tasks if self.are_dependencies_satisfied(t.id)
        )

    def has_circular_dependency(self, start_task_id: str) -> bool:
        """True if a dependency cycle is reachable from ``start_task_id``."""
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(task_id: str) -> bool:
            if task_id in visiting:
                return True
            if task_id in done:
                return False
            task = self._tasks.get(task_id)
            if task is None:
                return False
            visiting.add(task_id)
            for dep_id in task.dependencies:
                if visit(dep_id):
                    return True
            visiting.discard(task_id)
            done.add(task_id)
            return False

        return visit(start_task_id)

    def has_any_circular_dependencies(self) -> bool:
        return not validate_acyclic(self.tasks)

    def get_dependency_tree(
        self, task_id: str
    ) -> Result[DependencyNode, ValidationError | SchedulingError]:
        """Build the transitive dependency tree rooted at ``task_id``.

        Returns:
            Err(ValidationError) if the task or one of its dependencies is unknown,
            Err(SchedulingError) if the tree would contain a cycle.
        """

        def build(
            current_id: str, path: tuple[str, ...]
        ) -> Result[DependencyNode, ValidationError | SchedulingError]:
            if current_id in path:
                cycle = " -> ".join((*path, current_id))
                return Err(SchedulingError("Circular dependency", context={"cycle": cycle}))
            task = self._tasks.get(current_id)
            if task is None:
                return Err(ValidationError("Task not found", context={"task_id": current_id}))
            node = DependencyNode(task=task)
            for dep_id in task.dependencies:
                match build(dep_id, (*path, current_id)):
                    case Ok(child):
                        node.dependencies.append(child)
                    case Err() as err:
                        return err
            return Ok(node)

        return build(task_id, ())

    # ------------------------------------------------------------------
    # Queue execution
    # ------------------------------------------------------------------

    def get_next(self) -> NextTaskResult:
        """Pick the highest-priority runnable task, or explain why there is none."""
        if len(self.running_tasks) >= self._max_parallel:
            return NextTaskResult(task=None, reason=NextTaskReason.MAX_PARALLEL)

        executable = self.get_executable_tasks()
        if executable:
            return NextTaskResult(task=executable[0])

        if self.pending_tasks:
            return NextTaskResult(task=None, reason=NextTaskReason.BLOCKED)
        if self.completed_tasks:
            return NextTaskResult(task=None, reason=NextTaskReason.ALL_COMPLETED)
        if self._tasks and len(self.failed_tasks) == len(self._tasks):
            return NextTaskResult(task=None, reason=NextTaskReason.ALL_FAILED)
        return NextTaskResult(task=None, reason=NextTaskReason.QUEUE_EMPTY)

    def start_next(self) -> Task | None:
        """Mark the next runnable task as running and return it."""
        result = self.get_next()
        if result.task is None:
            return None
        self.update(result.task.id, TaskUpdate(status=TaskStatus.RUNNING))
        self._status = QueueStatus.RUNNING
        return result.task

    def get_status_counts(self) -> dict[TaskStatus, int]:
        counts = dict.fromkeys(TaskStatus, 0)
        for task in self._tasks.values():
            counts[task.status] += 1
        return counts

    def is_complete(self) -> bool:
        """True when the queue is non-empty and every task completed or was skipped."""
        if not self._tasks:
            return False
        return all(
            t.status in (TaskStatus.COMPLETED, TaskStatus.SKIPPED) for t in self._tasks.values()
        )

    def is_empty(self) -> bool:
        return not self._tasks

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_state(self) -> TaskQueueState:
        return TaskQueueState(
            session_id=self._session_id,
            tasks=[t.model_copy(deep=True) for t in self._tasks.values()],
            running_tasks=[t.model_copy(deep=True) for t in self.running_tasks],
            max_parallel=self._max_parallel,
            status=self._status,
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    @classmethod
    def from_state(cls, state: TaskQueueState) -> TaskQueue:
        queue = cls(state.session_id, state.max_parallel)
        for task in state.tasks:
            queue._tasks[task.id] = task.model_copy(deep=True)
        queue._status = state.status
        queue._created_at = state.created_at
        queue._updated_at = state.updated_at
        return queue

    def to_json(self) -> str:
        return self.to_state().model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> TaskQueue:
        return cls.from_state(TaskQueueState.model_validate_json(payload))

    # ------------------------------------------------------------------

    def _with_status(self, status: TaskStatus) -> list[Task]:
        return [t for t in self._tasks.values() if t.status is status]

    def _touch(self) -> None:
        self._updated_at = _now()


def get_queue_stats(queue: TaskQueue) -> QueueStats:
    """Aggregate counts for reporting."""
    tasks = queue.tasks
    by_status = dict.fromkeys(TaskStatus, 0)
    by_type: dict[TaskType, int] = {}
    by_priority: dict[TaskPriority, int] = {}

    for task in tasks:
        by_status[task.status] += 1
        by_type[task.type] = by_type.get(task.type, 0) + 1
        by_priority[task.priority] = by_priority.get(task.priority, 0) + 1

    done = by_status[TaskStatus.COMPLETED] + by_status[TaskStatus.SKIPPED]
    completion = math.floor(done / len(tasks) * 100 + 0.5) if tasks else 0

    waiting = queue.pending_tasks
    ready = sum(1 for t in waiting if queue.are_dependencies_satisfied(t.id))

    return QueueStats(
        total=len(tasks),
        by_status=by_status,
        by_type=by_type,
        by_priority=by_priority,
        completion_percentage=completion,
        blocked=len(waiting) - ready,
        ready=ready,
    )


__all__ = [
    "DependencyNode",
    "NextTaskReason",
    "NextTaskResult",
    "QueueStats",
    "QueueStatus",
    "TaskCreateOptions",
    "TaskQueue",
    "TaskQueueState",
    "TaskUpdate",
    "get_queue_stats",
]
