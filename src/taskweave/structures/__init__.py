"""Data structures for task orchestration and dependency graphs."""

from __future__ import annotations

from taskweave.structures.dag import (
    IndependentTaskGroup,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    group_tasks_by_dependency,
)

__all__ = [
    "IndependentTaskGroup",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TaskType",
    "group_tasks_by_dependency",
]
