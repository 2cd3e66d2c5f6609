"""Session task queue with dependency and priority resolution."""

from __future__ import annotations

from taskweave.queue.task_queue import (
    DependencyNode,
    NextTaskReason,
    NextTaskResult,
    QueueStats,
    QueueStatus,
    TaskCreateOptions,
    TaskQueue,
    TaskQueueState,
    TaskUpdate,
    get_queue_stats,
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
