"""Bounded parallel execution of agent tasks.

Key classes:
- ParallelExecutor: Runs tasks concurrently under a FIFO semaphore
- ExecutorConfig: Executor settings (max_parallel, cwd, session, timeouts)
- TaskExecutionResult / ParallelExecutionResult: Immutable result records
"""

from taskweave.structures.dag import can_run_in_parallel
from taskweave.swarm.executor import (
    ParallelExecutor,
    create_parallel_executor,
    execute_independent_tasks,
)
from taskweave.swarm.types import (
    ExecutionOutcome,
    ExecutorConfig,
    ParallelExecutionResult,
    PromptBuilder,
    TaskExecutionResult,
    TaskPromptPair,
)

__all__ = [
    "ExecutionOutcome",
    "ExecutorConfig",
    "ParallelExecutionResult",
    "ParallelExecutor",
    "PromptBuilder",
    "TaskExecutionResult",
    "TaskPromptPair",
    "can_run_in_parallel",
    "create_parallel_executor",
    "execute_independent_tasks",
]
