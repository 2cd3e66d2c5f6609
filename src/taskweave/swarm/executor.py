"""Bounded parallel executor for agent tasks.

Runs tasks through an ``AgentRuntime`` with at most ``max_parallel`` agents in
flight. When driven from a ``TaskQueue`` it processes dependency groups one
after another and runs the tasks inside each group concurrently, so a task
never starts before every dependency has completed.

Key classes:
- ParallelExecutor: Dispatches tasks, waits on agent events, writes results back

Key functions:
- create_parallel_executor: Build an executor for a queue
- execute_independent_tasks: One-shot ``execute_from_queue`` with a fresh executor
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from taskweave.agents.types import AgentHandle, AgentRuntime, AgentSpawnOptions, AgentStatus
from taskweave.core.events import AgentEvent, AgentEventData
from taskweave.core.semaphore import Semaphore
from taskweave.queue.task_queue import QueueStatus, TaskQueue, TaskUpdate
from taskweave.structures.dag import Task, TaskStatus, group_tasks_by_dependency
from taskweave.swarm.types import (
    ExecutorConfig,
    ParallelExecutionResult,
    PromptBuilder,
    TaskExecutionResult,
    TaskPromptPair,
)

logger = logging.getLogger(__name__)

STOPPED_ERROR = "Execution stopped"

# Called once a task holds a permit and is about to spawn.
StartHook = Callable[[Task], None]


class ParallelExecutor:
    """Run agent tasks concurrently under a FIFO semaphore.

    Stopping is cooperative: ``stop()`` prevents tasks that have not started
    from spawning and asks the runtime to stop agents that are running, but it
    never interrupts an in-flight wait.

    Attributes:
        config: Executor settings
        available_permits: Semaphore permits free right now
        running_count: Agents currently being waited on
        results_collected: Number of task results recorded since the last clear()
    """

    def __init__(self, config: ExecutorConfig, runtime: AgentRuntime) -> None:
        self._config = config
        self._runtime = runtime
        self._semaphore = Semaphore(config.max_parallel)
        self._stopped = False
        self._active_agents: dict[str, AgentHandle] = {}
        self._results: dict[str, TaskExecutionResult] = {}

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    @property
    def available_permits(self) -> int:
        return self._semaphore.available

    @property
    def running_count(self) -> int:
        return len(self._active_agents)

    @property
    def results_collected(self) -> int:
        return len(self._results)

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def get_result(self, task_id: str) -> TaskExecutionResult | None:
        return self._results.get(task_id)

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    def _spawn_options(self, task: Task, prompt: str) -> AgentSpawnOptions:
        return AgentSpawnOptions(
            agent_type=task.agent_type or self._config.default_agent_type,
            session_id=self._config.session_id,
            cwd=self._config.cwd,
            prompt=prompt,
            dangerously_skip_permissions=self._config.dangerously_skip_permissions,
            max_turns=self._config.max_turns,
            timeout=self._config.timeout,
        )

    async def execute_task(self, task: Task, prompt: str) -> TaskExecutionResult:
        """Spawn an agent for ``task`` and wait for its terminal status.

        Never raises for agent or runtime failures; those become a failed result.
        """
        return await self._semaphore.execute(lambda: self._run_task(task, prompt))

    async def _run_task(
        self, task: Task, prompt: str, on_start: StartHook | None = None
    ) -> TaskExecutionResult:
        started = time.monotonic()
        if self._stopped:
            result = TaskExecutionResult(
                task_id=task.id, success=False, duration=0.0, error=STOPPED_ERROR
            )
            self._results[task.id] = result
            return result

        if on_start is not None:
            on_start(task)

        agent: AgentHandle | None = None
        try:
            agent = await self._runtime.spawn(self._spawn_options(task, prompt))
            self._active_agents[task.id] = agent
            logger.info("Task %s dispatched to agent %s", task.id, agent.id)

            success, error = await self._wait_for_agent(agent)
            final = self._runtime.get(agent.id) or agent
            result = TaskExecutionResult(
                task_id=task.id,
                success=success,
                duration=time.monotonic() - started,
                agent=final,
                error=None if success else (error or final.error_message or "Agent failed"),
            )
        except Exception as exc:
            logger.warning("Task %s failed before completion: %s", task.id, exc)
            result = TaskExecutionResult(
                task_id=task.id,
                success=False,
                duration=time.monotonic() - started,
                agent=agent,
                error=str(exc) or type(exc).__name__,
            )
        finally:
            self._active_agents.pop(task.id, None)

        if result.success:
            logger.info("Task %s completed in %.2fs", task.id, result.duration)
        else:
            logger.warning("Task %s failed: %s", task.id, result.error)
        self._results[task.id] = result
        return result

    async def _wait_for_agent(self, agent: AgentHandle) -> tuple[bool, str | None]:
        """Wait for ``agent`` to complete or fail.

        Listeners are registered before the status check so a terminal event
        can't slip in between, and both are removed on every exit path.
        """
        outcome: asyncio.Future[tuple[bool, str | None]] = (
            asyncio.get_running_loop().create_future()
        )

        def _on_completed(data: AgentEventData) -> None:
            if data.agent_id == agent.id and not outcome.done():
                outcome.set_result((True, None))

        def _on_error(data: AgentEventData) -> None:
            if data.agent_id == agent.id and not outcome.done():
                outcome.set_result((False, data.error))

        events = self._runtime.events
        events.on(AgentEvent.COMPLETED, _on_completed)
        events.on(AgentEvent.ERROR, _on_error)
        try:
            current = self._runtime.get(agent.id) or agent
            if current.status is AgentStatus.COMPLETED:
                return True, None
            if current.status is AgentStatus.ERROR:
                return False, current.error_message
            return await outcome
        finally:
            events.off(AgentEvent.COMPLETED, _on_completed)
            events.off(AgentEvent.ERROR, _on_error)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_group(
        self, pairs: Sequence[TaskPromptPair], on_start: StartHook | None = None
    ) -> list[TaskExecutionResult]:
        async def _run_one(task: Task, prompt: str) -> TaskExecutionResult:
            result = await self._semaphore.execute(
                lambda: self._run_task(task, prompt, on_start)
            )
            if self._config.stop_on_error and not result.success and not self._stopped:
                logger.warning("Stopping after failure of task %s", task.id)
                self.stop()
            return result

        return list(await asyncio.gather(*(_run_one(task, prompt) for task, prompt in pairs)))

    async def execute_parallel(self, pairs: Sequence[TaskPromptPair]) -> ParallelExecutionResult:
        """Run every task concurrently, bounded by ``max_parallel``.

        Results are returned in input order. Tasks still waiting for a permit
        when the executor stops get a failed ``Execution stopped`` result.
        """
        self._stopped = False
        started = time.monotonic()
        results = await self._run_group(pairs)
        return ParallelExecutionResult(
            results=tuple(results), total_duration=time.monotonic() - started
        )

    async def execute_from_queue(
        self, queue: TaskQueue, prompt_builder: PromptBuilder
    ) -> ParallelExecutionResult:
        """Run the queue's pending tasks group by group and write results back.

        Tasks inside a group run concurrently; groups run one after another. A
        task whose dependencies have not all completed when its group comes up
        is marked ``blocked`` and never started. A task is marked ``running``
        only once it holds a permit, so after a stop every task that never
        spawned (later groups and permit waiters alike) stays ``pending`` and
        is reported as skipped.
        """
        self._stopped = False
        started = time.monotonic()

        satisfied = [t.id for t in queue.completed_tasks]
        groups = group_tasks_by_dependency(queue.pending_tasks, satisfied)
        logger.info(
            "Executing %d task(s) in %d group(s) with max_parallel=%d",
            sum(len(g.tasks) for g in groups),
            len(groups),
            self._config.max_parallel,
        )

        results: list[TaskExecutionResult] = []
        blocked: list[str] = []
        skipped: list[str] = []
        started_ids: set[str] = set()
        queue.status = QueueStatus.RUNNING

        def _mark_running(task: Task) -> None:
            started_ids.add(task.id)
            queue.update(task.id, TaskUpdate(status=TaskStatus.RUNNING))

        for index, group in enumerate(groups):
            if self._stopped:
                skipped.extend(t.id for g in groups[index:] for t in g.tasks)
                break

            runnable: list[Task] = []
            for task in group.tasks:
                unmet = queue.get_unmet_dependencies(task.id)
                if unmet:
                    queue.update(
                        task.id,
                        TaskUpdate(
                            status=TaskStatus.BLOCKED,
                            error=f"Blocked by unmet dependencies: {', '.join(unmet)}",
                        ),
                    )
                    blocked.append(task.id)
                    logger.warning("Task %s blocked by %s", task.id, unmet)
                    continue
                runnable.append(task)

            if not runnable:
                continue

            group_results = await self._dispatch_group(runnable, prompt_builder, _mark_running)
            for result in group_results:
                if result.task_id not in started_ids and result.error == STOPPED_ERROR:
                    skipped.append(result.task_id)
                    continue
                self._write_back(queue, result)
                results.append(result)

            if self._config.stop_on_error and any(not r.success for r in group_results):
                if not self._stopped:
                    self.stop()

        if any(not r.success for r in results):
            queue.status = QueueStatus.FAILED
        elif queue.is_complete():
            queue.status = QueueStatus.COMPLETED
        else:
            queue.status = QueueStatus.IDLE

        return ParallelExecutionResult(
            results=tuple(results),
            total_duration=time.monotonic() - started,
            blocked_task_ids=tuple(blocked),
            skipped_task_ids=tuple(skipped),
        )

    async def _dispatch_group(
        self,
        tasks: Sequence[Task],
        prompt_builder: PromptBuilder,
        on_start: StartHook,
    ) -> list[TaskExecutionResult]:
        prompts: dict[str, str] = {}
        failures: dict[str, TaskExecutionResult] = {}
        for task in tasks:
            try:
                prompts[task.id] = prompt_builder(task)
            except Exception as exc:
                logger.warning("Prompt builder failed for task %s: %s", task.id, exc)
                failures[task.id] = TaskExecutionResult(
                    task_id=task.id,
                    success=False,
                    duration=0.0,
                    error=f"Prompt builder failed: {exc}",
                )

        pairs = [TaskPromptPair(t, prompts[t.id]) for t in tasks if t.id in prompts]
        dispatched = await self._run_group(pairs, on_start)
        by_id = {r.task_id: r for r in dispatched}
        by_id.update(failures)
        return [by_id[t.id] for t in tasks]

    @staticmethod
    def _write_back(queue: TaskQueue, result: TaskExecutionResult) -> None:
        agent_id = result.agent.id if result.agent is not None else None
        if result.success:
            patch = TaskUpdate(
                status=TaskStatus.COMPLETED,
                error=None,
                output={"agent_id": agent_id},
                assigned_agent_id=agent_id,
            )
        elif agent_id is not None:
            patch = TaskUpdate(
                status=TaskStatus.FAILED, error=result.error, assigned_agent_id=agent_id
            )
        else:
            patch = TaskUpdate(status=TaskStatus.FAILED, error=result.error)
        queue.update(result.task_id, patch)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Stop dispatching and ask the runtime to stop running agents."""
        self._stopped = True
        for task_id, agent in list(self._active_agents.items()):
            current = self._runtime.get(agent.id) or agent
            if current.status not in (AgentStatus.STARTING, AgentStatus.RUNNING):
                continue
            try:
                self._runtime.stop(agent.id)
                logger.info("Requested stop of agent %s (task %s)", agent.id, task_id)
            except Exception:
                logger.exception("Failed to stop agent %s for task %s", agent.id, task_id)

    def clear(self) -> None:
        """Forget results and active agents and reset the stop flag."""
        self._results.clear()
        self._active_agents.clear()
        self._stopped = False


def create_parallel_executor(
    queue: TaskQueue,
    runtime: AgentRuntime,
    config: ExecutorConfig | None = None,
    *,
    cwd: Path | None = None,
) -> ParallelExecutor:
    """Build an executor for ``queue``.

    ``max_parallel`` falls back to the queue's value unless ``config`` sets it
    explicitly.
    """
    if config is None:
        config = ExecutorConfig(
            session_id=queue.session_id,
            cwd=cwd or Path.cwd(),
            max_parallel=queue.max_parallel,
        )
    elif "max_parallel" not in config.model_fields_set:
        config = config.model_copy(update={"max_parallel": queue.max_parallel})
    return ParallelExecutor(config, runtime)


async def execute_independent_tasks(
    queue: TaskQueue,
    prompt_builder: PromptBuilder,
    runtime: AgentRuntime,
    config: ExecutorConfig | None = None,
) -> ParallelExecutionResult:
    """Run the queue's pending work with a fresh executor."""
    executor = create_parallel_executor(queue, runtime, config)
    return await executor.execute_from_queue(queue, prompt_builder)


__all__ = [
    "STOPPED_ERROR",
    "ParallelExecutor",
    "create_parallel_executor",
    "execute_independent_tasks",
]
