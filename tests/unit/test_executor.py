"""Tests for the bounded parallel executor."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

import pytest

from taskweave.agents.types import AgentHandle, AgentSpawnOptions, AgentStatus, AgentType
from taskweave.core.events import AgentEvent
from taskweave.queue.task_queue import QueueStatus, TaskCreateOptions, TaskQueue, TaskUpdate
from taskweave.structures.dag import Task, TaskStatus
from taskweave.swarm import (
    ExecutionOutcome,
    ExecutorConfig,
    ParallelExecutor,
    TaskPromptPair,
    create_parallel_executor,
    execute_independent_tasks,
)
from taskweave.swarm.executor import STOPPED_ERROR
from tests.mocks.fake_runtime import AgentScript, FakeAgentRuntime, RaisingRuntime


def _config(tmp_path: Path, **overrides: Any) -> ExecutorConfig:
    return ExecutorConfig(session_id="session-test", cwd=tmp_path, **overrides)


def _pairs(*ids: str) -> list[TaskPromptPair]:
    return [TaskPromptPair(Task(id=task_id), task_id) for task_id in ids]


def _queue(*specs: tuple[str, list[str]], max_parallel: int = 3) -> TaskQueue:
    queue = TaskQueue("session-test", max_parallel)
    for task_id, deps in specs:
        queue.add(TaskCreateOptions(id=task_id, dependencies=deps))
    return queue


def _prompt(task: Task) -> str:
    return task.id


def _fail_on(*prompts: str, delay: float = 0.0) -> FakeAgentRuntime:
    def rule(options: AgentSpawnOptions) -> AgentScript | None:
        if options.prompt in prompts:
            return AgentScript(delay=delay, success=False, error=f"{options.prompt} broke")
        return None

    return FakeAgentRuntime(AgentScript(delay=delay), rule=rule)


class TestExecutorConfig:
    def test_max_parallel_clamped(self, tmp_path: Path) -> None:
        assert _config(tmp_path, max_parallel=0).max_parallel == 1

    def test_unknown_fields_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            _config(tmp_path, retries=2)


class TestExecuteTask:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.01))
        executor = ParallelExecutor(_config(tmp_path, max_turns=7), runtime)

        result = await executor.execute_task(Task(id="A"), "do A")

        assert result.success is True
        assert result.error is None
        assert result.agent is not None
        assert result.agent.status is AgentStatus.COMPLETED
        assert result.duration > 0
        assert executor.get_result("A") == result

        options = runtime.spawned[0]
        assert options.prompt == "do A"
        assert options.session_id == "session-test"
        assert options.cwd == tmp_path
        assert options.max_turns == 7
        assert options.agent_type is AgentType.IMPLEMENTER

    @pytest.mark.asyncio
    async def test_task_agent_type_wins(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime()
        executor = ParallelExecutor(_config(tmp_path), runtime)
        await executor.execute_task(Task(id="A", agent_type=AgentType.TESTER), "A")
        assert runtime.spawned[0].agent_type is AgentType.TESTER

    @pytest.mark.asyncio
    async def test_agent_error_becomes_failed_result(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(success=False, error="compile error"))
        executor = ParallelExecutor(_config(tmp_path), runtime)

        result = await executor.execute_task(Task(id="A"), "A")

        assert result.success is False
        assert result.error == "compile error"
        assert result.agent is not None

    @pytest.mark.asyncio
    async def test_spawn_failure_becomes_failed_result(self, tmp_path: Path) -> None:
        executor = ParallelExecutor(_config(tmp_path), RaisingRuntime())

        result = await executor.execute_task(Task(id="A"), "A")

        assert result.success is False
        assert result.agent is None
        assert result.error is not None and "Agent binary not found" in result.error
        assert executor.available_permits == 3
        assert executor.running_count == 0

    @pytest.mark.asyncio
    async def test_agent_already_finished_before_wait(self, tmp_path: Path) -> None:
        class InstantRuntime(FakeAgentRuntime):
            async def spawn(self, options: AgentSpawnOptions) -> AgentHandle:
                handle = await super().spawn(options)
                handle.status = AgentStatus.COMPLETED
                return handle

        executor = ParallelExecutor(_config(tmp_path), InstantRuntime(AgentScript(finish=False)))
        result = await executor.execute_task(Task(id="A"), "A")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_listeners_removed_after_each_task(self, tmp_path: Path) -> None:
        runtime = _fail_on("B")
        executor = ParallelExecutor(_config(tmp_path), runtime)

        await executor.execute_parallel(_pairs("A", "B", "C"))

        assert runtime.events.listener_count(AgentEvent.COMPLETED) == 0
        assert runtime.events.listener_count(AgentEvent.ERROR) == 0


class TestExecuteParallel:
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.05))
        executor = ParallelExecutor(_config(tmp_path, max_parallel=2), runtime)

        result = await executor.execute_parallel(_pairs("A", "B", "C", "D", "E"))

        assert runtime.max_active == 2
        assert result.total_tasks == 5
        assert result.all_success
        assert executor.available_permits == 2

    @pytest.mark.asyncio
    async def test_serialized_when_max_parallel_is_one(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.1))
        executor = ParallelExecutor(_config(tmp_path, max_parallel=1), runtime)

        started = time.monotonic()
        await executor.execute_parallel(_pairs("A", "B"))

        assert time.monotonic() - started >= 0.19
        assert runtime.max_active == 1

    @pytest.mark.asyncio
    async def test_wall_time_scales_with_batches(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.1))
        executor = ParallelExecutor(_config(tmp_path, max_parallel=2), runtime)

        started = time.monotonic()
        result = await executor.execute_parallel(_pairs("A", "B", "C", "D"))
        elapsed = time.monotonic() - started

        assert result.all_success
        assert 0.19 <= elapsed < 0.35

    @pytest.mark.asyncio
    async def test_results_keep_input_order_and_agents(self, tmp_path: Path) -> None:
        delays = {"A": 0.06, "B": 0.0, "C": 0.03}
        runtime = FakeAgentRuntime(rule=lambda opts: AgentScript(delay=delays[opts.prompt]))
        executor = ParallelExecutor(_config(tmp_path), runtime)

        result = await executor.execute_parallel(_pairs("A", "B", "C"))

        assert [r.task_id for r in result.results] == ["A", "B", "C"]
        by_prompt = {opts.prompt: f"fake-{n}" for n, opts in enumerate(runtime.spawned, 1)}
        for item in result.results:
            assert item.agent is not None
            assert item.agent.id == by_prompt[item.task_id]

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self, tmp_path: Path) -> None:
        runtime = _fail_on("B", delay=0.01)
        executor = ParallelExecutor(_config(tmp_path), runtime)

        result = await executor.execute_parallel(_pairs("A", "B", "C"))

        assert [r.success for r in result.results] == [True, False, True]
        assert result.failed_tasks == 1
        assert result.successful_tasks == 2
        assert result.outcome is ExecutionOutcome.FAILED
        assert not result.all_success

    @pytest.mark.asyncio
    async def test_empty_input(self, tmp_path: Path) -> None:
        result = await ParallelExecutor(_config(tmp_path), FakeAgentRuntime()).execute_parallel([])
        assert result.results == ()
        assert result.outcome is ExecutionOutcome.NOTHING_ATTEMPTED

    @pytest.mark.asyncio
    async def test_stop_on_error_skips_waiting_tasks(self, tmp_path: Path) -> None:
        runtime = _fail_on("A", delay=0.02)
        executor = ParallelExecutor(_config(tmp_path, max_parallel=1, stop_on_error=True), runtime)

        result = await executor.execute_parallel(_pairs("A", "B", "C"))

        assert runtime.prompts() == ["A"]
        assert result.get("B") is not None
        assert [r.error for r in result.results[1:]] == [STOPPED_ERROR, STOPPED_ERROR]
        assert executor.is_stopped

    @pytest.mark.asyncio
    async def test_stop_terminates_running_agents(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(finish=False))
        executor = ParallelExecutor(_config(tmp_path), runtime)

        pending = asyncio.create_task(executor.execute_parallel(_pairs("A", "B")))
        while executor.running_count < 2:
            await asyncio.sleep(0.005)
        executor.stop()
        result = await pending

        assert sorted(runtime.stop_calls) == ["fake-1", "fake-2"]
        assert all(r.error == "Agent stopped" for r in result.results)

    @pytest.mark.asyncio
    async def test_stop_skips_finished_agents(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime()
        executor = ParallelExecutor(_config(tmp_path), runtime)
        await executor.execute_task(Task(id="A"), "A")
        executor.stop()
        assert runtime.stop_calls == []

    @pytest.mark.asyncio
    async def test_clear_resets_state(self, tmp_path: Path) -> None:
        executor = ParallelExecutor(_config(tmp_path), FakeAgentRuntime())
        await executor.execute_task(Task(id="A"), "A")
        executor.stop()
        executor.clear()
        assert executor.results_collected == 0
        assert not executor.is_stopped


class TestExecuteFromQueue:
    @pytest.mark.asyncio
    async def test_dependent_task_waits_for_dependency(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.02))
        queue = _queue(("A", []), ("B", ["A"]), ("C", []))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, _prompt)

        assert result.all_success
        assert runtime.timeline.index(("done", "A")) < runtime.timeline.index(("spawn", "B"))
        assert queue.status is QueueStatus.COMPLETED
        assert queue.is_complete()
        for task in queue.tasks:
            assert task.status is TaskStatus.COMPLETED
            assert task.assigned_agent_id is not None
            assert task.output == {"agent_id": task.assigned_agent_id}
            assert task.started_at is not None and task.completed_at is not None

    @pytest.mark.asyncio
    async def test_dependent_submitted_first_still_waits(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime(AgentScript(delay=0.02))
        queue = _queue(("B", ["A"]), ("A", []))
        statuses_at_spawn: dict[str, TaskStatus] = {}

        def rule(options: AgentSpawnOptions) -> AgentScript | None:
            b = queue.get("B")
            assert b is not None
            statuses_at_spawn[options.prompt] = b.status
            return None

        runtime.rule = rule
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, _prompt)

        assert result.all_success
        assert runtime.prompts() == ["A", "B"]
        assert statuses_at_spawn["A"] is TaskStatus.PENDING
        a, b = queue.get("A"), queue.get("B")
        assert a is not None and b is not None
        assert a.completed_at is not None and b.started_at is not None
        assert b.started_at >= a.completed_at

    @pytest.mark.asyncio
    async def test_failed_dependency_blocks_dependents(self, tmp_path: Path) -> None:
        runtime = _fail_on("A")
        queue = _queue(("A", []), ("B", ["A"]), ("C", ["B"]), ("D", []))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, _prompt)

        assert runtime.prompts() == ["A", "D"]
        assert result.blocked_task_ids == ("B", "C")
        assert result.outcome is ExecutionOutcome.FAILED
        b = queue.get("B")
        assert b is not None and b.status is TaskStatus.BLOCKED
        assert b.error == "Blocked by unmet dependencies: A"
        a = queue.get("A")
        assert a is not None and a.status is TaskStatus.FAILED and a.error == "A broke"
        assert queue.status is QueueStatus.FAILED

    @pytest.mark.asyncio
    async def test_cycle_is_blocked_not_dropped(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime()
        queue = _queue(("A", ["B"]), ("B", ["A"]), ("C", []))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, _prompt)

        assert runtime.prompts() == ["C"]
        assert set(result.blocked_task_ids) == {"A", "B"}
        assert result.outcome is ExecutionOutcome.BLOCKED
        assert queue.status is QueueStatus.IDLE

    @pytest.mark.asyncio
    async def test_completed_tasks_satisfy_dependencies(self, tmp_path: Path) -> None:
        runtime = FakeAgentRuntime()
        queue = _queue(("A", []), ("B", ["A"]))
        queue.update("A", TaskUpdate(status=TaskStatus.COMPLETED))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, _prompt)

        assert runtime.prompts() == ["B"]
        assert result.all_success

    @pytest.mark.asyncio
    async def test_stop_on_error_skips_later_groups(self, tmp_path: Path) -> None:
        runtime = _fail_on("A")
        queue = _queue(("A", []), ("B", []), ("C", ["B"]))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path, stop_on_error=True))

        result = await executor.execute_from_queue(queue, _prompt)

        assert "C" not in runtime.prompts()
        assert result.skipped_task_ids == ("C",)
        c = queue.get("C")
        assert c is not None and c.status is TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_stop_on_error_leaves_permit_waiters_pending(self, tmp_path: Path) -> None:
        runtime = _fail_on("A", delay=0.02)
        queue = _queue(("A", []), ("B", []), ("C", []))
        config = _config(tmp_path, max_parallel=1, stop_on_error=True)
        executor = create_parallel_executor(queue, runtime, config)

        result = await executor.execute_from_queue(queue, _prompt)

        assert runtime.prompts() == ["A"]
        assert result.skipped_task_ids == ("B", "C")
        assert result.total_tasks == 1
        assert result.failed_tasks == 1
        assert [r.task_id for r in result.results] == ["A"]
        for task_id in ("B", "C"):
            task = queue.get(task_id)
            assert task is not None
            assert task.status is TaskStatus.PENDING
            assert task.started_at is None
            assert task.error is None

        retry = create_parallel_executor(queue, FakeAgentRuntime(), _config(tmp_path))
        again = await retry.execute_from_queue(queue, _prompt)
        assert [r.task_id for r in again.results] == ["B", "C"]

    @pytest.mark.asyncio
    async def test_prompt_builder_failure_only_fails_that_task(self, tmp_path: Path) -> None:
        def builder(task: Task) -> str:
            if task.id == "B":
                raise KeyError("template")
            return task.id

        runtime = FakeAgentRuntime()
        queue = _queue(("A", []), ("B", []))
        executor = create_parallel_executor(queue, runtime, _config(tmp_path))

        result = await executor.execute_from_queue(queue, builder)

        assert runtime.prompts() == ["A"]
        failed = result.get("B")
        assert failed is not None and failed.error is not None
        assert failed.error.startswith("Prompt builder failed:")

    @pytest.mark.asyncio
    async def test_retry_of_blocked_task_after_dependency_completes(self, tmp_path: Path) -> None:
        queue = _queue(("A", []), ("B", ["A"]))
        first = create_parallel_executor(queue, _fail_on("A"), _config(tmp_path))
        await first.execute_from_queue(queue, _prompt)
        queue.update("A", TaskUpdate(status=TaskStatus.COMPLETED, error=None))

        runtime = FakeAgentRuntime()
        second = create_parallel_executor(queue, runtime, _config(tmp_path))
        result = await second.execute_from_queue(queue, _prompt)

        assert runtime.prompts() == ["B"]
        assert result.all_success
        assert queue.status is QueueStatus.COMPLETED


class TestFactories:
    def test_queue_max_parallel_used_when_not_set(self, tmp_path: Path) -> None:
        queue = _queue(max_parallel=5)
        executor = create_parallel_executor(queue, FakeAgentRuntime(), _config(tmp_path))
        assert executor.config.max_parallel == 5

    def test_explicit_max_parallel_wins(self, tmp_path: Path) -> None:
        queue = _queue(max_parallel=5)
        executor = create_parallel_executor(
            queue, FakeAgentRuntime(), _config(tmp_path, max_parallel=2)
        )
        assert executor.config.max_parallel == 2

    def test_default_config_uses_queue_session(self, tmp_path: Path) -> None:
        queue = _queue(max_parallel=4)
        executor = create_parallel_executor(queue, FakeAgentRuntime(), cwd=tmp_path)
        assert executor.config.session_id == "session-test"
        assert executor.config.cwd == tmp_path
        assert executor.available_permits == 4

    @pytest.mark.asyncio
    async def test_execute_independent_tasks(self, tmp_path: Path) -> None:
        queue = _queue(("A", []), ("B", []))
        runtime = FakeAgentRuntime()
        result = await execute_independent_tasks(queue, _prompt, runtime, _config(tmp_path))
        assert result.total_tasks == 2
        assert queue.is_complete()
