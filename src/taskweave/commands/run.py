from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from taskweave.agents import runtime as agent_runtime
from taskweave.core.console import console
from taskweave.core.result import Err, Ok
from taskweave.plan import TaskPlan, build_prompt, build_queue, load_plan
from taskweave.queue.task_queue import TaskQueue
from taskweave.structures.dag import group_tasks_by_dependency, validate_acyclic
from taskweave.swarm.executor import create_parallel_executor
from taskweave.swarm.types import ExecutionOutcome, ExecutorConfig, ParallelExecutionResult

if TYPE_CHECKING:
    from taskweave.main import AppState


def _load_or_exit(plan_path: Path) -> TaskPlan:
    match load_plan(plan_path):
        case Ok(plan):
            return plan
        case Err(err):
            console.print(f"[red]{escape(str(err))}[/red]")
            raise typer.Exit(code=1)


def _render_groups(queue: TaskQueue) -> Table:
    table = Table(title=f"Plan {queue.session_id}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Group", style="cyan", no_wrap=True)
    table.add_column("Mode", style="magenta")
    table.add_column("Tasks", style="white")

    groups = group_tasks_by_dependency(queue.pending_tasks)
    for index, group in enumerate(groups, start=1):
        if group.is_independent:
            mode = "parallel"
        elif group.dependencies:
            mode = "[yellow]waits on " + ", ".join(group.dependencies) + "[/yellow]"
        else:
            mode = "serial"
        table.add_row(str(index), mode, ", ".join(group.task_ids))
    return table


def _render_results(result: ParallelExecutionResult) -> Table:
    table = Table(title="Results", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Agent", style="dim")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="red")

    for item in result.results:
        status = "[green]completed[/green]" if item.success else "[red]failed[/red]"
        table.add_row(
            item.task_id,
            status,
            item.agent.id if item.agent else "-",
            f"{item.duration:.1f}s",
            escape(item.error or ""),
        )
    for task_id in result.blocked_task_ids:
        table.add_row(task_id, "[yellow]blocked[/yellow]", "-", "-", "")
    for task_id in result.skipped_task_ids:
        table.add_row(task_id, "[dim]skipped[/dim]", "-", "-", "")
    return table


def show_plan(
    ctx: typer.Context,
    plan_path: Path = typer.Argument(..., help="Plan file (JSON or TOML)."),
) -> None:
    """Show how a plan's tasks group into parallel waves."""
    plan = _load_or_exit(plan_path)
    queue = build_queue(plan)

    console.print(_render_groups(queue))

    if not validate_acyclic(queue.tasks):
        console.print("[red]Plan has circular dependencies; affected tasks cannot run.[/red]")
        raise typer.Exit(code=1)


async def _execute(
    queue: TaskQueue, state: AppState, config: ExecutorConfig
) -> ParallelExecutionResult:
    runtime = agent_runtime.build_runtime(state.config)
    try:
        executor = create_parallel_executor(queue, runtime, config)
        return await executor.execute_from_queue(queue, build_prompt)
    finally:
        await runtime.close()


def run(
    ctx: typer.Context,
    plan_path: Path = typer.Argument(..., help="Plan file (JSON or TOML)."),
    max_parallel: int | None = typer.Option(
        None, "--max-parallel", "-p", help="Maximum agents running at once."
    ),
    stop_on_error: bool | None = typer.Option(
        None, "--stop-on-error/--keep-going", help="Stop dispatching after the first failure."
    ),
    skip_permissions: bool | None = typer.Option(
        None,
        "--skip-permissions/--ask-permissions",
        help="Run agents without confirmation prompts.",
    ),
) -> None:
    """Execute a task plan, running independent tasks in parallel."""
    state: AppState = ctx.obj
    plan = _load_or_exit(plan_path)

    limit = max_parallel or plan.max_parallel or state.config.executor.max_parallel
    queue = build_queue(plan, max_parallel=limit)
    config = ExecutorConfig.from_settings(
        state.config.executor,
        cwd=state.config.workspace_root,
        session_id=queue.session_id,
        max_parallel=limit,
        stop_on_error=stop_on_error,
        dangerously_skip_permissions=skip_permissions,
    )

    console.print(
        f"[bold]Session[/bold] {queue.session_id}: {queue.size} task(s), "
        f"max_parallel={config.max_parallel}"
    )

    try:
        result = asyncio.run(_execute(queue, state, config))
    except KeyboardInterrupt:
        console.print("[yellow]Run cancelled by user.[/yellow]")
        raise typer.Exit(code=1)

    console.print(_render_results(result))

    summary = (
        f"{result.successful_tasks} succeeded, {result.failed_tasks} failed, "
        f"{len(result.blocked_task_ids)} blocked, {len(result.skipped_task_ids)} skipped "
        f"in {result.total_duration:.1f}s"
    )
    style = "green" if result.all_success else "red"
    console.print(
        Panel(summary, title=f"Outcome: {result.outcome}", border_style=style, box=box.SIMPLE)
    )

    if result.outcome is ExecutionOutcome.NOTHING_ATTEMPTED and queue.size == 0:
        console.print("[dim]Plan has no tasks.[/dim]")
    if not result.all_success:
        raise typer.Exit(code=1)


__all__ = ["run", "show_plan"]
