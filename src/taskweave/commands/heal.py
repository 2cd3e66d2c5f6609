from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.markup import escape
from rich.panel import Panel

from taskweave.agents import runtime as agent_runtime
from taskweave.core.console import console
from taskweave.healing.models import FixResult, TestFailure
from taskweave.healing.notifications import StatusMessage
from taskweave.healing.registry import SelfHealingRegistry

if TYPE_CHECKING:
    from taskweave.core.config import AppConfig
    from taskweave.main import AppState


def _load_failure(path: Path) -> TestFailure:
    try:
        return TestFailure.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as exc:
        console.print(f"[red]Could not read {path}: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    except PydanticValidationError as exc:
        console.print(f"[red]Invalid failure report {path}:[/red]\n{escape(str(exc))}")
        raise typer.Exit(code=1)


def _console_sink(session_id: str, message: StatusMessage) -> None:
    details = json.dumps(message.payload, default=str)
    console.print(f"[dim]{session_id}[/dim] [cyan]{message.event}[/cyan] {escape(details)}")


async def _heal(config: AppConfig, session_id: str, failure: TestFailure) -> FixResult:
    runtime = agent_runtime.build_runtime(config)
    registry = SelfHealingRegistry(
        runtime,
        defaults=config.healing,
        cwd=config.workspace_root,
        sink=_console_sink,
    )
    try:
        return await registry.get(session_id).process_failure(failure)
    finally:
        await runtime.close()


def _render_result(result: FixResult) -> Panel:
    lines = [
        f"Fix plan: {result.fix_plan_id}",
        f"Agent: {result.agent_id or '-'}",
        f"Duration: {result.duration:.1f}s",
    ]
    if result.files_modified:
        lines.append("Files modified: " + ", ".join(result.files_modified))
    if result.error:
        lines.append(f"Error: {escape(result.error)}")
    if result.exhausted:
        lines.append("[yellow]Attempts exhausted for this failure.[/yellow]")
    if result.escalate:
        lines.append("[bold red]Escalate: manual attention required.[/bold red]")

    title = "Fix applied" if result.success else "Fix failed"
    style = "green" if result.success else "red"
    return Panel("\n".join(lines), title=title, border_style=style, box=box.ROUNDED)


def heal(
    ctx: typer.Context,
    failure_path: Path = typer.Argument(..., help="JSON failure report to repair."),
    session: str = typer.Option("cli", "--session", "-s", help="Session id for the attempt."),
) -> None:
    """Analyze a test failure and let debugger agents attempt a fix."""
    state: AppState = ctx.obj
    failure = _load_failure(failure_path)

    console.print(
        f"[bold]Healing[/bold] {escape(failure.test_name)} ([dim]{escape(failure.key)}[/dim])"
    )

    try:
        result = asyncio.run(_heal(state.config, session, failure))
    except KeyboardInterrupt:
        console.print("[yellow]Healing cancelled by user.[/yellow]")
        raise typer.Exit(code=1)

    console.print(_render_result(result))

    if not result.success:
        raise typer.Exit(code=1)


__all__ = ["heal"]
