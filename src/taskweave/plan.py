"""Task plan files.

A plan is a JSON or TOML document listing the tasks of one session:

    {"session_id": "demo", "max_parallel": 2,
     "tasks": [{"id": "A", "description": "..."},
               {"id": "B", "description": "...", "dependencies": ["A"]}]}

``load_plan`` validates the file, ``build_queue`` turns it into a
``TaskQueue`` and ``build_prompt`` renders the default agent prompt per task.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from taskweave.agents.types import AgentType
from taskweave.core.result import Err, Ok, Result, ValidationError
from taskweave.queue.task_queue import DEFAULT_MAX_PARALLEL, TaskCreateOptions, TaskQueue
from taskweave.structures.dag import Task, TaskPriority, TaskType


class PlanTask(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str = ""
    description: str = ""
    type: TaskType = TaskType.IMPLEMENT
    priority: TaskPriority = TaskPriority.NORMAL
    dependencies: list[str] = Field(default_factory=list)
    agent_type: AgentType | None = None
    input: dict[str, Any] = Field(default_factory=dict)


class TaskPlan(BaseModel):
    """Validated contents of a plan file."""

    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(default_factory=lambda: f"session-{uuid4().hex[:8]}")
    max_parallel: int | None = None
    tasks: list[PlanTask] = Field(default_factory=list)

    @field_validator("tasks")
    @classmethod
    def unique_ids(cls, tasks: list[PlanTask]) -> list[PlanTask]:
        seen: set[str] = set()
        for task in tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id: {task.id}")
            seen.add(task.id)
        return tasks


def load_plan(path: Path) -> Result[TaskPlan, ValidationError]:
    """Read and validate a plan file (``.json`` or TOML)."""
    if not path.is_file():
        return Err(ValidationError("Plan file not found", context={"path": str(path)}))

    raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw) if path.suffix.lower() == ".json" else tomllib.loads(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        return Err(
            ValidationError(
                "Plan file is not valid",
                context={"path": str(path), "error": str(exc)},
            )
        )

    try:
        return Ok(TaskPlan.model_validate(data))
    except PydanticValidationError as exc:
        return Err(
            ValidationError(
                "Plan does not match the expected shape",
                context={"path": str(path), "errors": exc.error_count()},
            )
        )


def build_queue(plan: TaskPlan, *, max_parallel: int | None = None) -> TaskQueue:
    queue = TaskQueue(plan.session_id, max_parallel or plan.max_parallel or DEFAULT_MAX_PARALLEL)
    queue.add_many(TaskCreateOptions(**task.model_dump()) for task in plan.tasks)
    return queue


def build_prompt(task: Task) -> str:
    """Default prompt for a task: title, description and any structured input."""
    lines = [f"# {task.title or task.id}", ""]
    if task.description:
        lines += [task.description, ""]
    lines += [f"Task type: {task.type}", f"Priority: {task.priority}"]
    if task.dependencies:
        lines.append("Builds on completed tasks: " + ", ".join(task.dependencies))
    if task.input:
        lines += ["", "## Input", "```json", json.dumps(task.input, indent=2), "```"]
    return "\n".join(lines) + "\n"


__all__ = ["PlanTask", "TaskPlan", "build_prompt", "build_queue", "load_plan"]
