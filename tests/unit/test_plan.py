"""Tests for plan files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskweave.agents.types import AgentType
from taskweave.core.result import Err, Ok
from taskweave.plan import TaskPlan, build_prompt, build_queue, load_plan
from taskweave.structures.dag import Task, TaskPriority, TaskStatus, TaskType


def _write_json(path: Path, data: object) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestLoadPlan:
    def test_json_plan(self, tmp_path: Path) -> None:
        path = _write_json(
            tmp_path / "plan.json",
            {
                "session_id": "demo",
                "max_parallel": 2,
                "tasks": [
                    {"id": "A", "title": "Schema", "type": "plan"},
                    {"id": "B", "dependencies": ["A"], "agent_type": "tester", "priority": "high"},
                ],
            },
        )
        match load_plan(path):
            case Ok(plan):
                assert plan.session_id == "demo"
                assert plan.max_parallel == 2
                assert plan.tasks[0].type is TaskType.PLAN
                assert plan.tasks[1].agent_type is AgentType.TESTER
                assert plan.tasks[1].priority is TaskPriority.HIGH
            case Err(err):
                pytest.fail(f"unexpected error: {err}")

    def test_toml_plan(self, tmp_path: Path) -> None:
        path = tmp_path / "plan.toml"
        path.write_text(
            '[[tasks]]\nid = "A"\n\n[[tasks]]\nid = "B"\ndependencies = ["A"]\n',
            encoding="utf-8",
        )
        match load_plan(path):
            case Ok(plan):
                assert [t.id for t in plan.tasks] == ["A", "B"]
                assert plan.session_id.startswith("session-")
            case Err(err):
                pytest.fail(f"unexpected error: {err}")

    def test_missing_file(self, tmp_path: Path) -> None:
        match load_plan(tmp_path / "nope.json"):
            case Err(err):
                assert err.message == "Plan file not found"
            case Ok(_):
                pytest.fail("missing file accepted")

    def test_syntax_error(self, tmp_path: Path) -> None:
        path = tmp_path / "plan.json"
        path.write_text("{tasks: ", encoding="utf-8")
        match load_plan(path):
            case Err(err):
                assert err.message == "Plan file is not valid"
            case Ok(_):
                pytest.fail("broken file accepted")

    def test_duplicate_ids_rejected(self, tmp_path: Path) -> None:
        path = _write_json(tmp_path / "plan.json", {"tasks": [{"id": "A"}, {"id": "A"}]})
        match load_plan(path):
            case Err(err):
                assert err.message == "Plan does not match the expected shape"
            case Ok(_):
                pytest.fail("duplicate ids accepted")

    def test_unknown_fields_rejected(self) -> None:
        with pytest.raises(ValueError):
            TaskPlan.model_validate({"tasks": [{"id": "A", "deps": ["B"]}]})


class TestBuildQueue:
    def test_tasks_are_queued_pending(self) -> None:
        plan = TaskPlan.model_validate(
            {"session_id": "demo", "max_parallel": 4, "tasks": [{"id": "A"}, {"id": "B"}]}
        )
        queue = build_queue(plan)
        assert queue.session_id == "demo"
        assert queue.max_parallel == 4
        assert [t.id for t in queue.tasks] == ["A", "B"]
        assert all(t.status is TaskStatus.PENDING for t in queue.tasks)

    def test_override_wins_over_plan(self) -> None:
        plan = TaskPlan.model_validate({"max_parallel": 4, "tasks": []})
        assert build_queue(plan, max_parallel=1).max_parallel == 1

    def test_default_max_parallel(self) -> None:
        assert build_queue(TaskPlan()).max_parallel == 3


def test_build_prompt_includes_context() -> None:
    task = Task(
        id="B",
        title="Add endpoint",
        description="Expose GET /orders",
        dependencies=["A"],
        input={"path": "/orders"},
    )
    prompt = build_prompt(task)
    assert prompt.startswith("# Add endpoint\n")
    assert "Expose GET /orders" in prompt
    assert "Builds on completed tasks: A" in prompt
    assert '"path": "/orders"' in prompt


def test_build_prompt_falls_back_to_id() -> None:
    assert build_prompt(Task(id="lonely")).startswith("# lonely\n")
