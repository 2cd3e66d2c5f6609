"""Tests for the tw command line."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

from taskweave import __version__, commands
from taskweave.agents import runtime as agent_runtime
from taskweave.core.registry import discover_commands
from taskweave.main import app
from tests.mocks.fake_runtime import AgentScript, FakeAgentRuntime


@pytest.fixture
def fake_runtime(monkeypatch: Any) -> FakeAgentRuntime:
    runtime = FakeAgentRuntime()
    monkeypatch.setattr(agent_runtime, "build_runtime", lambda config: runtime)
    return runtime


def _plan(tmp_path: Path, tasks: list[dict[str, Any]], **extra: Any) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"session_id": "cli-test", "tasks": tasks, **extra}), "utf-8")
    return path


class TestBasics:
    def test_commands_discovered(self) -> None:
        specs = discover_commands(Path(commands.__file__).parent)
        assert [spec.name for spec in specs] == ["heal", "run", "plan"]

    def test_version(self, runner: CliRunner, capture_console: Console) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in capture_console.export_text()

    def test_config(self, runner: CliRunner, capture_console: Console) -> None:
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        output = capture_console.export_text()
        assert "executor" in output
        assert "File loaded: no" in output

    def test_safe_mode_banner(
        self, runner: CliRunner, capture_console: Console, isolate_config: Path
    ) -> None:
        isolate_config.write_text("[executor\n", encoding="utf-8")
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Safe Mode Active" in capture_console.export_text()


class TestPlanCommand:
    def test_groups_are_shown(
        self, runner: CliRunner, capture_console: Console, tmp_path: Path
    ) -> None:
        path = _plan(tmp_path, [{"id": "A"}, {"id": "B", "dependencies": ["A"]}, {"id": "C"}])
        result = runner.invoke(app, ["plan", str(path)])
        assert result.exit_code == 0
        output = capture_console.export_text()
        assert "A, C" in output
        assert "parallel" in output

    def test_cycle_exits_nonzero(
        self, runner: CliRunner, capture_console: Console, tmp_path: Path
    ) -> None:
        tasks = [{"id": "A", "dependencies": ["B"]}, {"id": "B", "dependencies": ["A"]}]
        path = _plan(tmp_path, tasks)
        result = runner.invoke(app, ["plan", str(path)])
        assert result.exit_code == 1
        output = capture_console.export_text()
        assert "circular" in output
        assert "waits on" in output

    def test_missing_plan(
        self, runner: CliRunner, capture_console: Console, tmp_path: Path
    ) -> None:
        result = runner.invoke(app, ["plan", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "Plan file not found" in capture_console.export_text()


class TestRunCommand:
    def test_successful_run(
        self,
        runner: CliRunner,
        capture_console: Console,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        path = _plan(tmp_path, [{"id": "A"}, {"id": "B", "dependencies": ["A"]}])
        result = runner.invoke(app, ["run", str(path), "--max-parallel", "1"])
        assert result.exit_code == 0, capture_console.export_text()
        prompts = fake_runtime.prompts()
        assert [p.splitlines()[0] for p in prompts] == ["# A", "# B"]
        output = capture_console.export_text()
        assert "max_parallel=1" in output
        assert "Outcome: succeeded" in output

    def test_failed_task_blocks_dependents(
        self,
        runner: CliRunner,
        capture_console: Console,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        fake_runtime.default = AgentScript(success=False, error="tests red")
        path = _plan(tmp_path, [{"id": "A"}, {"id": "B", "dependencies": ["A"]}])
        result = runner.invoke(app, ["run", str(path)])
        assert result.exit_code == 1
        output = capture_console.export_text()
        assert "tests red" in output
        assert "blocked" in output
        assert len(fake_runtime.spawned) == 1

    def test_skip_permissions_flag(
        self,
        runner: CliRunner,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        path = _plan(tmp_path, [{"id": "A"}])
        result = runner.invoke(app, ["run", str(path), "--skip-permissions"])
        assert result.exit_code == 0
        assert fake_runtime.spawned[0].dangerously_skip_permissions is True
        assert fake_runtime.spawned[0].session_id == "cli-test"


class TestHealCommand:
    @pytest.fixture(autouse=True)
    def fast_polling(self, isolate_config: Path) -> None:
        isolate_config.write_text("[healing]\npoll_interval = 0.01\n", encoding="utf-8")

    def _failure(self, tmp_path: Path) -> Path:
        path = tmp_path / "failure.json"
        path.write_text(
            json.dumps(
                {
                    "suiteId": "checkout",
                    "scenarioId": "pay",
                    "testName": "pays with card",
                    "error": "Element not found",
                }
            ),
            encoding="utf-8",
        )
        return path

    def test_successful_heal(
        self,
        runner: CliRunner,
        capture_console: Console,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        fake_runtime.default = AgentScript(output="Edited: src/Pay.tsx")
        result = runner.invoke(app, ["heal", str(self._failure(tmp_path)), "-s", "ci"])
        assert result.exit_code == 0, capture_console.export_text()
        output = capture_console.export_text()
        assert "Fix applied" in output
        assert "src/Pay.tsx" in output
        assert "self-healing:fix_success" in output
        assert all(o.session_id == "ci" for o in fake_runtime.spawned)

    def test_failed_heal(
        self,
        runner: CliRunner,
        capture_console: Console,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        fake_runtime.default = AgentScript(success=False, error="agent crashed")
        result = runner.invoke(app, ["heal", str(self._failure(tmp_path))])
        assert result.exit_code == 1
        assert "Fix failed" in capture_console.export_text()

    def test_invalid_failure_report(
        self,
        runner: CliRunner,
        capture_console: Console,
        fake_runtime: FakeAgentRuntime,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "failure.json"
        path.write_text('{"testName": "x"}', encoding="utf-8")
        result = runner.invoke(app, ["heal", str(path)])
        assert result.exit_code == 1
        assert "Invalid failure report" in capture_console.export_text()
        assert fake_runtime.spawned == []
