"""Data models for the self-healing pipeline.

A ``TestFailure`` is analyzed into an ``ErrorAnalysis``, turned into a
``FixPlan`` of ordered ``FixStep`` items, and applied to produce a
``FixResult``. All of these are immutable once built.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taskweave.core.config import HealingSettings


class RootCause(StrEnum):
    """Root-cause categories an analysis may report."""

    SELECTOR_CHANGED = "selector_changed"
    ELEMENT_NOT_RENDERED = "element_not_rendered"
    TIMING_ISSUE = "timing_issue"
    API_ERROR = "api_error"
    STATE_MISMATCH = "state_mismatch"
    MISSING_DATA = "missing_data"
    LOGIC_ERROR = "logic_error"
    UI_LAYOUT_CHANGE = "ui_layout_change"
    NETWORK_ERROR = "network_error"
    DEPENDENCY_ERROR = "dependency_error"
    TYPE_ERROR = "type_error"
    BUILD_ERROR = "build_error"
    UNKNOWN = "unknown"


class FixStepType(StrEnum):
    READ = "read"
    EDIT = "edit"
    WRITE = "write"
    DELETE = "delete"
    COMMAND = "command"
    ANALYSIS = "analysis"


class FixComplexity(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class HealingState(StrEnum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    FIXING = "fixing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(UTC)


class TestFailure(BaseModel):
    """A failed test or build step reported by the caller.

    Accepts both snake_case and camelCase keys (``suite_id`` / ``suiteId``).
    """

    __test__: ClassVar[bool] = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    suite_id: str
    scenario_id: str
    test_name: str
    error: str
    expected: str | None = None
    actual: str | None = None
    stack: str | None = None
    screenshot_path: str | None = None
    timestamp: datetime = Field(default_factory=_now)

    @property
    def key(self) -> str:
        """Stable key used to count attempts for this failure."""
        return f"{self.suite_id}:{self.scenario_id}"


class ErrorAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    root_cause: RootCause
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str
    suggested_fix: str = ""
    files_involved: list[str] = Field(default_factory=list)
    can_auto_fix: bool = False


class FixStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: int
    type: FixStepType
    target_file: str | None = None
    description: str = ""
    command: str | None = None
    expected_outcome: str = ""


class FixPlan(BaseModel):
    """Ordered steps to repair one failure.

    Attributes:
        id: Unique plan id ('fix-<epoch ms>-<random>')
        failure: The failure being repaired
        analysis: Analysis the plan was derived from
        steps: Steps in execution order
        model: Model hint recorded for the fix
        complexity: Estimated from the step count
    """

    model_config = ConfigDict(frozen=True)

    id: str
    failure: TestFailure
    analysis: ErrorAnalysis
    steps: list[FixStep]
    model: str
    complexity: FixComplexity
    created_at: datetime = Field(default_factory=_now)


class FixResult(BaseModel):
    """Outcome of one ``process_failure`` call.

    ``exhausted`` marks a short-circuit because the attempt cap was reached;
    ``escalate`` tells the caller it should escalate that failure.
    """

    model_config = ConfigDict(frozen=True)

    fix_plan_id: str
    success: bool
    agent_id: str | None = None
    output: str = ""
    error: str | None = None
    duration: float = 0.0
    files_modified: list[str] = Field(default_factory=list)
    exhausted: bool = False
    escalate: bool = False
    timestamp: datetime = Field(default_factory=_now)


@dataclass(frozen=True)
class HealingStats:
    total_attempts: int
    successful_fixes: int
    failed_fixes: int
    active_failures: int
    config: HealingSettings


__all__ = [
    "ErrorAnalysis",
    "FixComplexity",
    "FixPlan",
    "FixResult",
    "FixStep",
    "FixStepType",
    "HealingState",
    "HealingStats",
    "RootCause",
    "TestFailure",
]
