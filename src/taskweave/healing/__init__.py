"""Self-healing: agent-driven analysis and repair of test failures.

Key classes:
- SelfHealing: Per-session analyze -> plan -> apply state machine
- SelfHealingRegistry: Session id -> engine, owned by the caller
- TestFailure / ErrorAnalysis / FixPlan / FixResult: Pipeline artifacts
"""

from taskweave.healing.engine import SelfHealing
from taskweave.healing.models import (
    ErrorAnalysis,
    FixComplexity,
    FixPlan,
    FixResult,
    FixStep,
    FixStepType,
    HealingState,
    HealingStats,
    RootCause,
    TestFailure,
)
from taskweave.healing.notifications import HealingEvent, NotificationSink, StatusMessage
from taskweave.healing.registry import SelfHealingRegistry

__all__ = [
    "ErrorAnalysis",
    "FixComplexity",
    "FixPlan",
    "FixResult",
    "FixStep",
    "FixStepType",
    "HealingEvent",
    "HealingState",
    "HealingStats",
    "NotificationSink",
    "RootCause",
    "SelfHealing",
    "SelfHealingRegistry",
    "StatusMessage",
    "TestFailure",
]
