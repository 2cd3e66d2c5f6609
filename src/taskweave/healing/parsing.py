"""Decoding of agent output into analysis and plan models.

Agents are asked for a JSON object, but their output is free text. Decoding
looks for a fenced ```json block first and then for the outermost ``{...}``
span. If neither yields a JSON object, the heuristic path builds the same
model from the raw error text, so parsing never raises.
"""

from __future__ import annotations

import json
import logging
import math
import re
import secrets
import string
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from taskweave.healing.models import (
    ErrorAnalysis,
    FixComplexity,
    FixPlan,
    FixStep,
    FixStepType,
    RootCause,
    TestFailure,
)

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE = 0.5
HEURISTIC_EXPLANATION = "Heuristic analysis based on error message patterns"
HEURISTIC_SUGGESTED_FIX = "Review the error and apply appropriate fix"
DEFAULT_EXPLANATION = "No explanation provided"

_FENCED_JSON = re.compile(r"```json\s*?\n?(.*?)\n?```", re.DOTALL)
_BARE_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_MODIFIED_FILE_PATTERNS = (
    re.compile(r"Edited: ([^\n]+)"),
    re.compile(r"Modified: ([^\n]+)"),
    re.compile(r"Updated: ([^\n]+)"),
    re.compile(r"Wrote: ([^\n]+)"),
)

# First match wins; order matters.
_HEURISTICS: tuple[tuple[tuple[str, ...], RootCause, bool], ...] = (
    (("selector", "element", "find"), RootCause.SELECTOR_CHANGED, True),
    (("timeout", "waiting"), RootCause.TIMING_ISSUE, True),
    (("network", "fetch", "connection"), RootCause.NETWORK_ERROR, False),
    (("api", "endpoint"), RootCause.API_ERROR, True),
    (("type", "typescript"), RootCause.TYPE_ERROR, True),
    (("build", "compile"), RootCause.BUILD_ERROR, True),
    (("undefined", "null"), RootCause.MISSING_DATA, True),
    (("dependency", "module"), RootCause.DEPENDENCY_ERROR, True),
)

_FIX_ID_ALPHABET = string.ascii_lowercase + string.digits


# -----------------------------------------------------------------------------
# Lenient payloads
# -----------------------------------------------------------------------------


class _AnalysisPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    root_cause: RootCause = RootCause.UNKNOWN
    confidence: float = HEURISTIC_CONFIDENCE
    explanation: str = DEFAULT_EXPLANATION
    suggested_fix: str = ""
    files_involved: list[str] = Field(default_factory=list)
    can_auto_fix: bool = False

    @field_validator("root_cause", mode="before")
    @classmethod
    def coerce_root_cause(cls, v: Any) -> RootCause:
        try:
            return RootCause(v)
        except ValueError:
            return RootCause.UNKNOWN

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> float:
        if isinstance(v, bool) or not isinstance(v, int | float) or not math.isfinite(v):
            return HEURISTIC_CONFIDENCE
        return min(1.0, max(0.0, float(v)))

    @field_validator("explanation", mode="before")
    @classmethod
    def coerce_explanation(cls, v: Any) -> str:
        return v if isinstance(v, str) and v else DEFAULT_EXPLANATION

    @field_validator("suggested_fix", mode="before")
    @classmethod
    def coerce_suggested_fix(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("files_involved", mode="before")
    @classmethod
    def coerce_files(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, str)]

    @field_validator("can_auto_fix", mode="before")
    @classmethod
    def coerce_can_auto_fix(cls, v: Any) -> bool:
        return v is True


class _StepPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    order: int = 0
    type: FixStepType = FixStepType.ANALYSIS
    target_file: str | None = None
    description: str = ""
    command: str | None = None
    expected_outcome: str = ""

    @field_validator("order", mode="before")
    @classmethod
    def coerce_order(cls, v: Any) -> int:
        return v if isinstance(v, int) and not isinstance(v, bool) else 0

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> FixStepType:
        try:
            return FixStepType(v)
        except ValueError:
            return FixStepType.ANALYSIS

    @field_validator("target_file", "command", mode="before")
    @classmethod
    def coerce_optional_text(cls, v: Any) -> str | None:
        return v if isinstance(v, str) and v else None

    @field_validator("description", "expected_outcome", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""


class _PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: list[_StepPayload] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def coerce_steps(cls, v: Any) -> list[Any]:
        if not isinstance(v, list):
            return []
        return [item if isinstance(item, dict) else {} for item in v]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def extract_json_object(output: str) -> dict[str, Any] | None:
    """Return the JSON object embedded in ``output``, or None."""
    match = _FENCED_JSON.search(output) or _BARE_OBJECT.search(output)
    if match is None:
        return None
    raw = match.group(1) if match.re is _FENCED_JSON else match.group(0)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def heuristic_analysis(error: str) -> ErrorAnalysis:
    """Classify an error message by keyword when no structured analysis exists."""
    text = error.lower()
    root_cause, can_auto_fix = RootCause.UNKNOWN, False
    for keywords, cause, fixable in _HEURISTICS:
        if any(keyword in text for keyword in keywords):
            root_cause, can_auto_fix = cause, fixable
            break
    return ErrorAnalysis(
        root_cause=root_cause,
        confidence=HEURISTIC_CONFIDENCE,
        explanation=HEURISTIC_EXPLANATION,
        suggested_fix=HEURISTIC_SUGGESTED_FIX,
        files_involved=[],
        can_auto_fix=can_auto_fix,
    )


def parse_analysis(output: str, failure: TestFailure) -> ErrorAnalysis:
    """Decode an analysis agent's output, falling back to the heuristic."""
    data = extract_json_object(output)
    if data is not None:
        try:
            payload = _AnalysisPayload.model_validate(data)
        except PydanticValidationError as exc:
            logger.debug("Analysis payload rejected: %s", exc)
        else:
            return ErrorAnalysis(**payload.model_dump())
    logger.info("Falling back to heuristic analysis for %s", failure.key)
    return heuristic_analysis(failure.error)


def estimate_complexity(step_count: int) -> FixComplexity:
    if step_count <= 2:
        return FixComplexity.SIMPLE
    if step_count <= 5:
        return FixComplexity.MODERATE
    return FixComplexity.COMPLEX


def parse_fix_plan(
    output: str,
    failure: TestFailure,
    analysis: ErrorAnalysis,
    *,
    model: str,
) -> FixPlan:
    """Decode a planning agent's output into a ``FixPlan``.

    Undecodable output yields a single generic analysis step.
    """
    data = extract_json_object(output)
    if data is not None:
        try:
            payload = _PlanPayload.model_validate(data)
        except PydanticValidationError as exc:
            logger.debug("Fix plan payload rejected: %s", exc)
        else:
            steps = [FixStep(**step.model_dump()) for step in payload.steps]
            return FixPlan(
                id=generate_fix_id(),
                failure=failure,
                analysis=analysis,
                steps=steps,
                model=model,
                complexity=estimate_complexity(len(steps)),
            )

    logger.info("Falling back to a generic fix plan for %s", failure.key)
    fallback = FixStep(
        order=1,
        type=FixStepType.ANALYSIS,
        description=analysis.suggested_fix or "Investigate and fix the issue",
        expected_outcome="Issue resolved",
    )
    return FixPlan(
        id=generate_fix_id(),
        failure=failure,
        analysis=analysis,
        steps=[fallback],
        model=model,
        complexity=FixComplexity.MODERATE,
    )


def extract_modified_files(output: str) -> list[str]:
    """Collect paths reported as 'Edited:', 'Modified:', 'Updated:' or 'Wrote:'."""
    files: list[str] = []
    for pattern in _MODIFIED_FILE_PATTERNS:
        for match in pattern.finditer(output):
            path = match.group(1).strip()
            if path and path not in files:
                files.append(path)
    return files


def generate_fix_id() -> str:
    suffix = "".join(secrets.choice(_FIX_ID_ALPHABET) for _ in range(6))
    return f"fix-{int(time.time() * 1000)}-{suffix}"


__all__ = [
    "HEURISTIC_CONFIDENCE",
    "estimate_complexity",
    "extract_json_object",
    "extract_modified_files",
    "generate_fix_id",
    "heuristic_analysis",
    "parse_analysis",
    "parse_fix_plan",
]
