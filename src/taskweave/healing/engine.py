"""Self-healing engine for test and build failures.

For each failure the engine drives three short-lived debugger agents:

1. analyze: classify the failure (``ErrorAnalysis``)
2. plan: turn the analysis into ordered fix steps (``FixPlan``)
3. apply: execute the plan and report touched files (``FixResult``)

Attempts are counted per failure key (``suite_id:scenario_id``). Once a key
reaches ``max_attempts`` further calls return an exhausted result without
spawning anything. Phase agents are polled with a hard timeout rather than
awaited on events, so the engine works with any ``AgentRuntime``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from taskweave.agents.types import AgentRuntime, AgentSpawnOptions, AgentStatus, AgentType
from taskweave.core.config import HealingSettings
from taskweave.healing.models import (
    ErrorAnalysis,
    FixPlan,
    FixResult,
    HealingState,
    HealingStats,
    TestFailure,
)
from taskweave.healing.notifications import (
    HealingEvent,
    NotificationSink,
    StatusMessage,
    log_sink,
)
from taskweave.healing.parsing import (
    extract_modified_files,
    generate_fix_id,
    parse_analysis,
    parse_fix_plan,
)
from taskweave.healing.prompts import (
    build_analysis_prompt,
    build_apply_prompt,
    build_fix_plan_prompt,
)

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TURNS = 3
PLAN_MAX_TURNS = 5
APPLY_MAX_TURNS = 10


@dataclass(frozen=True)
class AgentRunOutcome:
    success: bool
    output: str = ""
    error: str | None = None


class SelfHealing:
    """Per-session failure repair state machine.

    Attributes:
        session_id: Session the engine belongs to
        state: Current phase (idle, analyzing, fixing, verifying, completed, failed)
        config: Copy of the healing settings
        history: Copy of every recorded ``FixResult``
    """

    def __init__(
        self,
        session_id: str,
        runtime: AgentRuntime,
        config: HealingSettings | None = None,
        *,
        cwd: Path | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self._session_id = session_id
        self._runtime = runtime
        self._config = config or HealingSettings()
        self._cwd = cwd or Path.cwd()
        self._sink = sink or log_sink
        self._attempts: dict[str, int] = {}
        self._history: list[FixResult] = []
        self._state = HealingState.IDLE

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> HealingState:
        return self._state

    @property
    def config(self) -> HealingSettings:
        return self._config.model_copy()

    @property
    def history(self) -> list[FixResult]:
        return list(self._history)

    def get_attempt_count(self, failure_key: str) -> int:
        return self._attempts.get(failure_key, 0)

    # ------------------------------------------------------------------
    # Main flow
    # ------------------------------------------------------------------

    async def process_failure(self, failure: TestFailure) -> FixResult:
        """Run analyze, plan and apply for ``failure``.

        Never raises for agent or parsing problems; every outcome is a
        ``FixResult``. Attempts and history are updated for every call that
        reaches the pipeline, including calls that end in an exception.
        """
        started = time.monotonic()
        key = failure.key

        if not self._config.enabled:
            return FixResult(
                fix_plan_id=generate_fix_id(),
                success=False,
                error="Self-healing is disabled",
                duration=time.monotonic() - started,
            )

        attempts = self._attempts.get(key, 0)
        if attempts >= self._config.max_attempts:
            logger.warning("Max attempts reached for %s (%d)", key, attempts)
            self._notify(
                HealingEvent.MAX_ATTEMPTS_REACHED,
                test_name=failure.test_name,
                attempts=attempts,
                max_attempts=self._config.max_attempts,
            )
            return FixResult(
                fix_plan_id=generate_fix_id(),
                success=False,
                error=f"Max attempts ({self._config.max_attempts}) reached",
                duration=time.monotonic() - started,
                exhausted=True,
                escalate=self._config.escalate_after_max_attempts,
            )

        self._state = HealingState.ANALYZING
        self._notify(
            HealingEvent.ANALYSIS_STARTED, test_name=failure.test_name, error=failure.error
        )

        try:
            analysis = await self.analyze_error(failure)
            self._notify(
                HealingEvent.ANALYSIS_COMPLETE,
                test_name=failure.test_name,
                root_cause=str(analysis.root_cause),
                confidence=analysis.confidence,
                can_auto_fix=analysis.can_auto_fix,
            )

            self._state = HealingState.FIXING
            plan = await self.generate_fix_plan(failure, analysis)
            self._notify(
                HealingEvent.FIX_PLAN_GENERATED,
                fix_plan_id=plan.id,
                step_count=len(plan.steps),
                complexity=str(plan.complexity),
            )

            result = await self.apply_fix(plan)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.warning("Self-healing failed for %s: %s", key, message)
            result = FixResult(
                fix_plan_id=generate_fix_id(),
                success=False,
                error=message,
                duration=time.monotonic() - started,
            )
            self._record(key, attempts, result)
            self._state = HealingState.FAILED
            self._notify(HealingEvent.FAILED, test_name=failure.test_name, error=message)
            return result

        self._record(key, attempts, result)
        self._state = HealingState.COMPLETED if result.success else HealingState.FAILED
        return result

    async def analyze_error(self, failure: TestFailure) -> ErrorAnalysis:
        """Ask a debugger agent for a root-cause analysis of ``failure``."""
        outcome = await self._run_phase(
            build_analysis_prompt(failure),
            max_turns=ANALYSIS_MAX_TURNS,
            timeout=self._config.analysis_timeout,
        )
        return parse_analysis(outcome.output or outcome.error or "", failure)

    async def generate_fix_plan(self, failure: TestFailure, analysis: ErrorAnalysis) -> FixPlan:
        """Ask a debugger agent for ordered fix steps."""
        outcome = await self._run_phase(
            build_fix_plan_prompt(analysis),
            max_turns=PLAN_MAX_TURNS,
            timeout=self._config.fix_timeout,
        )
        return parse_fix_plan(
            outcome.output or outcome.error or "",
            failure,
            analysis,
            model=self._config.fix_model,
        )

    async def apply_fix(self, plan: FixPlan) -> FixResult:
        """Have a debugger agent execute ``plan``; spawn failures become a failed result."""
        started = time.monotonic()
        self._notify(HealingEvent.FIX_STARTED, fix_plan_id=plan.id, step_count=len(plan.steps))

        options = self._spawn_options(
            build_apply_prompt(plan), APPLY_MAX_TURNS, self._config.fix_timeout
        )
        try:
            agent = await self._runtime.spawn(options)
            outcome = await self._wait_for_completion(agent.id, self._config.fix_timeout)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._notify(HealingEvent.FIX_FAILED, fix_plan_id=plan.id, error=message)
            return FixResult(
                fix_plan_id=plan.id,
                success=False,
                error=message,
                duration=time.monotonic() - started,
            )

        result = FixResult(
            fix_plan_id=plan.id,
            success=outcome.success,
            agent_id=agent.id,
            output=outcome.output,
            error=outcome.error,
            duration=time.monotonic() - started,
            files_modified=extract_modified_files(outcome.output),
        )
        if result.success:
            logger.info("Fix %s applied by %s: %s", plan.id, agent.id, result.files_modified)
            self._notify(
                HealingEvent.FIX_SUCCESS,
                fix_plan_id=plan.id,
                agent_id=agent.id,
                files_modified=result.files_modified,
                duration=result.duration,
            )
        else:
            self._notify(
                HealingEvent.FIX_FAILED,
                fix_plan_id=plan.id,
                error=result.error or "Unknown error",
            )
        return result

    async def verify_fix(self, result: FixResult) -> bool:
        """Mark the session as verifying; re-running tests is the caller's job."""
        self._state = HealingState.VERIFYING
        return True

    # ------------------------------------------------------------------
    # Session controls
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._attempts.clear()
        self._history = []
        self._state = HealingState.IDLE

    def clear_attempts(self, failure_key: str) -> None:
        self._attempts.pop(failure_key, None)

    def get_stats(self) -> HealingStats:
        successful = sum(1 for r in self._history if r.success)
        return HealingStats(
            total_attempts=len(self._history),
            successful_fixes=successful,
            failed_fixes=len(self._history) - successful,
            active_failures=len(self._attempts),
            config=self.config,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, key: str, previous_attempts: int, result: FixResult) -> None:
        self._attempts[key] = previous_attempts + 1
        self._history.append(result)

    def _spawn_options(self, prompt: str, max_turns: int, timeout: float) -> AgentSpawnOptions:
        return AgentSpawnOptions(
            agent_type=AgentType.DEBUGGER,
            session_id=self._session_id,
            cwd=self._cwd,
            prompt=prompt,
            dangerously_skip_permissions=True,
            max_turns=max_turns,
            timeout=timeout,
        )

    async def _run_phase(self, prompt: str, *, max_turns: int, timeout: float) -> AgentRunOutcome:
        agent = await self._runtime.spawn(self._spawn_options(prompt, max_turns, timeout))
        return await self._wait_for_completion(agent.id, timeout)

    async def _wait_for_completion(self, agent_id: str, timeout: float) -> AgentRunOutcome:
        """Poll the runtime until the agent is terminal, gone, or ``timeout`` elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            agent = self._runtime.get(agent_id)
            if agent is None:
                return AgentRunOutcome(success=False, error="Agent disappeared")
            if agent.status is AgentStatus.COMPLETED:
                return AgentRunOutcome(
                    success=True,
                    output=agent.output or agent.current_action or "Fix completed",
                )
            if agent.status is AgentStatus.ERROR:
                return AgentRunOutcome(success=False, error=agent.error_message or "Agent failed")

            remaining = deadline - loop.time()
            if remaining <= 0:
                try:
                    self._runtime.stop(agent_id)
                except Exception:
                    logger.exception("Failed to stop timed-out agent %s", agent_id)
                return AgentRunOutcome(success=False, error=f"Agent timeout after {timeout:g}s")
            await asyncio.sleep(min(self._config.poll_interval, remaining))

    def _notify(self, event: HealingEvent, **payload: Any) -> None:
        message = StatusMessage(event=event, payload={"session_id": self._session_id, **payload})
        try:
            self._sink(self._session_id, message)
        except Exception:
            logger.exception("Notification sink failed for %s", event)


__all__ = ["AgentRunOutcome", "SelfHealing"]
