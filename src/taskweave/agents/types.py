"""Agent capability types.

The coordination layer never launches agents itself. It talks to an
``AgentRuntime``: something that can spawn an agent from ``AgentSpawnOptions``,
look up its ``AgentHandle`` by id, request a stop, and publish lifecycle
events on an ``AgentEventBus``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from taskweave.core.events import AgentEventBus


class AgentType(StrEnum):
    """Role an agent plays."""

    ORCHESTRATOR = "orchestrator"
    PLANNER = "planner"
    ARCHITECT = "architect"
    IMPLEMENTER = "implementer"
    REVIEWER = "reviewer"
    TESTER = "tester"
    SECURITY = "security"
    DEBUGGER = "debugger"


class AgentStatus(StrEnum):
    """Runtime status of a spawned agent."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.ERROR)


class AgentSpawnOptions(BaseModel):
    """Everything a runtime needs to launch one agent."""

    model_config = ConfigDict(extra="forbid")

    agent_type: AgentType
    session_id: str
    cwd: Path
    prompt: str
    model_override: str | None = None
    parent_agent_id: str | None = None
    dangerously_skip_permissions: bool = False
    max_turns: int | None = None
    timeout: float | None = Field(default=None, description="Seconds before the runtime gives up")
    env: dict[str, str] = Field(default_factory=dict)


@dataclass
class AgentHandle:
    """Live view of a spawned agent.

    Runtimes mutate ``status``, ``current_action``, ``output`` and
    ``error_message`` in place as the agent progresses.
    """

    id: str
    agent_type: AgentType
    session_id: str
    status: AgentStatus = AgentStatus.STARTING
    model: str | None = None
    current_action: str | None = None
    output: str = ""
    error_message: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal


class AgentRuntime(Protocol):
    """Black-box capability to run agents.

    Runtimes must emit ``AgentEvent.COMPLETED`` or ``AgentEvent.ERROR`` exactly
    once per agent on ``events``, after updating the handle's status.
    """

    events: AgentEventBus

    async def spawn(self, options: AgentSpawnOptions) -> AgentHandle:
        """Start an agent and return its handle.

        Raises:
            AgentError: If the agent cannot be started.
        """
        ...

    def get(self, agent_id: str) -> AgentHandle | None:
        """Return the handle for ``agent_id`` or None if unknown."""
        ...

    def stop(self, agent_id: str) -> bool:
        """Request termination; returns False if the agent is unknown or finished."""
        ...


__all__ = [
    "AgentHandle",
    "AgentRuntime",
    "AgentSpawnOptions",
    "AgentStatus",
    "AgentType",
]
