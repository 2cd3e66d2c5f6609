"""Agent capability: the runtime protocol and a subprocess-backed implementation."""

from taskweave.agents.types import (
    AgentHandle,
    AgentRuntime,
    AgentSpawnOptions,
    AgentStatus,
    AgentType,
)

__all__ = [
    "AgentHandle",
    "AgentRuntime",
    "AgentSpawnOptions",
    "AgentStatus",
    "AgentType",
]
