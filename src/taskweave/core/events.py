"""Agent lifecycle event bus.

Agent runtimes publish lifecycle events (spawned, started, output, completed,
error, stopped) keyed by agent id. Consumers register plain callables with
``on`` and must remove them with ``off``; the executor uses this to build a
per-agent completion future.

The bus is not a singleton: each runtime owns one so that state never leaks
between runs or tests.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class AgentEvent(StrEnum):
    """Names of agent lifecycle events."""

    SPAWNED = "agent:spawned"
    STARTED = "agent:started"
    OUTPUT = "agent:output"
    COMPLETED = "agent:completed"
    ERROR = "agent:error"
    STOPPED = "agent:stopped"


@dataclass(frozen=True)
class AgentEventData:
    """Payload delivered to listeners.

    Attributes:
        agent_id: Agent the event belongs to
        session_id: Session that owns the agent
        error: Error message for ERROR events
        payload: Free-form extra data (output lines, exit codes)
        timestamp: When the event was emitted
    """

    agent_id: str
    session_id: str = ""
    error: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


AgentListener = Callable[[AgentEventData], None]


class AgentEventBus:
    """Synchronous publish/subscribe bus for agent events."""

    def __init__(self) -> None:
        self._listeners: dict[AgentEvent, list[AgentListener]] = defaultdict(list)

    def on(self, event: AgentEvent, listener: AgentListener) -> None:
        """Register ``listener`` for ``event``."""
        self._listeners[event].append(listener)

    def off(self, event: AgentEvent, listener: AgentListener) -> None:
        """Remove ``listener``; removing an unknown listener is a no-op."""
        listeners = self._listeners.get(event)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return

    def emit(self, event: AgentEvent, data: AgentEventData) -> int:
        """Deliver ``data`` to every listener of ``event``.

        Returns:
            Number of listeners invoked.
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(data)
            except Exception:
                logger.exception("Listener for %s failed on agent %s", event, data.agent_id)
        return len(listeners)

    def listener_count(self, event: AgentEvent | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(listeners) for listeners in self._listeners.values())


__all__ = [
    "AgentEvent",
    "AgentEventBus",
    "AgentEventData",
    "AgentListener",
]
