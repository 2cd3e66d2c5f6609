"""Explicit registry of per-session self-healing engines."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from taskweave.agents.types import AgentRuntime
from taskweave.core.config import HealingSettings
from taskweave.healing.engine import SelfHealing
from taskweave.healing.notifications import NotificationSink


class SelfHealingRegistry:
    """Holds one ``SelfHealing`` per session id.

    Engines are created lazily on first use. Passing a config to ``get``
    replaces the session's engine with a fresh one (attempts and history are
    not carried over); the last writer wins.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        *,
        defaults: HealingSettings | None = None,
        cwd: Path | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self._runtime = runtime
        self._defaults = defaults or HealingSettings()
        self._cwd = cwd
        self._sink = sink
        self._sessions: dict[str, SelfHealing] = {}

    def get(
        self,
        session_id: str,
        config: HealingSettings | Mapping[str, Any] | None = None,
    ) -> SelfHealing:
        """Return the session's engine, creating or replacing it as needed.

        Args:
            session_id: Session to look up
            config: Full settings, or a partial mapping merged over the defaults
        """
        healing = self._sessions.get(session_id)
        if healing is not None and config is None:
            return healing

        healing = SelfHealing(
            session_id,
            self._runtime,
            self._resolve(config),
            cwd=self._cwd,
            sink=self._sink,
        )
        self._sessions[session_id] = healing
        return healing

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()

    def all(self) -> list[SelfHealing]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _resolve(self, config: HealingSettings | Mapping[str, Any] | None) -> HealingSettings:
        if config is None:
            return self._defaults
        if isinstance(config, HealingSettings):
            return config
        return HealingSettings.model_validate({**self._defaults.model_dump(), **config})


__all__ = ["SelfHealingRegistry"]
