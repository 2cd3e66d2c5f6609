"""Status notifications emitted by the self-healing engine.

The engine only produces ``StatusMessage`` envelopes and hands them to a sink;
transport (websocket, CLI, log) is the sink's business.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class HealingEvent(StrEnum):
    ANALYSIS_STARTED = "self-healing:analysis_started"
    ANALYSIS_COMPLETE = "self-healing:analysis_complete"
    FIX_PLAN_GENERATED = "self-healing:fix_plan_generated"
    FIX_STARTED = "self-healing:fix_started"
    FIX_SUCCESS = "self-healing:fix_success"
    FIX_FAILED = "self-healing:fix_failed"
    MAX_ATTEMPTS_REACHED = "self-healing:max_attempts_reached"
    FAILED = "self-healing:failed"


class StatusMessage(BaseModel):
    type: Literal["status"] = "status"
    event: HealingEvent
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


NotificationSink = Callable[[str, StatusMessage], None]


def log_sink(session_id: str, message: StatusMessage) -> None:
    """Default sink: write the envelope to the log."""
    logger.info("[%s] %s %s", session_id, message.event, message.payload)


__all__ = ["HealingEvent", "NotificationSink", "StatusMessage", "log_sink"]
