"""Orchestration state, result and configuration models."""

import os
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, Field

from app.models.messages import Message, pending_confirmations


class OrchestrationState(StrEnum):
    """States of the per-request orchestration state machine."""

    RUNNING = "running"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[OrchestrationState, frozenset[OrchestrationState]] = {
    OrchestrationState.RUNNING: frozenset(
        {
            OrchestrationState.AWAITING_CONFIRMATION,
            OrchestrationState.DONE,
            OrchestrationState.FAILED,
        }
    ),
    OrchestrationState.AWAITING_CONFIRMATION: frozenset(),
    OrchestrationState.DONE: frozenset(),
    OrchestrationState.FAILED: frozenset(),
}


class StopReason(StrEnum):
    COMPLETE = "complete"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    STEP_CEILING = "step_ceiling"
    MODEL_ERROR = "model_error"
    CANCELLED = "cancelled"


class OrchestrationResult(BaseModel):
    """Serializable outcome of one orchestration run.

    Stored with the conversation so an ``awaiting-confirmation`` run can be
    resumed by a later request.
    """

    state: OrchestrationState
    history: list[Message] = Field(default_factory=list)
    steps: int = 0
    stop_reason: StopReason | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def pending_call_ids(self) -> list[str]:
        return [inv.call_id for inv in pending_confirmations(self.history)]


@dataclass
class OrchestrationConfig:
    """Configuration for the orchestration pipeline."""

    step_ceiling: int = 10
    event_buffer_size: int = 64
    tool_timeout_seconds: float | None = 30.0

    # Maximum characters accepted in a single user message
    max_message_chars: int = 4000

    @classmethod
    def from_env(cls) -> "OrchestrationConfig":
        """Build configuration, letting environment variables override defaults."""
        config = cls()
        if step_ceiling := os.getenv("STEP_CEILING"):
            config.step_ceiling = int(step_ceiling)
        if buffer_size := os.getenv("EVENT_BUFFER_SIZE"):
            config.event_buffer_size = int(buffer_size)
        if tool_timeout := os.getenv("TOOL_TIMEOUT_SECONDS"):
            config.tool_timeout_seconds = float(tool_timeout)
        return config
