"""Events of the unified output stream delivered to the client."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from app.models.messages import ToolStatus
from app.models.orchestration import OrchestrationState, StopReason


class TextDeltaEvent(BaseModel):
    """Incremental assistant text."""

    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolStatusEvent(BaseModel):
    """A tool invocation changed status."""

    type: Literal["tool-status"] = "tool-status"
    call_id: str
    tool_name: str
    status: ToolStatus
    arguments: dict[str, Any] | None = None
    output: str | None = None


class ToolProgressEvent(BaseModel):
    """Progress notification written by a running tool."""

    type: Literal["tool-progress"] = "tool-progress"
    call_id: str
    tool_name: str
    message: str


class WarningEvent(BaseModel):
    """Recoverable, non-fatal condition (e.g. an unparseable confirmation)."""

    type: Literal["warning"] = "warning"
    code: str
    message: str
    call_id: str | None = None


class StepStartEvent(BaseModel):
    type: Literal["step-start"] = "step-start"
    step: int


class ErrorEvent(BaseModel):
    """Terminal failure notice."""

    type: Literal["error"] = "error"
    message: str


class FinishEvent(BaseModel):
    """Terminal marker; always the last event of a completed stream."""

    type: Literal["finish"] = "finish"
    state: OrchestrationState
    stop_reason: StopReason | None = None
    steps: int = 0
    pending_call_ids: list[str] = Field(default_factory=list)


StreamEvent = Annotated[
    TextDeltaEvent
    | ToolStatusEvent
    | ToolProgressEvent
    | WarningEvent
    | StepStartEvent
    | ErrorEvent
    | FinishEvent,
    Field(discriminator="type"),
]
