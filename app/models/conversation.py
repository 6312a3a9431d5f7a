"""Conversation request/response data models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.models.messages import Message
from app.models.orchestration import OrchestrationState, StopReason


class ConfirmationAnswer(BaseModel):
    """A user's answer to a tool call awaiting confirmation."""

    call_id: str
    answer: bool | str


class ConversationRequest(BaseModel):
    """Request model for conversation endpoints."""

    message: str | None = None
    session_id: str | None = None
    confirmations: list[ConfirmationAnswer] = Field(default_factory=list)


class PendingConfirmation(BaseModel):
    """A tool call the user still has to approve or deny."""

    call_id: str
    tool_name: str
    arguments: dict[str, Any] | None = None


class ConversationResponse(BaseModel):
    """Response model for the non-streaming conversation endpoint."""

    response: str
    session_id: str
    state: OrchestrationState
    stop_reason: StopReason | None = None
    pending_confirmations: list[PendingConfirmation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ConversationHistoryResponse(BaseModel):
    """Stored messages of a conversation."""

    session_id: str
    messages: list[Message]
    state: OrchestrationState | None = None


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str


class KeyCheckResponse(BaseModel):
    """Whether the Anthropic API key is configured."""

    success: bool
