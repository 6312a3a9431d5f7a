"""Message and conversation data models."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field

cuid = cuid_wrapper()


class ToolStatus(StrEnum):
    """Lifecycle status of a tool invocation."""

    REQUESTED = "requested"
    PENDING_CONFIRMATION = "pending-confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXECUTED = "executed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ToolStatus.CONFIRMED,
        ToolStatus.REJECTED,
        ToolStatus.EXECUTED,
        ToolStatus.ERRORED,
    }
)


class TextPart(BaseModel):
    """Literal text content."""

    type: Literal["text"] = "text"
    text: str


class ToolInvocationPart(BaseModel):
    """A tool call requested by the model.

    ``arguments`` is None while the model is still streaming the input.
    """

    type: Literal["tool-invocation"] = "tool-invocation"
    tool_name: str
    call_id: str
    arguments: dict[str, Any] | None = None
    status: ToolStatus = ToolStatus.REQUESTED


class ToolResultPart(BaseModel):
    """Output of a tool invocation, referenced by call id."""

    type: Literal["tool-result"] = "tool-result"
    call_id: str
    output: str
    is_error: bool = False


class ToolConfirmationPart(BaseModel):
    """A user's answer to a pending tool confirmation.

    The answer is a bool or the free-form string sent by the client
    (e.g. "Yes, confirmed."). It is parsed by the resolver.
    """

    type: Literal["tool-confirmation"] = "tool-confirmation"
    call_id: str
    answer: bool | str | None = None


MessagePart = Annotated[
    TextPart | ToolInvocationPart | ToolResultPart | ToolConfirmationPart,
    Field(discriminator="type"),
]


class MessageMetadata(BaseModel):
    """Free-form message metadata."""

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    class Config:
        extra = "allow"


class Message(BaseModel):
    """One turn in a conversation."""

    id: str = Field(default_factory=cuid)
    role: Literal["user", "assistant", "system"]
    parts: list[MessagePart] = Field(default_factory=list)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    @classmethod
    def from_text(cls, role: Literal["user", "assistant", "system"], text: str) -> "Message":
        """Build a single text-part message."""
        return cls(role=role, parts=[TextPart(text=text)])

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def invocations(self) -> list[ToolInvocationPart]:
        return [part for part in self.parts if isinstance(part, ToolInvocationPart)]

    @property
    def results(self) -> list[ToolResultPart]:
        return [part for part in self.parts if isinstance(part, ToolResultPart)]

    @property
    def confirmations(self) -> list[ToolConfirmationPart]:
        return [part for part in self.parts if isinstance(part, ToolConfirmationPart)]


def result_call_ids(history: list[Message]) -> set[str]:
    """Collect the call ids that already have a tool result."""
    return {result.call_id for message in history for result in message.results}


def pending_confirmations(history: list[Message]) -> list[ToolInvocationPart]:
    """Invocations of the most recent assistant message still awaiting a user answer."""
    for message in reversed(history):
        if message.role == "assistant":
            return [inv for inv in message.invocations if inv.status == ToolStatus.PENDING_CONFIRMATION]
    return []
