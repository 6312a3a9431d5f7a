"""LLM-related data models and types (provider-agnostic)."""

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from pydantic import BaseModel

from app.models.messages import Message


class TextBlock(BaseModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        extra = "ignore"  # Ignore any additional fields from Anthropic


class LLMToolDefinition(BaseModel):
    """Complete tool definition for LLM."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class TextDelta:
    """A chunk of assistant text streamed by the model."""

    text: str


@dataclass
class ToolRequest:
    """A tool invocation requested by the model in the current step."""

    call_id: str
    tool_name: str
    arguments: dict[str, Any]


ModelEvent = TextDelta | ToolRequest


class ChatModel(Protocol):
    """Interface for the model-generation service."""

    def stream(
        self,
        messages: list[Message],
        tools: Sequence[LLMToolDefinition],
        system_prompt: str,
    ) -> AsyncIterator[ModelEvent]:
        """Stream one generation step.

        Text deltas are yielded as they arrive; tool requests are yielded
        once the step's output is complete.
        """
        ...


@dataclass
class LLMUsage:
    """Token/resource usage information from LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
