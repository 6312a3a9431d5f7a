"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from app.models.llm import LLMToolDefinition

ProgressEmitter = Callable[[str], Awaitable[None]]


async def _discard_progress(message: str) -> None:
    return None


@dataclass
class ToolContext:
    """Per-invocation context handed to tool handlers."""

    session_id: str
    call_id: str
    tool_name: str
    emit: ProgressEmitter = _discard_progress


ToolHandler = Callable[[Any, ToolContext], Awaitable[str]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    requires_confirmation: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    def to_llm_definition(self) -> LLMToolDefinition:
        return LLMToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.get_json_schema(),
        )
