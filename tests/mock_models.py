"""Scripted chat models and tool helpers for orchestration tests."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from app.models.llm import LLMToolDefinition, ModelEvent, TextDelta, ToolRequest
from app.models.messages import Message
from app.tools.base import ToolContext, ToolDefinition

Step = Sequence[ModelEvent | Exception] | Exception


@dataclass
class ModelCall:
    """What the orchestrator sent to the model on one step."""

    messages: list[Message]
    tools: list[LLMToolDefinition]
    system_prompt: str

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]


@dataclass
class ScriptedChatModel:
    """Chat model replaying one scripted list of events per step.

    A step that is (or contains) an exception raises it at that point.
    Once the script runs out, every further step answers ``"Done."``.
    """

    steps: list[Step] = field(default_factory=list)
    delay: float = 0.0
    calls: list[ModelCall] = field(default_factory=list)

    async def stream(
        self,
        messages: list[Message],
        tools: Sequence[LLMToolDefinition],
        system_prompt: str,
    ) -> AsyncIterator[ModelEvent]:
        self.calls.append(
            ModelCall(
                messages=[message.model_copy(deep=True) for message in messages],
                tools=list(tools),
                system_prompt=system_prompt,
            )
        )
        step = self.steps.pop(0) if self.steps else [TextDelta(text="Done.")]
        if isinstance(step, Exception):
            raise step

        for event in step:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(event, Exception):
                raise event
            yield event


@dataclass
class LoopingChatModel:
    """Chat model that requests another tool call on every step."""

    tool_name: str = "echo"
    calls: int = 0

    async def stream(
        self,
        messages: list[Message],
        tools: Sequence[LLMToolDefinition],
        system_prompt: str,
    ) -> AsyncIterator[ModelEvent]:
        self.calls += 1
        yield TextDelta(text=f"Step {self.calls}. ")
        yield ToolRequest(call_id=f"loop_{self.calls}", tool_name=self.tool_name, arguments={"text": "again"})


def text(*chunks: str) -> list[TextDelta]:
    return [TextDelta(text=chunk) for chunk in chunks]


def tool_request(tool_name: str, arguments: dict[str, Any] | None = None, call_id: str = "call_1") -> ToolRequest:
    return ToolRequest(call_id=call_id, tool_name=tool_name, arguments=arguments or {})


class EchoInput(BaseModel):
    text: str = "hello"


class NoInput(BaseModel):
    pass


Handler = Callable[[Any, ToolContext], Awaitable[str]]


async def echo_handler(params: EchoInput, context: ToolContext) -> str:
    return f"echo: {params.text}"


def make_tool(
    name: str,
    handler: Handler | None = None,
    *,
    requires_confirmation: bool = False,
    input_schema_class: type[BaseModel] = EchoInput,
) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"Test tool {name}",
        input_schema_class=input_schema_class,
        handler=handler or echo_handler,
        requires_confirmation=requires_confirmation,
    )


def tool_table(*tools: ToolDefinition) -> dict[str, ToolDefinition]:
    return {tool.name: tool for tool in tools}
