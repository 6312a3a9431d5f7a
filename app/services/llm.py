"""LLM service streaming chat completions with tool calling."""

import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from app.models.llm import LLMToolDefinition, ModelEvent, TextDelta, ToolRequest
from app.models.messages import Message, TextPart, ToolInvocationPart, ToolResultPart, cuid
from app.orchestration.errors import ModelCallError
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatModelConfig:
    """Configuration for the chat model."""

    model: str = field(default_factory=lambda: os.getenv("MODEL_NAME", "claude-3-haiku-20240307"))
    temperature: float = 0.7
    max_tokens: int = 4096
    # A failed step fails the run; retrying is up to the caller
    max_retries: int = 0
    timeout_seconds: float = 60.0


class ChatModelService:
    """Streams one generation step from Claude through LangChain."""

    def __init__(self, config: ChatModelConfig | None = None, api_key: str | None = None):
        """Initialize the chat model service.

        Args:
            config: Model configuration
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
        """
        self.config = config or ChatModelConfig()
        self._api_key = api_key
        self._model: ChatAnthropic | None = None

    def _get_model(self) -> ChatAnthropic:
        if self._model is None:
            api_key = self._api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise ModelCallError("ANTHROPIC_API_KEY environment variable is required")

            self._model = ChatAnthropic(
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                max_retries=self.config.max_retries,
                timeout=self.config.timeout_seconds,
                anthropic_api_key=api_key,
            )
        return self._model

    async def stream(
        self,
        messages: list[Message],
        tools: Sequence[LLMToolDefinition],
        system_prompt: str,
    ) -> AsyncIterator[ModelEvent]:
        """Stream text deltas, then the tool requests of the completed step.

        Raises:
            ModelCallError: If the model call fails
        """
        model = self._get_model()
        runnable = model.bind_tools([tool.model_dump() for tool in tools]) if tools else model

        prompt: list[BaseMessage] = []
        if system_prompt:
            prompt.append(SystemMessage(content=system_prompt))
        prompt.extend(to_langchain_messages(messages))

        logger.debug(f"Calling {self.config.model} with {len(prompt)} messages and {len(tools)} tools")

        aggregate: AIMessageChunk | None = None
        try:
            async for chunk in runnable.astream(prompt):
                aggregate = chunk if aggregate is None else aggregate + chunk
                text = _chunk_text(chunk)
                if text:
                    yield TextDelta(text=text)
        except ModelCallError:
            raise
        except Exception as e:
            raise ModelCallError(f"Model call failed: {e}") from e

        if aggregate is None:
            return

        for call in aggregate.tool_calls:
            yield ToolRequest(
                call_id=call.get("id") or cuid(),
                tool_name=call["name"],
                arguments=dict(call.get("args") or {}),
            )


def to_langchain_messages(history: list[Message]) -> list[BaseMessage]:
    """Convert conversation history to LangChain messages.

    Assistant messages are split at their tool results: text and
    invocations before a run of results form one ``AIMessage``, and each
    result becomes a ``ToolMessage`` after it.
    """
    converted: list[BaseMessage] = []
    for message in history:
        if message.role == "assistant":
            converted.extend(_convert_assistant(message))
        elif message.text:
            if message.role == "system":
                converted.append(SystemMessage(content=message.text))
            else:
                converted.append(HumanMessage(content=message.text))
    return converted


def _convert_assistant(message: Message) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    text: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    tool_messages: list[ToolMessage] = []

    def flush() -> None:
        if text or tool_calls:
            converted.append(AIMessage(content="".join(text), tool_calls=list(tool_calls)))
        converted.extend(tool_messages)
        text.clear()
        tool_calls.clear()
        tool_messages.clear()

    for part in message.parts:
        if isinstance(part, ToolResultPart):
            tool_messages.append(
                ToolMessage(
                    content=part.output,
                    tool_call_id=part.call_id,
                    status="error" if part.is_error else "success",
                )
            )
            continue

        if tool_messages:
            flush()
        if isinstance(part, TextPart):
            text.append(part.text)
        elif isinstance(part, ToolInvocationPart):
            tool_calls.append({"name": part.tool_name, "args": part.arguments or {}, "id": part.call_id})

    flush()
    return converted


def _chunk_text(chunk: AIMessageChunk) -> str:
    """Extract the text carried by a streamed chunk."""
    if isinstance(chunk.content, str):
        return chunk.content
    return "".join(
        block.get("text", "")
        for block in chunk.content
        if isinstance(block, dict) and block.get("type") == "text"
    )


_chat_model_service: ChatModelService | None = None


def get_chat_model_service() -> ChatModelService:
    """Get or create chat model service instance."""
    global _chat_model_service
    if _chat_model_service is None:
        _chat_model_service = ChatModelService()
    return _chat_model_service
