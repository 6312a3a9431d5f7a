"""Tests for the LangChain-backed chat model service."""

from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage, ToolMessage

from app.models.llm import LLMToolDefinition, TextDelta, ToolRequest
from app.models.messages import Message, TextPart, ToolConfirmationPart, ToolInvocationPart, ToolResultPart, ToolStatus
from app.orchestration.errors import ModelCallError
from app.services.llm import ChatModelConfig, ChatModelService, to_langchain_messages

TOOLS = [
    LLMToolDefinition(
        name="schedule_task",
        description="Schedule a task",
        input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
    )
]


def fake_chat_model(chunks=None, error: Exception | None = None) -> MagicMock:
    """A ChatAnthropic stand-in whose bound runnable streams ``chunks``."""

    async def astream(prompt):
        for chunk in chunks or []:
            yield chunk
        if error is not None:
            raise error

    runnable = MagicMock()
    runnable.astream = MagicMock(side_effect=astream)
    model = MagicMock()
    model.bind_tools.return_value = runnable
    model.astream = MagicMock(side_effect=astream)
    return model


async def collect(service: ChatModelService, messages, tools=TOOLS, system_prompt="system") -> list:
    return [event async for event in service.stream(messages, tools, system_prompt)]


class TestToLangchainMessages:
    """Tests for history conversion."""

    def test_user_and_assistant_text(self):
        """Test that plain turns map to human and AI messages."""
        converted = to_langchain_messages([Message.from_text("user", "Hi"), Message.from_text("assistant", "Hello")])

        assert [type(message) for message in converted] == [HumanMessage, AIMessage]
        assert converted[0].content == "Hi"
        assert converted[1].content == "Hello"

    def test_tool_round_trip(self):
        """Test that invocations become tool calls followed by tool messages."""
        assistant = Message(
            role="assistant",
            parts=[
                TextPart(text="Let me schedule that."),
                ToolInvocationPart(
                    tool_name="schedule_task", call_id="toolu_1", arguments={"text": "x"}, status=ToolStatus.EXECUTED
                ),
                ToolResultPart(call_id="toolu_1", output="scheduled"),
                TextPart(text="All set."),
            ],
        )

        converted = to_langchain_messages([Message.from_text("user", "Remind me"), assistant])

        assert [type(message) for message in converted] == [HumanMessage, AIMessage, ToolMessage, AIMessage]
        assert converted[1].content == "Let me schedule that."
        assert converted[1].tool_calls[0]["id"] == "toolu_1"
        assert converted[1].tool_calls[0]["args"] == {"text": "x"}
        assert converted[2].tool_call_id == "toolu_1"
        assert converted[2].content == "scheduled"
        assert converted[3].content == "All set."

    def test_error_results_flagged(self):
        """Test that errored results are marked as errors for the model."""
        assistant = Message(
            role="assistant",
            parts=[
                ToolInvocationPart(tool_name="x", call_id="c1", arguments={}, status=ToolStatus.REJECTED),
                ToolResultPart(call_id="c1", output="denied", is_error=True),
            ],
        )

        converted = to_langchain_messages([assistant])

        assert converted[1].status == "error"

    def test_confirmation_only_user_message_skipped(self):
        """Test that user messages without text are not sent."""
        confirmation = Message(role="user", parts=[ToolConfirmationPart(call_id="c1", answer=True)])

        assert to_langchain_messages([confirmation]) == []


class TestChatModelService:
    """Tests for ChatModelService.stream()."""

    @pytest.mark.asyncio
    async def test_streams_text_then_tool_requests(self):
        """Test that text deltas stream first and tool requests follow the completed step."""
        chunks = [
            AIMessageChunk(content=[{"type": "text", "text": "Sure", "index": 0}]),
            AIMessageChunk(content=", scheduling."),
            AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {"name": "schedule_task", "args": '{"text": "essay"}', "id": "toolu_9", "index": 1}
                ],
            ),
        ]
        model = fake_chat_model(chunks)
        service = ChatModelService(ChatModelConfig(model="claude-test"), api_key="test-key")

        with patch("app.services.llm.ChatAnthropic", return_value=model):
            events = await collect(service, [Message.from_text("user", "Remind me")])

        assert events == [
            TextDelta(text="Sure"),
            TextDelta(text=", scheduling."),
            ToolRequest(call_id="toolu_9", tool_name="schedule_task", arguments={"text": "essay"}),
        ]
        bound_tools = model.bind_tools.call_args.args[0]
        assert bound_tools[0]["name"] == "schedule_task"

    @pytest.mark.asyncio
    async def test_system_prompt_sent_first(self):
        """Test that the system prompt leads the prompt."""
        model = fake_chat_model([AIMessageChunk(content="Hi")])
        service = ChatModelService(api_key="test-key")

        with patch("app.services.llm.ChatAnthropic", return_value=model):
            await collect(service, [Message.from_text("user", "Hi")], system_prompt="You are CampusGuide")

        prompt = model.bind_tools.return_value.astream.call_args.args[0]
        assert isinstance(prompt[0], SystemMessage)
        assert prompt[0].content == "You are CampusGuide"
        assert isinstance(prompt[1], HumanMessage)

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self):
        """Test that provider failures surface as ModelCallError."""
        model = fake_chat_model([AIMessageChunk(content="Par")], error=RuntimeError("overloaded"))
        service = ChatModelService(api_key="test-key")

        with patch("app.services.llm.ChatAnthropic", return_value=model):
            with pytest.raises(ModelCallError, match="overloaded"):
                await collect(service, [Message.from_text("user", "Hi")])

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        """Test that a missing key is reported as a model call error."""
        service = ChatModelService()

        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ModelCallError, match="ANTHROPIC_API_KEY"):
                await collect(service, [Message.from_text("user", "Hi")])

    @pytest.mark.asyncio
    async def test_sdk_retries_disabled(self):
        """Test that the underlying client is built without automatic retries."""
        model = fake_chat_model([AIMessageChunk(content="Hi")])
        service = ChatModelService(api_key="test-key")

        with patch("app.services.llm.ChatAnthropic", return_value=model) as chat_anthropic:
            await collect(service, [Message.from_text("user", "Hi")])

        assert ChatModelConfig().max_retries == 0
        assert chat_anthropic.call_args.kwargs["max_retries"] == 0

    def test_model_name_from_environment(self):
        """Test that MODEL_NAME overrides the default model."""
        with patch.dict("os.environ", {"MODEL_NAME": "claude-custom"}):
            assert ChatModelConfig().model == "claude-custom"

        with patch.dict("os.environ", {}, clear=True):
            assert ChatModelConfig().model == "claude-3-haiku-20240307"
