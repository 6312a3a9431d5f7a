"""Conversation service connecting sessions to the orchestration pipeline."""

import asyncio
from collections.abc import AsyncIterator

from app.models.conversation import ConversationRequest, ConversationResponse, PendingConfirmation
from app.models.events import ErrorEvent, FinishEvent, StepStartEvent, StreamEvent, TextDeltaEvent, WarningEvent
from app.models.llm import ChatModel
from app.models.messages import Message, TextPart, ToolConfirmationPart, pending_confirmations
from app.models.orchestration import OrchestrationConfig, OrchestrationResult, OrchestrationState
from app.models.profile import DEMO_STUDENT_PROFILE
from app.models.session import Session
from app.orchestration import run_orchestration
from app.services.llm import get_chat_model_service
from app.services.prompts import build_system_prompt
from app.tools.registry import ToolsRegistry, get_tools_registry
from app.utils.logging import get_logger

logger = get_logger(__name__)

FALLBACK_RESPONSE = "I apologize, but I'm experiencing technical difficulties. Please try again."


class ConversationService:
    """Service for handling conversational AI interactions.

    Each call builds a fresh orchestration over the session's stored
    history and writes the outcome back once the run finishes.
    """

    def __init__(
        self,
        model: ChatModel | None = None,
        tools_registry: ToolsRegistry | None = None,
        config: OrchestrationConfig | None = None,
    ):
        """Initialize conversation service.

        Args:
            model: Model-generation service (defaults to the Claude chat service)
            tools_registry: Registry providing the tool table
            config: Orchestration settings (defaults to environment overrides)
        """
        self._model = model
        self._tools_registry = tools_registry
        self.config = config or OrchestrationConfig.from_env()

    @property
    def model(self) -> ChatModel:
        if self._model is None:
            self._model = get_chat_model_service()
        return self._model

    @property
    def tools_registry(self) -> ToolsRegistry:
        if self._tools_registry is None:
            self._tools_registry = get_tools_registry()
        return self._tools_registry

    def build_user_message(self, request: ConversationRequest) -> Message:
        """Turn a request into the user message appended to the conversation.

        Raises:
            ValueError: If the request is empty or the text is too long
        """
        parts: list[TextPart | ToolConfirmationPart] = []
        if request.message:
            self._validate_message_length(request.message)
            parts.append(TextPart(text=request.message))
        for confirmation in request.confirmations:
            parts.append(ToolConfirmationPart(call_id=confirmation.call_id, answer=confirmation.answer))

        if not parts:
            raise ValueError("Request must contain a message or a tool confirmation.")
        return Message(role="user", parts=parts)

    def stream_message(
        self,
        message: Message,
        session: Session,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Append ``message`` to the session and stream the assistant's turn."""
        started_with = len(session.messages) + 1
        session.append_message(message)

        profile = session.profile or DEMO_STUDENT_PROFILE
        system_prompt = build_system_prompt(profile)

        async def persist(result: OrchestrationResult) -> None:
            session.apply_result(result, started_with=started_with)
            logger.info(f"Stored {len(session.messages)} messages for session {session.session_id}")

        logger.info(f"Streaming turn for session {session.session_id} ({len(session.messages)} messages)")
        return run_orchestration(
            list(session.messages),
            self.tools_registry.get_tool_definitions(),
            self.config.step_ceiling,
            model=self.model,
            system_prompt=system_prompt,
            session_id=session.session_id,
            tool_timeout=self.config.tool_timeout_seconds,
            buffer_size=self.config.event_buffer_size,
            cancel_event=cancel_event,
            on_finish=persist,
        )

    async def process_message(self, message: Message, session: Session) -> ConversationResponse:
        """Run a full turn and collect it into a single response."""
        steps: list[str] = []
        warnings: list[str] = []
        finish: FinishEvent | None = None
        failed = False

        async for event in self.stream_message(message, session):
            match event:
                case StepStartEvent():
                    steps.append("")
                case TextDeltaEvent(text=text):
                    if not steps:
                        steps.append("")
                    steps[-1] += text
                case WarningEvent(message=warning):
                    warnings.append(warning)
                case ErrorEvent():
                    failed = True
                case FinishEvent():
                    finish = event

        response_text = "\n\n".join(text.strip() for text in steps if text.strip())
        if failed and not response_text:
            response_text = FALLBACK_RESPONSE

        return ConversationResponse(
            response=response_text,
            session_id=session.session_id,
            state=finish.state if finish else OrchestrationState.FAILED,
            stop_reason=finish.stop_reason if finish else None,
            pending_confirmations=[
                PendingConfirmation(call_id=inv.call_id, tool_name=inv.tool_name, arguments=inv.arguments)
                for inv in pending_confirmations(session.messages)
            ],
            warnings=warnings,
        )

    def _validate_message_length(self, message: str) -> None:
        """Validate message doesn't exceed the length limit.

        Raises:
            ValueError: If message is too long
        """
        if len(message) > self.config.max_message_chars:
            raise ValueError(
                f"Your message is too long. Please keep messages under {self.config.max_message_chars} characters."
            )


_conversation_service: ConversationService | None = None


def get_conversation_service() -> ConversationService:
    """Get or create conversation service instance."""
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService()
    return _conversation_service
