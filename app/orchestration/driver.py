"""Orchestration driver: the bounded multi-step generation loop."""

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable, Mapping
from contextlib import aclosing

from app.models.events import (
    ErrorEvent,
    FinishEvent,
    StepStartEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolStatusEvent,
    WarningEvent,
)
from app.models.llm import ChatModel, TextDelta, ToolRequest
from app.models.messages import (
    Message,
    TextPart,
    ToolInvocationPart,
    ToolResultPart,
    ToolStatus,
    pending_confirmations,
    result_call_ids,
)
from app.models.orchestration import (
    ALLOWED_TRANSITIONS,
    OrchestrationResult,
    OrchestrationState,
    StopReason,
)
from app.orchestration.executor import execute_all, reject
from app.orchestration.resolver import Resolution, resolve
from app.orchestration.sanitizer import prepare_for_model, sanitize
from app.orchestration.stream import EventChannel, merge
from app.tools.base import ToolDefinition
from app.utils.logging import get_logger

logger = get_logger(__name__)

FinishCallback = Callable[[OrchestrationResult], Awaitable[None]]


class OrchestrationDriver:
    """Per-request state machine driving the model and tool execution.

    States: ``running`` → ``awaiting-confirmation`` | ``done`` | ``failed``.
    The only state that outlives the request is the history itself, which
    carries pending-confirmation markers until a later request answers them.
    """

    def __init__(
        self,
        model: ChatModel,
        tools: Mapping[str, ToolDefinition],
        channel: EventChannel,
        *,
        step_ceiling: int = 10,
        system_prompt: str = "",
        session_id: str = "",
        tool_timeout: float | None = None,
        on_finish: FinishCallback | None = None,
    ):
        """Initialize the driver.

        Args:
            model: Model-generation service
            tools: Tool descriptors keyed by name
            channel: Channel tool executors write their events to
            step_ceiling: Maximum model round-trips before forced termination
            system_prompt: System prompt for every model call
            session_id: Conversation the run belongs to
            tool_timeout: Maximum seconds for a single tool, None for no limit
            on_finish: Called with the final result, including after cancellation
        """
        if step_ceiling < 1:
            raise ValueError("step_ceiling must be at least 1")

        self.model = model
        self.tools = dict(tools)
        self.channel = channel
        self.step_ceiling = step_ceiling
        self.system_prompt = system_prompt
        self.session_id = session_id
        self.tool_timeout = tool_timeout
        self.on_finish = on_finish

        self.state = OrchestrationState.RUNNING
        self.history: list[Message] = []
        self.steps = 0
        self.warnings: list[str] = []
        self.result: OrchestrationResult | None = None

    async def run(self, history: list[Message]) -> AsyncGenerator[StreamEvent, None]:
        """Run the loop over ``history``, yielding model-ordered events.

        Tool status and progress events go through ``self.channel`` instead.
        """
        stop_reason: StopReason | None = None
        error: str | None = None
        logger.info(
            f"Starting orchestration for session {self.session_id} with {len(history)} messages, "
            f"{len(self.tools)} tools, step ceiling {self.step_ceiling}"
        )

        try:
            self.history = sanitize(history)
            for event in self._apply_resolution(resolve(self.history, self.tools)):
                yield event
            await self._dispatch()

            tool_definitions = [tool.to_llm_definition() for tool in self.tools.values()]

            if _awaiting_answer(self.history):
                logger.info("Confirmations still outstanding and no new user text, not calling the model")
                for event in self._await_confirmation():
                    yield event
                stop_reason = StopReason.AWAITING_CONFIRMATION

            while self.state == OrchestrationState.RUNNING:
                if self.steps >= self.step_ceiling:
                    logger.warning(f"Orchestration reached step ceiling ({self.step_ceiling})")
                    self._transition(OrchestrationState.DONE)
                    stop_reason = StopReason.STEP_CEILING
                    break

                self.steps += 1
                logger.debug(f"Orchestration step {self.steps}/{self.step_ceiling}")
                yield StepStartEvent(step=self.steps)

                assistant = Message(role="assistant")
                try:
                    async for model_event in self.model.stream(
                        prepare_for_model(self.history), tool_definitions, self.system_prompt
                    ):
                        if isinstance(model_event, TextDelta):
                            _append_text(assistant, model_event.text)
                            yield TextDeltaEvent(text=model_event.text)
                        elif isinstance(model_event, ToolRequest):
                            assistant.parts.append(
                                ToolInvocationPart(
                                    tool_name=model_event.tool_name,
                                    call_id=model_event.call_id,
                                    arguments=model_event.arguments,
                                )
                            )
                            yield ToolStatusEvent(
                                call_id=model_event.call_id,
                                tool_name=model_event.tool_name,
                                status=ToolStatus.REQUESTED,
                                arguments=model_event.arguments,
                            )
                except Exception as e:
                    # The partial assistant message is discarded
                    logger.error(f"Model call failed on step {self.steps}: {e}", exc_info=True)
                    self._transition(OrchestrationState.FAILED)
                    stop_reason = StopReason.MODEL_ERROR
                    error = str(e)
                    yield ErrorEvent(message="The assistant is unavailable right now. Please try again.")
                    break

                if assistant.parts:
                    self.history.append(assistant)

                if not assistant.invocations:
                    self._transition(OrchestrationState.DONE)
                    stop_reason = StopReason.COMPLETE
                    break

                logger.info(f"Model requested {len(assistant.invocations)} tool calls")
                for event in self._apply_resolution(
                    resolve(self.history, self.tools, since=len(self.history) - 1)
                ):
                    yield event
                await self._dispatch()

                if pending_confirmations(self.history):
                    for event in self._await_confirmation():
                        yield event
                    stop_reason = StopReason.AWAITING_CONFIRMATION

            yield FinishEvent(
                state=self.state,
                stop_reason=stop_reason,
                steps=self.steps,
                pending_call_ids=[inv.call_id for inv in pending_confirmations(self.history)],
            )

        except (asyncio.CancelledError, GeneratorExit):
            logger.warning(f"Orchestration for session {self.session_id} cancelled on step {self.steps}")
            self._abandon()
            stop_reason = StopReason.CANCELLED
            error = "cancelled"
            raise

        finally:
            self.result = OrchestrationResult(
                state=self.state,
                history=self.history,
                steps=self.steps,
                stop_reason=stop_reason,
                error=error,
                warnings=self.warnings,
            )
            logger.info(
                f"Orchestration finished in state {self.state} after {self.steps} steps (reason: {stop_reason})"
            )
            if self.on_finish is not None:
                await self.on_finish(self.result)

    def _transition(self, new_state: OrchestrationState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid orchestration transition {self.state} -> {new_state}")
        logger.debug(f"Orchestration state {self.state} -> {new_state}")
        self.state = new_state

    def _await_confirmation(self) -> list[ToolStatusEvent]:
        """Stop the run until the user answers the pending confirmations."""
        self._transition(OrchestrationState.AWAITING_CONFIRMATION)
        return [
            ToolStatusEvent(
                call_id=invocation.call_id,
                tool_name=invocation.tool_name,
                status=ToolStatus.PENDING_CONFIRMATION,
                arguments=invocation.arguments,
            )
            for invocation in pending_confirmations(self.history)
        ]

    def _apply_resolution(self, resolution: Resolution) -> list[WarningEvent]:
        self.history = resolution.history
        events = []
        for warning in resolution.warnings:
            self.warnings.append(warning.message)
            events.append(WarningEvent(code=warning.code, message=warning.message, call_id=warning.call_id))
        return events

    async def _dispatch(self) -> None:
        """Execute confirmed invocations and answer rejected ones.

        Every result is appended before returning, so the next model call
        sees each request with its outcome.
        """
        answered = result_call_ids(self.history)
        owners: dict[str, Message] = {}
        confirmed: list[ToolInvocationPart] = []
        rejected: list[ToolInvocationPart] = []

        for message in self.history:
            for invocation in message.invocations:
                if invocation.call_id in answered:
                    continue
                if invocation.status == ToolStatus.CONFIRMED:
                    confirmed.append(invocation)
                elif invocation.status == ToolStatus.REJECTED:
                    rejected.append(invocation)
                else:
                    continue
                owners[invocation.call_id] = message

        for invocation in rejected:
            _append_result(owners[invocation.call_id], await reject(invocation, self.channel))

        results = await execute_all(
            confirmed,
            self.tools,
            session_id=self.session_id,
            channel=self.channel,
            timeout=self.tool_timeout,
        )
        for result in results:
            _append_result(owners[result.call_id], result)

    def _abandon(self) -> None:
        """Leave history at a fully-resolved snapshot after cancellation."""
        answered = result_call_ids(self.history)
        for message in self.history:
            for invocation in message.invocations:
                if invocation.status == ToolStatus.CONFIRMED and invocation.call_id not in answered:
                    invocation.status = ToolStatus.ERRORED
        self.history = sanitize(self.history)
        if self.state == OrchestrationState.RUNNING:
            self._transition(OrchestrationState.FAILED)


def run_orchestration(
    history: list[Message],
    tools: Mapping[str, ToolDefinition],
    step_ceiling: int = 10,
    *,
    model: ChatModel,
    system_prompt: str = "",
    session_id: str = "",
    tool_timeout: float | None = None,
    buffer_size: int = 64,
    cancel_event: asyncio.Event | None = None,
    on_finish: FinishCallback | None = None,
) -> AsyncIterator[StreamEvent]:
    """Run one orchestration and return its unified output stream.

    A fresh driver and channel are built for every call; nothing is shared
    between requests. A run stopped through ``cancel_event`` still ends with
    an ``error`` and a ``finish`` event.
    """
    channel = EventChannel(maxsize=buffer_size)
    driver = OrchestrationDriver(
        model,
        tools,
        channel,
        step_ceiling=step_ceiling,
        system_prompt=system_prompt,
        session_id=session_id,
        tool_timeout=tool_timeout,
        on_finish=on_finish,
    )
    return _with_cancel_notice(driver, merge(driver.run(history), channel, cancel_event=cancel_event))


async def _with_cancel_notice(
    driver: OrchestrationDriver, events: AsyncGenerator[StreamEvent, None]
) -> AsyncGenerator[StreamEvent, None]:
    async with aclosing(events):
        async for event in events:
            yield event

    result = driver.result
    if result is not None and result.stop_reason == StopReason.CANCELLED:
        yield ErrorEvent(message="The request was cancelled.")
        yield FinishEvent(
            state=result.state,
            stop_reason=result.stop_reason,
            steps=result.steps,
            pending_call_ids=result.pending_call_ids,
        )


def _awaiting_answer(history: list[Message]) -> bool:
    """Whether pending confirmations remain and the user has said nothing new since."""
    if not pending_confirmations(history):
        return False
    for message in reversed(history):
        if message.role == "assistant":
            return True
        if message.role == "user" and message.text.strip():
            return False
    return True


def _append_text(message: Message, text: str) -> None:
    if message.parts and isinstance(message.parts[-1], TextPart):
        message.parts[-1].text += text
    else:
        message.parts.append(TextPart(text=text))


def _append_result(message: Message, result: ToolResultPart) -> None:
    message.parts.append(result)
