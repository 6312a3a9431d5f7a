"""Repair stored conversation history before it is sent to the model.

A history written by a crashed or aborted run can contain tool invocations
that never reached a terminal status, or results pointing at invocations
that no longer exist. Model APIs reject such conversations, so every run
passes its history through :func:`sanitize` first.
"""

from app.models.messages import (
    Message,
    MessagePart,
    ToolConfirmationPart,
    ToolInvocationPart,
    ToolResultPart,
    ToolStatus,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

DENIED_OUTPUT = "Error: User denied access to tool execution"
INTERRUPTED_OUTPUT = "Error: Tool call was interrupted before it completed."
UNANSWERED_OUTPUT = "Error: Tool call was never confirmed by the user."


def sanitize(history: list[Message]) -> list[Message]:
    """Return a copy of ``history`` with no dangling tool invocations.

    - Invocations whose input never finished streaming are dropped.
    - Other non-terminal invocations become ``errored`` with a synthetic
      result, except confirmations still awaiting an answer in the most
      recent assistant message.
    - Terminal invocations missing a result get a deterministic one;
      ``confirmed`` ones are left for the executor.
    - A call id delivered more than once keeps only its first invocation
      and first result.
    - Orphan results and messages left empty are dropped.

    The input is never mutated. Applying the function twice yields the
    same history as applying it once.
    """
    working = [message.model_copy(deep=True) for message in history]
    _drop_duplicates(working)
    awaitable_index = _last_assistant_index(working)

    dropped = {
        inv.call_id
        for message in working
        for inv in message.invocations
        if inv.arguments is None and not inv.status.is_terminal
    }
    answered = _valid_result_ids(working, dropped)

    invoked: set[str] = set()
    sanitized: list[Message] = []
    for index, message in enumerate(working):
        parts: list[MessagePart] = []
        for part in message.parts:
            if isinstance(part, ToolInvocationPart):
                if part.call_id in dropped:
                    logger.info(f"Dropping incomplete tool invocation {part.call_id} ({part.tool_name})")
                    continue
                invoked.add(part.call_id)
                parts.append(part)
                synthetic = _repair(part, part.call_id in answered, index == awaitable_index)
                if synthetic is not None:
                    parts.append(synthetic)
            elif isinstance(part, ToolResultPart):
                if part.call_id not in invoked:
                    logger.info(f"Dropping orphan tool result {part.call_id}")
                    continue
                parts.append(part)
            else:
                parts.append(part)

        if parts:
            message.parts = parts
            sanitized.append(message)
        else:
            logger.debug(f"Dropping message {message.id} left without content")

    return sanitized


def prepare_for_model(history: list[Message]) -> list[Message]:
    """Build the view of ``history`` actually sent to the model.

    Only invocations with a terminal status and a result are kept; pending
    confirmations and confirmation answers stay out of the model's sight.
    """
    answered = {result.call_id for message in history for result in message.results}
    visible: list[Message] = []
    for message in history:
        parts: list[MessagePart] = []
        for part in message.parts:
            if isinstance(part, ToolConfirmationPart):
                continue
            if isinstance(part, ToolInvocationPart) and not (
                part.status.is_terminal and part.call_id in answered
            ):
                continue
            parts.append(part.model_copy(deep=True))
        if parts:
            visible.append(message.model_copy(update={"parts": parts}))
    return visible


def _repair(invocation: ToolInvocationPart, has_result: bool, awaitable: bool) -> ToolResultPart | None:
    """Bring one invocation to a well-formed state, returning a synthetic result if one is needed."""
    status = invocation.status

    if status == ToolStatus.CONFIRMED or (status.is_terminal and has_result):
        return None

    if status == ToolStatus.PENDING_CONFIRMATION and awaitable and not has_result:
        return None

    if status == ToolStatus.REJECTED:
        return ToolResultPart(call_id=invocation.call_id, output=DENIED_OUTPUT, is_error=True)

    logger.warning(f"Repairing tool invocation {invocation.call_id} ({invocation.tool_name}) left in {status}")
    invocation.status = ToolStatus.ERRORED
    if has_result:
        return None

    output = UNANSWERED_OUTPUT if status == ToolStatus.PENDING_CONFIRMATION else INTERRUPTED_OUTPUT
    return ToolResultPart(call_id=invocation.call_id, output=output, is_error=True)


def _drop_duplicates(history: list[Message]) -> None:
    """Remove repeated invocations and results of a call id in place, first one wins."""
    invoked: set[str] = set()
    answered: set[str] = set()
    for message in history:
        parts: list[MessagePart] = []
        for part in message.parts:
            if isinstance(part, ToolInvocationPart):
                if part.call_id in invoked:
                    logger.warning(f"Dropping duplicate tool invocation {part.call_id} ({part.tool_name})")
                    continue
                invoked.add(part.call_id)
            elif isinstance(part, ToolResultPart):
                if part.call_id in answered:
                    continue
                if part.call_id in invoked:
                    answered.add(part.call_id)
            parts.append(part)
        message.parts = parts


def _valid_result_ids(history: list[Message], dropped: set[str]) -> set[str]:
    """Call ids whose result follows a surviving invocation."""
    invoked: set[str] = set()
    answered: set[str] = set()
    for message in history:
        for part in message.parts:
            if isinstance(part, ToolInvocationPart) and part.call_id not in dropped:
                invoked.add(part.call_id)
            elif isinstance(part, ToolResultPart) and part.call_id in invoked:
                answered.add(part.call_id)
    return answered


def _last_assistant_index(history: list[Message]) -> int | None:
    for index in range(len(history) - 1, -1, -1):
        if history[index].role == "assistant" and history[index].parts:
            return index
    return None
