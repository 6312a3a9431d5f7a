"""Classify tool invocations as pending, confirmed or rejected."""

from collections.abc import Mapping
from dataclasses import dataclass, field

from app.models.messages import Message, ToolConfirmationPart, ToolInvocationPart, ToolResultPart, ToolStatus
from app.tools.base import ToolDefinition
from app.utils.logging import get_logger

logger = get_logger(__name__)

# Answers sent by the chat client
APPROVAL = {
    "YES": "Yes, confirmed.",
    "NO": "No, denied.",
}

_AFFIRMATIVE = frozenset({"yes", "y", "yes, confirmed", "confirm", "confirmed", "approve", "approved", "true"})
_NEGATIVE = frozenset({"no", "n", "no, denied", "deny", "denied", "reject", "rejected", "false"})


@dataclass
class ResolverWarning:
    """Recoverable condition found while resolving tool invocations."""

    code: str
    message: str
    call_id: str | None = None


@dataclass
class Resolution:
    """Outcome of :func:`resolve`."""

    history: list[Message]
    newly_confirmed: set[str] = field(default_factory=set)
    newly_rejected: set[str] = field(default_factory=set)
    warnings: list[ResolverWarning] = field(default_factory=list)


def parse_answer(answer: bool | str | None) -> bool | None:
    """Interpret a confirmation answer as yes/no, or None when it can't be parsed."""
    if isinstance(answer, bool):
        return answer
    if isinstance(answer, str):
        normalized = answer.strip().lower().rstrip(".!")
        if normalized in _AFFIRMATIVE:
            return True
        if normalized in _NEGATIVE:
            return False
    return None


def resolve(history: list[Message], tools: Mapping[str, ToolDefinition], since: int = 0) -> Resolution:
    """Advance tool invocations found in ``history``.

    Args:
        history: Sanitized conversation history (not mutated)
        tools: Tool descriptors keyed by name
        since: Index of the first message whose invocations are examined

    Returns:
        Resolution with the updated history copy, the call ids that were
        confirmed or rejected by this call, and any recoverable warnings
    """
    examined = {message.id for message in history[since:]}
    updated = [message.model_copy(deep=True) for message in history]
    resolution = Resolution(history=updated)
    resolution.history = _drop_duplicates(updated, resolution)

    for index, message in enumerate(resolution.history):
        if message.id not in examined or message.role != "assistant":
            continue

        answers: dict[str, ToolConfirmationPart] | None = None
        for invocation in message.invocations:
            if invocation.status not in (ToolStatus.REQUESTED, ToolStatus.PENDING_CONFIRMATION):
                continue

            tool = tools.get(invocation.tool_name)
            if tool is None or not tool.requires_confirmation:
                # Unknown tools are let through so the executor reports them
                invocation.status = ToolStatus.CONFIRMED
                resolution.newly_confirmed.add(invocation.call_id)
                continue

            invocation.status = ToolStatus.PENDING_CONFIRMATION

            if answers is None:
                answers = _answers_after(resolution.history, index)
            confirmation = answers.get(invocation.call_id)
            if confirmation is None:
                continue

            decision = parse_answer(confirmation.answer)
            if decision is None:
                logger.warning(f"Unparseable confirmation for {invocation.call_id}: {confirmation.answer!r}")
                resolution.warnings.append(
                    ResolverWarning(
                        code="malformed_confirmation",
                        message=f"Could not interpret the answer for {invocation.tool_name}; it is still pending.",
                        call_id=invocation.call_id,
                    )
                )
                continue

            if decision:
                invocation.status = ToolStatus.CONFIRMED
                resolution.newly_confirmed.add(invocation.call_id)
            else:
                invocation.status = ToolStatus.REJECTED
                resolution.newly_rejected.add(invocation.call_id)
            logger.info(f"Tool call {invocation.call_id} ({invocation.tool_name}) {invocation.status}")

    return resolution


def _answers_after(history: list[Message], index: int) -> dict[str, ToolConfirmationPart]:
    """Confirmation answers in the first user message following ``index``."""
    for message in history[index + 1 :]:
        if message.role == "user":
            answers: dict[str, ToolConfirmationPart] = {}
            for confirmation in message.confirmations:
                answers.setdefault(confirmation.call_id, confirmation)
            return answers
    return {}


def _drop_duplicates(history: list[Message], resolution: Resolution) -> list[Message]:
    """Keep only the first invocation and first result for each call id."""
    invoked: set[str] = set()
    answered: set[str] = set()
    kept_messages: list[Message] = []

    for message in history:
        kept = []
        for part in message.parts:
            if isinstance(part, ToolInvocationPart):
                if part.call_id in invoked:
                    logger.warning(f"Ignoring duplicate tool invocation {part.call_id} ({part.tool_name})")
                    resolution.warnings.append(
                        ResolverWarning(
                            code="duplicate_call_id",
                            message=f"Duplicate delivery of tool call {part.call_id} was ignored.",
                            call_id=part.call_id,
                        )
                    )
                    continue
                invoked.add(part.call_id)
            elif isinstance(part, ToolResultPart):
                if part.call_id in answered:
                    continue
                answered.add(part.call_id)
            kept.append(part)

        if kept:
            message.parts = kept
            kept_messages.append(message)

    return kept_messages
