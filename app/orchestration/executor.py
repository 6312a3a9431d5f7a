"""Run confirmed tool invocations and produce their results."""

import asyncio
from collections.abc import Mapping

from pydantic import ValidationError

from app.models.events import ToolProgressEvent, ToolStatusEvent
from app.models.messages import ToolInvocationPart, ToolResultPart, ToolStatus
from app.orchestration.sanitizer import DENIED_OUTPUT
from app.orchestration.stream import EventChannel
from app.tools.base import ProgressEmitter, ToolContext, ToolDefinition
from app.utils.logging import get_logger

logger = get_logger(__name__)


async def execute(
    invocation: ToolInvocationPart,
    tools: Mapping[str, ToolDefinition],
    *,
    session_id: str = "",
    channel: EventChannel | None = None,
    timeout: float | None = None,
) -> ToolResultPart:
    """Execute one confirmed invocation.

    Tool faults (unknown tool, invalid arguments, handler exceptions,
    timeouts) never propagate: they come back as an ``errored`` result.
    The invocation's status is updated in place.

    Args:
        invocation: Confirmed tool invocation
        tools: Tool descriptors keyed by name
        session_id: Conversation the call belongs to
        channel: Stream channel for status and progress events
        timeout: Maximum seconds for the handler, None for no limit

    Returns:
        The single terminal result for the invocation
    """
    tool = tools.get(invocation.tool_name)
    if tool is None:
        logger.error(f"Unknown tool requested: {invocation.tool_name}")
        return await _finish(invocation, channel, f"Error: Unknown tool {invocation.tool_name}", is_error=True)

    try:
        params = tool.parse_input(invocation.arguments or {})
    except ValidationError as e:
        logger.warning(f"Invalid arguments for tool {invocation.tool_name}: {e}")
        return await _finish(invocation, channel, f"Error: Invalid arguments for {tool.name}: {e}", is_error=True)

    if channel is not None:
        await channel.send(
            ToolStatusEvent(
                call_id=invocation.call_id,
                tool_name=invocation.tool_name,
                status=ToolStatus.CONFIRMED,
                arguments=invocation.arguments,
            )
        )

    context = ToolContext(
        session_id=session_id,
        call_id=invocation.call_id,
        tool_name=invocation.tool_name,
        emit=_progress_emitter(invocation, channel),
    )

    logger.debug(f"Executing tool: {tool.name} with input: {invocation.arguments}")
    try:
        output = await asyncio.wait_for(tool.handler(params, context), timeout=timeout)
    except asyncio.CancelledError:
        logger.warning(f"Tool {tool.name} cancelled before completing")
        invocation.status = ToolStatus.ERRORED
        raise
    except TimeoutError:
        logger.error(f"Tool {tool.name} timed out after {timeout}s")
        return await _finish(invocation, channel, f"Error: Tool timed out after {timeout}s", is_error=True)
    except Exception as e:
        logger.error(f"Tool {tool.name} failed: {e}", exc_info=True)
        return await _finish(invocation, channel, f"Error: {e!s}", is_error=True)

    logger.debug(f"Tool {tool.name} succeeded: {str(output)[:100]}...")
    return await _finish(invocation, channel, str(output), is_error=False)


async def execute_all(
    invocations: list[ToolInvocationPart],
    tools: Mapping[str, ToolDefinition],
    *,
    session_id: str = "",
    channel: EventChannel | None = None,
    timeout: float | None = None,
) -> list[ToolResultPart]:
    """Dispatch independent invocations concurrently and collect every result."""
    if not invocations:
        return []
    logger.info(f"Dispatching {len(invocations)} tool calls")
    return list(
        await asyncio.gather(
            *(
                execute(invocation, tools, session_id=session_id, channel=channel, timeout=timeout)
                for invocation in invocations
            )
        )
    )


async def reject(invocation: ToolInvocationPart, channel: EventChannel | None = None) -> ToolResultPart:
    """Build the result reported to the model for an invocation the user denied."""
    result = ToolResultPart(call_id=invocation.call_id, output=DENIED_OUTPUT, is_error=True)
    if channel is not None:
        await channel.send(
            ToolStatusEvent(
                call_id=invocation.call_id,
                tool_name=invocation.tool_name,
                status=ToolStatus.REJECTED,
                output=DENIED_OUTPUT,
            )
        )
    return result


async def _finish(
    invocation: ToolInvocationPart,
    channel: EventChannel | None,
    output: str,
    is_error: bool,
) -> ToolResultPart:
    invocation.status = ToolStatus.ERRORED if is_error else ToolStatus.EXECUTED
    if channel is not None:
        await channel.send(
            ToolStatusEvent(
                call_id=invocation.call_id,
                tool_name=invocation.tool_name,
                status=invocation.status,
                output=output,
            )
        )
    return ToolResultPart(call_id=invocation.call_id, output=output, is_error=is_error)


def _progress_emitter(invocation: ToolInvocationPart, channel: EventChannel | None) -> ProgressEmitter:
    async def emit(message: str) -> None:
        if channel is not None:
            await channel.send(
                ToolProgressEvent(call_id=invocation.call_id, tool_name=invocation.tool_name, message=message)
            )

    return emit
