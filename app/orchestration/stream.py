"""Merge the model event stream with out-of-band tool events.

Both sources write into one bounded :class:`EventChannel`. A slow consumer
fills the channel and suspends every producer at its next ``send``; nothing
is dropped and nothing is buffered beyond ``maxsize``.
"""

import asyncio
from collections.abc import AsyncGenerator

from app.models.events import StreamEvent
from app.utils.logging import get_logger

logger = get_logger(__name__)


class EventChannel:
    """Bounded single-consumer channel of stream events."""

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, event: StreamEvent) -> None:
        """Enqueue an event, waiting while the channel is full."""
        if self.closed:
            logger.debug(f"Discarding {event.type} event sent after channel close")
            return
        await self._queue.put(event)

    def close(self) -> None:
        """Mark the end of production; queued events remain readable."""
        self._closed.set()

    async def receive(self) -> StreamEvent | None:
        """Return the next event, or None once the channel is closed and drained."""
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                return None

            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in (getter, closer):
                    if not waiter.done():
                        waiter.cancel()

            if getter.done() and not getter.cancelled():
                return getter.result()


async def merge(
    model_events: AsyncGenerator[StreamEvent, None],
    channel: EventChannel,
    *,
    cancel_event: asyncio.Event | None = None,
) -> AsyncGenerator[StreamEvent, None]:
    """Produce the unified output stream.

    Model events keep their emission order. Tool events already written to
    ``channel`` interleave at the point they were sent. The stream ends once
    ``model_events`` is exhausted and the channel has drained. Closing the
    returned generator, or setting ``cancel_event``, cancels the producer.

    The result is single-pass: it can be consumed only once.
    """

    async def pump() -> None:
        try:
            async for event in model_events:
                await channel.send(event)
        finally:
            channel.close()
            await model_events.aclose()

    producer = asyncio.create_task(pump())
    watcher = asyncio.create_task(_cancel_on(cancel_event, producer)) if cancel_event is not None else None

    try:
        while (event := await channel.receive()) is not None:
            yield event

        await asyncio.wait({producer})
        if not producer.cancelled():
            # Re-raise anything the producer failed with
            producer.result()
    finally:
        for task in (producer, watcher):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(*(task for task in (producer, watcher) if task is not None), return_exceptions=True)


async def _cancel_on(cancel_event: asyncio.Event, producer: asyncio.Task[None]) -> None:
    await cancel_event.wait()
    if not producer.done():
        logger.info("Cancellation requested, stopping orchestration")
        producer.cancel()
