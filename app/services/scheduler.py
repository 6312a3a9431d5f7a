"""One-shot task scheduling service interface and in-memory implementation."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from cuid2 import cuid_wrapper

from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


@dataclass
class ScheduledTask:
    """Scheduled task data model."""

    id: str
    session_id: str
    description: str
    run_at: datetime
    status: str = "scheduled"  # scheduled, completed, cancelled
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


TaskCallback = Callable[[ScheduledTask], Awaitable[None]]


class TaskScheduler(Protocol):
    """Interface for task scheduling services."""

    async def schedule(self, session_id: str, description: str, run_at: datetime) -> ScheduledTask:
        """Schedule a one-shot task.

        Args:
            session_id: Conversation the task belongs to
            description: What the task should do when it runs
            run_at: When the task is due

        Returns:
            The scheduled task
        """
        ...

    async def list_tasks(self, session_id: str) -> list[ScheduledTask]:
        """List tasks that have not run or been cancelled yet."""
        ...

    async def cancel(self, session_id: str, task_id: str) -> bool:
        """Cancel a scheduled task.

        Returns:
            True if the task was cancelled, False if not found or already done
        """
        ...


class InMemoryTaskScheduler:
    """In-memory scheduler with a polling loop that fires due tasks."""

    def __init__(self, poll_interval_seconds: float = 1.0):
        self.tasks: dict[str, ScheduledTask] = {}
        self.poll_interval = poll_interval_seconds
        self._callback: TaskCallback | None = None
        self._poller: asyncio.Task[None] | None = None

    def set_callback(self, callback: TaskCallback) -> None:
        """Set the coroutine called for every task that becomes due."""
        self._callback = callback

    async def schedule(self, session_id: str, description: str, run_at: datetime) -> ScheduledTask:
        """Schedule a one-shot task."""
        if run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=UTC)

        task = ScheduledTask(id=cuid(), session_id=session_id, description=description, run_at=run_at)
        self.tasks[task.id] = task
        logger.info(f"Scheduled task {task.id} for session {session_id} at {run_at.isoformat()}")
        return task

    async def list_tasks(self, session_id: str) -> list[ScheduledTask]:
        """List pending tasks for a session, soonest first."""
        return sorted(
            (task for task in self.tasks.values() if task.session_id == session_id and task.status == "scheduled"),
            key=lambda task: task.run_at,
        )

    async def cancel(self, session_id: str, task_id: str) -> bool:
        """Cancel a pending task owned by the session."""
        task = self.tasks.get(task_id)
        if task and task.session_id == session_id and task.status == "scheduled":
            task.status = "cancelled"
            logger.info(f"Cancelled task {task_id} for session {session_id}")
            return True
        return False

    async def run_due(self, now: datetime | None = None) -> list[ScheduledTask]:
        """Fire every task due at ``now``.

        Tasks are marked completed before their callback runs, so each fires
        exactly once even if the callback fails.
        """
        now = now or datetime.now(UTC)
        due = [task for task in self.tasks.values() if task.status == "scheduled" and task.run_at <= now]

        for task in due:
            task.status = "completed"
            logger.info(f"Running scheduled task {task.id}: {task.description}")
            if self._callback is None:
                continue
            try:
                await self._callback(task)
            except Exception as e:
                logger.error(f"Scheduled task {task.id} callback failed: {e}", exc_info=True)

        return due

    async def run_forever(self) -> None:
        """Poll for due tasks until cancelled."""
        while True:
            await self.run_due()
            await asyncio.sleep(self.poll_interval)

    def start(self) -> None:
        """Start the background poller."""
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self.run_forever())
            logger.info("Task scheduler started")

    async def stop(self) -> None:
        """Stop the background poller."""
        if self._poller is None:
            return
        self._poller.cancel()
        try:
            await self._poller
        except asyncio.CancelledError:
            pass
        self._poller = None
        logger.info("Task scheduler stopped")


task_scheduler = InMemoryTaskScheduler()
