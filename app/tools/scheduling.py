"""Task scheduling tools."""

import inspect
from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.services.scheduler import TaskScheduler
from app.tools.base import ToolContext, ToolDefinition


class ScheduleWhen(BaseModel):
    """When a task should run."""

    type: Literal["scheduled", "delayed", "no-schedule"] = Field(
        ...,
        description='"scheduled" for a specific date, "delayed" for a relative delay, "no-schedule" if no time was given',
    )
    date: datetime | None = Field(
        None,
        description="ISO 8601 date and time the task should run (type 'scheduled')",
        examples=["2027-01-15T09:00:00Z"],
    )
    delay_in_seconds: int | None = Field(
        None,
        description="Seconds from now until the task runs (type 'delayed')",
        ge=1,
    )

    @model_validator(mode="after")
    def check_timing(self) -> "ScheduleWhen":
        if self.type == "scheduled" and self.date is None:
            raise ValueError("date is required when type is 'scheduled'")
        if self.type == "delayed" and self.delay_in_seconds is None:
            raise ValueError("delay_in_seconds is required when type is 'delayed'")
        return self

    def resolve(self, now: datetime) -> datetime | None:
        """The absolute due time, or None when no time was given."""
        if self.type == "scheduled" and self.date is not None:
            return self.date if self.date.tzinfo else self.date.replace(tzinfo=UTC)
        if self.type == "delayed" and self.delay_in_seconds is not None:
            return now + timedelta(seconds=self.delay_in_seconds)
        return None


class ScheduleTaskInput(BaseModel):
    """Input schema for schedule_task."""

    when: ScheduleWhen
    description: str = Field(..., description="What should happen when the task runs", min_length=1, max_length=500)


class CancelTaskInput(BaseModel):
    """Input schema for cancel_scheduled_task."""

    task_id: str = Field(..., description="The ID of the task to cancel", min_length=1, max_length=50)


class EmptyInput(BaseModel):
    """Empty input schema for tools that don't require parameters."""


def _describe(handler) -> str:
    return inspect.cleandoc(handler.__doc__ or "")


def create_schedule_task_tool(scheduler: TaskScheduler) -> ToolDefinition:
    async def schedule_task_handler(params: ScheduleTaskInput, context: ToolContext) -> str:
        """Schedule a one-shot task to run later.

        Purpose: Remind the student about study time, deadlines, or application work

        Required Information:
        - when: the timing, as a specific date ("scheduled") or a delay in seconds ("delayed")
        - description: what should happen when the task runs

        Example Usage:
        - User says: "Remind me to finish my essay draft on Friday at 6pm"
        - Call: schedule_task(when={"type": "scheduled", "date": "<Friday 18:00 ISO date>"},
          description="Finish essay draft")

        Example Usage 2:
        - User says: "Ping me in 30 minutes to take a break"
        - Call: schedule_task(when={"type": "delayed", "delay_in_seconds": 1800}, description="Take a break")

        Important Notes:
        - Recurring schedules are not supported
        - If the student gave no time, ask for one instead of scheduling
        - Dates in the past are refused
        """
        now = datetime.now(UTC)
        run_at = params.when.resolve(now)
        if run_at is None:
            return "Not a valid schedule input. Ask the student when the task should run."
        if run_at < now:
            return f"Cannot schedule a task in the past ({run_at.isoformat()})."

        await context.emit("Scheduling task")
        task = await scheduler.schedule(context.session_id, params.description, run_at)
        return f'Task {task.id} scheduled for {run_at.isoformat(timespec="minutes")}: {task.description}'

    return ToolDefinition(
        name="schedule_task",
        description=_describe(schedule_task_handler),
        input_schema_class=ScheduleTaskInput,
        handler=schedule_task_handler,
    )


def create_get_scheduled_tasks_tool(scheduler: TaskScheduler) -> ToolDefinition:
    async def get_scheduled_tasks_handler(params: EmptyInput, context: ToolContext) -> str:
        """List all tasks that have been scheduled for this student.

        Parameters: None

        Response Format: One line per task with its ID, due time and description.
        Task IDs are needed for cancel_scheduled_task.
        """
        tasks = await scheduler.list_tasks(context.session_id)
        if not tasks:
            return "No scheduled tasks found."

        lines = ["Scheduled tasks:"]
        for task in tasks:
            lines.append(f"- {task.id}: {task.run_at.strftime('%A, %B %d, %Y at %I:%M %p %Z')} - {task.description}")
        return "\n".join(lines)

    return ToolDefinition(
        name="get_scheduled_tasks",
        description=_describe(get_scheduled_tasks_handler),
        input_schema_class=EmptyInput,
        handler=get_scheduled_tasks_handler,
    )


def create_cancel_scheduled_task_tool(scheduler: TaskScheduler) -> ToolDefinition:
    async def cancel_scheduled_task_handler(params: CancelTaskInput, context: ToolContext) -> str:
        """Cancel a scheduled task using its ID.

        The student is asked to confirm before the task is cancelled.

        Required Information:
        - task_id: the exact task ID, as listed by get_scheduled_tasks

        Example Usage:
        - User says: "Cancel the essay reminder"
        - Lookup the task ID via get_scheduled_tasks
        - Call: cancel_scheduled_task(task_id="<id>")
        """
        cancelled = await scheduler.cancel(context.session_id, params.task_id)
        if cancelled:
            return f"Task {params.task_id} has been successfully canceled."
        return f"Unable to cancel task {params.task_id}. It may not exist or already have run."

    return ToolDefinition(
        name="cancel_scheduled_task",
        description=_describe(cancel_scheduled_task_handler),
        input_schema_class=CancelTaskInput,
        handler=cancel_scheduled_task_handler,
        requires_confirmation=True,
    )
