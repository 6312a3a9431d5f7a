"""Main FastAPI application."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.api.endpoints import router
from app.models.messages import Message
from app.services.scheduler import ScheduledTask, task_scheduler
from app.services.session_manager import session_manager
from app.utils.logging import LogConfig, get_logger, setup_logging

logger = get_logger(__name__)


async def run_scheduled_task(task: ScheduledTask) -> None:
    """Post a due task into its conversation as a user message."""
    session = session_manager.get_session(task.session_id)
    if session is None:
        logger.warning(f"Dropping scheduled task {task.id}: session {task.session_id} no longer exists")
        return
    session.append_message(Message.from_text("user", f"Running scheduled task: {task.description}"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LogConfig.from_env())
    if not os.getenv("ANTHROPIC_API_KEY"):
        logger.error("ANTHROPIC_API_KEY is not set; conversation and profile endpoints will fail")

    task_scheduler.set_callback(run_scheduled_task)
    task_scheduler.start()
    yield
    await task_scheduler.stop()


# Create FastAPI application
app = FastAPI(
    title="CampusGuide",
    description=(
        "A conversational AI service that talks with university applicants, "
        "with tool calling, human confirmation of sensitive actions and task scheduling."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Conversation",
            "description": (
                "Conversational interactions with the assistant. Streaming responses are "
                "newline-delimited JSON events; tool calls that need approval pause the turn."
            ),
        },
        {
            "name": "Profile",
            "description": "Build a student profile from raw application material.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
