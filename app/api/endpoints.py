"""API endpoints for the CampusGuide conversation service."""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from app import __version__
from app.models.conversation import (
    ConversationHistoryResponse,
    ConversationRequest,
    ConversationResponse,
    HealthResponse,
    KeyCheckResponse,
)
from app.models.events import ErrorEvent, StreamEvent
from app.models.profile import StudentProfile
from app.models.session import Session
from app.services.conversation import FALLBACK_RESPONSE, ConversationService, get_conversation_service
from app.services.profile import ProfileService, get_profile_service
from app.services.session_manager import InMemorySessionManager, get_session_manager
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _resolve_session(session_id: str | None, sessions: InMemorySessionManager) -> Session:
    if session_id:
        logger.info(f"Validating existing session: {session_id}")
        session = sessions.get_session(session_id)
        if not session:
            logger.warning(f"Invalid session ID provided: {session_id}")
            raise HTTPException(status_code=400, detail=f"Invalid session ID: {session_id}")
        return session

    logger.info("Creating new session")
    return sessions.get_or_create_session()


@router.post("/conversation/stream", tags=["Conversation"])
async def stream_conversation(
    request: ConversationRequest,
    conversation: ConversationService = Depends(get_conversation_service),
    sessions: InMemorySessionManager = Depends(get_session_manager),
) -> StreamingResponse:
    """Stream the assistant's turn as newline-delimited JSON events.

    The session ID is returned in the ``X-Session-Id`` header. Failures after
    the stream has started arrive as a final ``error`` event.
    """
    session = _resolve_session(request.session_id, sessions)
    try:
        message = conversation.build_user_message(request)
    except ValueError as e:
        logger.warning(f"Message validation error for session {session.session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    events = conversation.stream_message(message, session)

    async def ndjson() -> AsyncIterator[str]:
        try:
            async for event in events:
                yield _encode(event)
        except Exception as e:
            logger.error(f"Streaming failed for session {session.session_id}: {e}", exc_info=True)
            yield _encode(ErrorEvent(message=FALLBACK_RESPONSE))

    return StreamingResponse(
        ndjson(),
        media_type="application/x-ndjson",
        headers={"X-Session-Id": session.session_id},
    )


@router.post("/conversation", response_model=ConversationResponse, tags=["Conversation"])
async def handle_conversation(
    request: ConversationRequest,
    conversation: ConversationService = Depends(get_conversation_service),
    sessions: InMemorySessionManager = Depends(get_session_manager),
) -> ConversationResponse:
    """Handle a conversation message and return the collected AI response."""
    session = _resolve_session(request.session_id, sessions)
    session_id = session.session_id

    try:
        message = conversation.build_user_message(request)
    except ValueError as e:
        logger.warning(f"Message validation error for session {session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    try:
        response = await conversation.process_message(message, session)
        logger.info(f"Generated response for session {session_id}: {response.response[:50]}...")
        return response
    except Exception as e:
        logger.error(f"Conversation processing error for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=FALLBACK_RESPONSE) from e


@router.get(
    "/conversation/{session_id}/messages",
    response_model=ConversationHistoryResponse,
    tags=["Conversation"],
)
async def get_conversation_messages(
    session_id: str,
    sessions: InMemorySessionManager = Depends(get_session_manager),
) -> ConversationHistoryResponse:
    """Return the stored history of a conversation."""
    session = sessions.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")

    return ConversationHistoryResponse(
        session_id=session.session_id,
        messages=session.messages,
        state=session.last_result.state if session.last_result else None,
    )


@router.post("/api/ingest-profile", response_model=StudentProfile, tags=["Profile"])
async def ingest_profile(
    request: Request,
    session_id: str | None = None,
    profiles: ProfileService = Depends(get_profile_service),
    sessions: InMemorySessionManager = Depends(get_session_manager),
) -> StudentProfile:
    """Build a student profile from raw application text sent as the request body.

    When ``session_id`` is given, the profile personalizes that conversation.
    """
    raw_text = (await request.body()).decode("utf-8", errors="replace")
    if not raw_text.strip():
        raise HTTPException(status_code=400, detail="Request body must contain raw application text.")

    session = None
    if session_id:
        session = sessions.get_session(session_id)
        if not session:
            raise HTTPException(status_code=400, detail=f"Invalid session ID: {session_id}")

    try:
        profile = await profiles.build_profile_from_raw(raw_text)
    except ValueError as e:
        logger.warning(f"Profile input rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Error building student profile: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to build student profile") from e

    if session is not None:
        session.set_profile(profile)
    return profile


@router.get("/check-open-ai-key", response_model=KeyCheckResponse, tags=["Health"])
async def check_api_key() -> KeyCheckResponse:
    """Report whether the Anthropic API key is configured."""
    return KeyCheckResponse(success=bool(os.getenv("ANTHROPIC_API_KEY")))


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


def _encode(event: StreamEvent) -> str:
    return event.model_dump_json() + "\n"
