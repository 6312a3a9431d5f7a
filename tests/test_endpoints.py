"""Tests for API endpoints."""

import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi.testclient import TestClient
from mock_models import ScriptedChatModel, text, tool_request

from app.main import app
from app.models.orchestration import OrchestrationConfig
from app.models.profile import DEMO_STUDENT_PROFILE
from app.orchestration.errors import ModelCallError
from app.services.conversation import ConversationService, get_conversation_service
from app.services.profile import ProfileExtractionError, get_profile_service
from app.services.scheduler import InMemoryTaskScheduler
from app.services.session_manager import InMemorySessionManager, get_session_manager
from app.tools.registry import ToolsRegistry

client = TestClient(app)


class Backend:
    """Test doubles wired into the app through dependency overrides."""

    def __init__(self):
        self.model = ScriptedChatModel()
        self.scheduler = InMemoryTaskScheduler()
        self.sessions = InMemorySessionManager()
        self.profiles = Mock()
        self.profiles.build_profile_from_raw = AsyncMock(return_value=DEMO_STUDENT_PROFILE)
        self.conversation = ConversationService(
            self.model, ToolsRegistry(self.scheduler), OrchestrationConfig(max_message_chars=200)
        )

    def script(self, *steps) -> None:
        self.model.steps.extend(steps)


@pytest.fixture
def backend():
    backend = Backend()
    app.dependency_overrides[get_conversation_service] = lambda: backend.conversation
    app.dependency_overrides[get_session_manager] = lambda: backend.sessions
    app.dependency_overrides[get_profile_service] = lambda: backend.profiles
    yield backend
    app.dependency_overrides.clear()


def read_events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line]


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_200(self):
        """Test that health check returns 200 status."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_response_structure(self):
        """Test that health check returns expected JSON structure."""
        response = client.get("/health")
        data = response.json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data

    def test_health_check_content_type(self):
        """Test that health check returns JSON content type."""
        response = client.get("/health")
        assert response.headers["content-type"] == "application/json"


class TestApiKeyCheck:
    """Tests for the API key check endpoint."""

    def test_key_present(self):
        """Test that a configured key reports success."""
        with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "test-key"}):
            assert client.get("/check-open-ai-key").json() == {"success": True}

    def test_key_missing(self):
        """Test that a missing key reports failure."""
        with patch.dict("os.environ", {}, clear=True):
            assert client.get("/check-open-ai-key").json() == {"success": False}


class TestConversationEndpoint:
    """Tests for the collected conversation endpoint."""

    def test_conversation_returns_response(self, backend):
        """Test that a plain turn returns the assistant text and a new session."""
        backend.script(text("Hi Jordan", ", welcome!"))

        response = client.post("/conversation", json={"message": "Hello"})
        data = response.json()

        assert response.status_code == 200
        assert data["response"] == "Hi Jordan, welcome!"
        assert data["state"] == "done"
        assert data["stop_reason"] == "complete"
        assert data["pending_confirmations"] == []
        assert len(data["session_id"]) > 0

    def test_conversation_uses_demo_profile(self, backend):
        """Test that sessions without a profile are personalized with the demo profile."""
        client.post("/conversation", json={"message": "Hello"})

        assert DEMO_STUDENT_PROFILE.student_name in backend.model.calls[0].system_prompt

    def test_conversation_with_session_id(self, backend):
        """Test that an existing session keeps its history across requests."""
        first = client.post("/conversation", json={"message": "Hello"}).json()

        second = client.post("/conversation", json={"message": "Again", "session_id": first["session_id"]})

        assert second.json()["session_id"] == first["session_id"]
        sent = backend.model.calls[1].messages
        assert [message.text for message in sent if message.role == "user"] == ["Hello", "Again"]

    def test_conversation_invalid_session(self, backend):
        """Test that an unknown session ID is rejected."""
        response = client.post("/conversation", json={"message": "Hello", "session_id": "nope"})

        assert response.status_code == 400
        assert "Invalid session ID" in response.json()["detail"]

    def test_conversation_message_too_long(self, backend):
        """Test that over-long messages are rejected."""
        response = client.post("/conversation", json={"message": "a" * 201})

        assert response.status_code == 400
        assert "too long" in response.json()["detail"]

    def test_conversation_empty_request(self, backend):
        """Test that a request with nothing to say is rejected."""
        response = client.post("/conversation", json={})

        assert response.status_code == 400

    def test_schedule_task_turn(self, backend):
        """Test a turn where the model schedules a task without asking."""
        backend.script(
            [
                tool_request(
                    "schedule_task",
                    {"when": {"type": "delayed", "delay_in_seconds": 3600}, "description": "Finish essay"},
                )
            ],
            text("Reminder set!"),
        )

        data = client.post("/conversation", json={"message": "Remind me in an hour"}).json()

        assert data["response"] == "Reminder set!"
        tasks = backend.scheduler.tasks.values()
        assert [task.description for task in tasks] == ["Finish essay"]

    def test_confirmation_round_trip(self, backend):
        """Test that a gated tool waits for approval across two requests."""
        session = backend.sessions.get_or_create_session()
        backend.script(
            [*text("Cancel it?"), tool_request("cancel_scheduled_task", {"task_id": "task_1"}, "cancel_1")],
            text("Cancelled."),
        )

        first = client.post("/conversation", json={"message": "Cancel my reminder", "session_id": session.session_id})
        data = first.json()

        assert data["state"] == "awaiting-confirmation"
        assert data["pending_confirmations"] == [
            {"call_id": "cancel_1", "tool_name": "cancel_scheduled_task", "arguments": {"task_id": "task_1"}}
        ]

        second = client.post(
            "/conversation",
            json={"session_id": session.session_id, "confirmations": [{"call_id": "cancel_1", "answer": True}]},
        )

        assert second.json()["state"] == "done"
        assert second.json()["response"] == "Cancelled."
        stored = backend.sessions.get_session(session.session_id).messages
        results = [res for message in stored for res in message.results]
        assert [res.call_id for res in results] == ["cancel_1"]
        assert "Unable to cancel task task_1" in results[0].output

    def test_model_failure_returns_fallback(self, backend):
        """Test that a model failure produces a failed turn with an apology."""
        backend.script(ModelCallError("overloaded"))

        data = client.post("/conversation", json={"message": "Hello"}).json()

        assert data["state"] == "failed"
        assert data["stop_reason"] == "model_error"
        assert "technical difficulties" in data["response"]


class TestStreamingEndpoint:
    """Tests for the NDJSON streaming endpoint."""

    def test_stream_events(self, backend):
        """Test that a streamed turn delivers ordered events ending in finish."""
        backend.script(text("Hel", "lo"))

        response = client.post("/conversation/stream", json={"message": "Hi"})
        events = read_events(response)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert response.headers["x-session-id"]
        assert [event["type"] for event in events] == ["step-start", "text-delta", "text-delta", "finish"]
        assert events[-1]["state"] == "done"

    def test_stream_tool_events(self, backend):
        """Test that tool status events appear in the stream."""
        backend.script(
            [tool_request("get_scheduled_tasks", {}, "list_1")],
            text("Nothing scheduled."),
        )

        events = read_events(client.post("/conversation/stream", json={"message": "What's scheduled?"}))

        statuses = [event["status"] for event in events if event["type"] == "tool-status"]
        assert statuses == ["requested", "confirmed", "executed"]
        assert [event["step"] for event in events if event["type"] == "step-start"] == [1, 2]

    def test_stream_model_error_event(self, backend):
        """Test that a model failure arrives as an error event, not a broken response."""
        backend.script(ModelCallError("overloaded"))

        response = client.post("/conversation/stream", json={"message": "Hi"})
        events = read_events(response)

        assert response.status_code == 200
        assert [event["type"] for event in events][-2:] == ["error", "finish"]
        assert events[-1]["state"] == "failed"

    def test_stream_invalid_session(self, backend):
        """Test that an unknown session is rejected before streaming."""
        response = client.post("/conversation/stream", json={"message": "Hi", "session_id": "missing"})

        assert response.status_code == 400

    def test_stream_persists_history(self, backend):
        """Test that the streamed turn is stored with the session."""
        backend.script(text("Stored reply"))

        response = client.post("/conversation/stream", json={"message": "Remember this"})
        read_events(response)
        session_id = response.headers["x-session-id"]

        history = client.get(f"/conversation/{session_id}/messages").json()

        assert history["state"] == "done"
        assert [message["role"] for message in history["messages"]] == ["user", "assistant"]
        assert history["messages"][1]["parts"] == [{"type": "text", "text": "Stored reply"}]


class TestHistoryEndpoint:
    """Tests for the conversation history endpoint."""

    def test_unknown_session(self, backend):
        """Test that an unknown session is a 404."""
        assert client.get("/conversation/unknown/messages").status_code == 404


class TestIngestProfileEndpoint:
    """Tests for profile ingestion."""

    def test_ingest_profile(self, backend):
        """Test that raw text becomes a profile."""
        response = client.post("/api/ingest-profile", content=b"My application essays", headers={"content-type": "text/plain"})

        assert response.status_code == 200
        assert response.json() == DEMO_STUDENT_PROFILE.model_dump()
        backend.profiles.build_profile_from_raw.assert_awaited_once_with("My application essays")

    def test_ingest_profile_empty_body(self, backend):
        """Test that an empty body is rejected."""
        response = client.post("/api/ingest-profile", content=b"   ")

        assert response.status_code == 400
        backend.profiles.build_profile_from_raw.assert_not_called()

    def test_ingest_profile_failure(self, backend):
        """Test that extraction failures are a 500."""
        backend.profiles.build_profile_from_raw.side_effect = ProfileExtractionError("bad reply")

        response = client.post("/api/ingest-profile", content=b"Essays")

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to build student profile"

    def test_ingest_profile_attaches_to_session(self, backend):
        """Test that a profile sent with a session ID personalizes that conversation."""
        custom = DEMO_STUDENT_PROFILE.model_copy(update={"student_name": "Riley Park", "university_name": "Ohio State"})
        backend.profiles.build_profile_from_raw.return_value = custom
        session = backend.sessions.get_or_create_session()

        response = client.post("/api/ingest-profile", params={"session_id": session.session_id}, content=b"Essays")
        client.post("/conversation", json={"message": "Hi", "session_id": session.session_id})

        assert response.status_code == 200
        assert session.profile == custom
        assert "already applied to Ohio State" in backend.model.calls[0].system_prompt

    def test_ingest_profile_unknown_session(self, backend):
        """Test that an unknown session ID is rejected."""
        response = client.post("/api/ingest-profile", params={"session_id": "missing"}, content=b"Essays")

        assert response.status_code == 400
