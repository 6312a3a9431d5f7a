"""Session and state management models."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.models.messages import Message
from app.models.orchestration import OrchestrationResult, OrchestrationState
from app.models.profile import StudentProfile
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """Session state for conversation management."""

    session_id: str
    profile: StudentProfile | None = None
    messages: list[Message] = field(default_factory=list)
    last_result: OrchestrationResult | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_activity: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def awaiting_confirmation(self) -> bool:
        return self.last_result is not None and self.last_result.state == OrchestrationState.AWAITING_CONFIRMATION

    def as_dict(self) -> dict[str, Any]:
        """Return the session as a dictionary."""
        return {
            "session_id": self.session_id,
            "has_profile": self.profile is not None,
            "message_count": len(self.messages),
            "last_state": self.last_result.state if self.last_result else None,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
        }

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = datetime.now(UTC)

    def append_message(self, message: Message) -> None:
        """Append a message to the stored history."""
        self.messages.append(message)
        self.update_activity()

    def set_profile(self, profile: StudentProfile) -> None:
        logger.info(f"Attaching profile for {profile.student_name} to session {self.session_id}")
        self.profile = profile
        self.update_activity()

    def apply_result(self, result: OrchestrationResult, started_with: int | None = None) -> None:
        """Replace the stored history with the sanitized/resolved outcome of a run.

        Messages appended after the first ``started_with`` while the run was in
        flight (a scheduled task firing, for instance) are kept after it.
        """
        late = self.messages[started_with:] if started_with is not None else []
        self.messages = list(result.history) + late
        self.last_result = result
        self.update_activity()
