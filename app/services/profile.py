"""Student profile extraction from raw application text."""

from pydantic import ValidationError

from app.clients.anthropic import AnthropicClient, AnthropicMessage, get_anthropic_client
from app.models.profile import StudentProfile
from app.utils.logging import get_logger

logger = get_logger(__name__)

PROFILE_SYSTEM_PROMPT = """
You are an admissions-focused analysis assistant.

Your job is to read a student's entire application context (forms, essays, activities, notes)
and compress it into a structured JSON object with the following exact shape:

{
  "university_name": string,
  "student_name": string,
  "major": string,
  "application_round": string,
  "key_themes": string,              // 1-3 sentence summary of the main recurring themes
  "context_summary": string,         // 2-4 sentence summary of background + constraints
  "tone_style": string,              // short description of how the conversational AI should sound
  "sensitivity_flags": string        // comma-separated list of sensitive topics to handle gently
}

Rules:
- Output VALID JSON ONLY. Do not wrap it in markdown, backticks, or extra text.
- If some fields are unknown, make a reasonable best guess based on the text, but do not invent wild details.
- Keep strings concise but specific.
"""


class ProfileExtractionError(Exception):
    """Raised when the model reply can't be turned into a profile."""


class ProfileService:
    """Builds a StudentProfile from pasted application material."""

    def __init__(self, client: AnthropicClient | None = None):
        self._client = client

    @property
    def client(self) -> AnthropicClient:
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    async def build_profile_from_raw(self, raw_application_text: str) -> StudentProfile:
        """Compress raw application text into a structured profile.

        Raises:
            ValueError: If the text is empty or too long
            ProfileExtractionError: If the model reply is not a valid profile
        """
        if not raw_application_text.strip():
            raise ValueError("Request body must contain raw application text.")

        self.client.validate_message_tokens(raw_application_text)

        response = await self.client.create_message(
            messages=[AnthropicMessage(role="user", content=raw_application_text)],
            system_prompt=PROFILE_SYSTEM_PROMPT,
            temperature=0.2,
        )
        logger.info(
            f"Profile extraction used {response.usage.input_tokens} input / {response.usage.output_tokens} output tokens"
        )

        try:
            return StudentProfile.model_validate_json(response.text.strip())
        except ValidationError as e:
            logger.error(f"Profile reply was not valid JSON: {e}")
            raise ProfileExtractionError("Failed to build student profile") from e


_profile_service: ProfileService | None = None


def get_profile_service() -> ProfileService:
    """Get or create profile service instance."""
    global _profile_service
    if _profile_service is None:
        _profile_service = ProfileService()
    return _profile_service
