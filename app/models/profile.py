"""Student profile models."""

from pydantic import BaseModel


class StudentProfile(BaseModel):
    """Compressed view of a student's application used to personalize the chat."""

    university_name: str
    student_name: str
    major: str
    application_round: str
    key_themes: str
    context_summary: str
    tone_style: str
    sensitivity_flags: str


DEMO_STUDENT_PROFILE = StudentProfile(
    university_name="Penn State",
    student_name="Jordan Lee",
    major="Computer Science",
    application_round="Fall 2027 Regular Decision",
    key_themes=(
        "first-gen abroad, AI + education projects, balancing 20 hrs/week work with a heavy course load, "
        "resilience after health setbacks"
    ),
    context_summary=(
        "Grew up abroad and moved to the US for college; family finances are tight, works part-time while "
        "studying, recovering from a past surgery while still pushing academically."
    ),
    tone_style="chill, peer-mentor, very supportive but honest about trade-offs",
    sensitivity_flags="financial stress, health history, immigration context, burnout risk",
)
