"""Coaching evaluation of a role-play session."""

import json
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

SCORE_FIELDS = (
    "overall_score",
    "communication_score",
    "problem_solving_score",
    "professionalism_score",
    "engagement_score",
)
DEFAULT_SCORE = 7
MIN_SCORE = 1
MAX_SCORE = 10

DEFAULT_FEEDBACK = "Good conversation overall with room for improvement."
DEFAULT_STRENGTHS = "Maintained professional tone throughout the conversation."
DEFAULT_IMPROVEMENTS = (
    "Focus on asking more clarifying questions and providing more detailed responses."
)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CoachingEvaluation(BaseModel):
    """Scores (1-10) and written feedback on the user's side of a session.

    Scores outside the range are clamped; missing or non-numeric scores
    become ``DEFAULT_SCORE``.
    """

    overall_score: int = DEFAULT_SCORE
    communication_score: int = DEFAULT_SCORE
    problem_solving_score: int = DEFAULT_SCORE
    professionalism_score: int = DEFAULT_SCORE
    engagement_score: int = DEFAULT_SCORE
    feedback: str = DEFAULT_FEEDBACK
    strengths: str = DEFAULT_STRENGTHS
    improvements: str = DEFAULT_IMPROVEMENTS
    created_at: datetime = Field(default_factory=_now)

    model_config = {"frozen": True}

    @field_validator(*SCORE_FIELDS, mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            return DEFAULT_SCORE
        try:
            score = round(float(value))
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_SCORE
        if score == 0:
            # Zero is treated as missing
            return DEFAULT_SCORE
        return max(MIN_SCORE, min(MAX_SCORE, score))

    @field_validator("feedback", "strengths", "improvements", mode="before")
    @classmethod
    def _text_or_default(cls, value: Any, info: ValidationInfo) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return cls.model_fields[info.field_name].default

    @property
    def scores(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in SCORE_FIELDS}

    @classmethod
    def from_reply(cls, content: str) -> "CoachingEvaluation":
        """Parse a model reply, falling back to the default evaluation.

        Accepts bare JSON, a fenced ```json block, or the outermost braces.
        """
        data = extract_json(content)
        return cls() if data is None else cls.from_data(data)

    @classmethod
    def from_data(cls, data: dict) -> "CoachingEvaluation":
        """Build from model output, ignoring unknown keys."""
        fields = {k: v for k, v in data.items() if k in cls.model_fields and k != "created_at"}
        return cls(**fields)


def extract_json(content: str) -> dict | None:
    candidates = [content]
    match = _CODE_BLOCK.search(content)
    if match:
        candidates.append(match.group(1))
    start, end = content.find("{"), content.rfind("}")
    if start != -1 and end > start:
        candidates.append(content[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None
