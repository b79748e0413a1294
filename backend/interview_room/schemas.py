from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Wire models use camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- conversation ----------

class Turn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=time.time)

    @field_validator("content", mode="before")
    @classmethod
    def _non_empty_content(cls, value):
        if value is None:
            raise ValueError("turn content is required")
        text = str(value)
        if not text.strip():
            raise ValueError("turn content must not be blank")
        return text


# ---------- persistence records ----------

class InterviewCreate(CamelModel):
    user_id: int | None = None
    job_description: str
    skills: list[str]
    interview_type: str
    difficulty: str


class InterviewRecord(InterviewCreate):
    id: int
    status: str = "in_progress"
    recording_url: str | None = None
    duration: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MessageRecord(CamelModel):
    id: int
    interview_id: int
    sender: Literal["ai", "user"]
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class SkillRating(CamelModel):
    name: str
    score: int


class Feedback(CamelModel):
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    learning_paths: list[str] = Field(default_factory=list)


class InterviewResults(CamelModel):
    overall_rating: int = Field(ge=1, le=10)
    technical_proficiency: str
    skill_ratings: list[SkillRating] = Field(default_factory=list)
    feedback: Feedback = Field(default_factory=Feedback)


class ResultRecord(InterviewResults):
    id: int
    interview_id: int
    created_at: datetime = Field(default_factory=_utcnow)


class JobAnalysis(CamelModel):
    skills: list[str] = Field(default_factory=list)
    role: str = ""
    seniority: str = ""


class JobDescriptionRequest(CamelModel):
    job_description: str


# ---------- session protocol (client -> server) ----------

class StartSessionPayload(CamelModel):
    interview_id: int | None = 0
    job_description: str = ""
    skills: list[str] = Field(default_factory=list)
    interview_type: str = "technical"
    difficulty: str = "junior"


class UserMessagePayload(CamelModel):
    session_id: str
    message: str


class SessionRefPayload(CamelModel):
    session_id: str
