from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from interview_room.prompts import FALLBACK_QUESTION, build_interviewer_prompt
from interview_room.schemas import InterviewRecord, Turn
from interview_room.system_metrics import increment_metric, observe_generation_latency_ms

logger = logging.getLogger("interview_room.conversation.orchestrator")

_ALLOWED_ROLES = {"user", "assistant"}


class TurnGenerator(Protocol):
    async def complete(self, messages: list[dict]) -> str:
        ...


@dataclass
class ConversationPayload:
    instruction: str
    context: str
    turns: list[dict] = field(default_factory=list)

    def to_messages(self) -> list[dict]:
        return [
            {"role": "system", "content": self.instruction},
            {"role": "user", "content": self.context},
            *self.turns,
        ]


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def normalize_turn(item: Any) -> dict | None:
    """Returns a {role, content} message, or None when the turn must be dropped."""
    if item is None:
        return None
    if isinstance(item, Turn):
        return {"role": item.role, "content": item.content}

    content = _field(item, "content")
    if content is None:
        content = _field(item, "text")
    if content is None:
        return None
    content = str(content)
    if not content.strip():
        return None

    role = str(_field(item, "role") or "").strip().lower()
    if not role:
        role = "assistant" if str(_field(item, "sender") or "").lower() == "ai" else "user"
    if role not in _ALLOWED_ROLES:
        return None
    return {"role": role, "content": content}


def normalize_history(history: Iterable[Any] | None) -> list[dict]:
    turns: list[dict] = []
    dropped = 0
    for index, item in enumerate(list(history or [])):
        normalized = normalize_turn(item)
        if normalized is None:
            dropped += 1
            logger.warning("skipping turn without usable content | index=%s", index)
            continue
        turns.append(normalized)
    if dropped:
        logger.info("history normalized | kept=%s dropped=%s", len(turns), dropped)
    return turns


class ConversationOrchestrator:
    def __init__(self, generator: TurnGenerator, fallback_question: str = FALLBACK_QUESTION):
        self.generator = generator
        self.fallback_question = fallback_question

    def build_payload(self, interview: InterviewRecord, history: Iterable[Any] | None) -> ConversationPayload:
        return ConversationPayload(
            instruction=build_interviewer_prompt(interview.difficulty, interview.interview_type, interview.skills),
            context=f"Job Description: {interview.job_description or 'Technical position'}",
            turns=normalize_history(history),
        )

    async def generate_next_turn(self, interview: InterviewRecord, history: Iterable[Any] | None) -> str:
        payload = self.build_payload(interview, history)
        started = time.perf_counter()
        try:
            reply = await self.generator.complete(payload.to_messages())
        except Exception as exc:
            increment_metric("generation_fallbacks", 1)
            logger.warning("next turn generation failed; using fallback | interview_id=%s err=%s", interview.id, exc)
            return self.fallback_question
        finally:
            observe_generation_latency_ms((time.perf_counter() - started) * 1000.0)

        text = str(reply or "").strip()
        if not text:
            increment_metric("generation_fallbacks", 1)
            logger.info("empty generation reply; using fallback | interview_id=%s", interview.id)
            return self.fallback_question
        return text
