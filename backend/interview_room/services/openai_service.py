import asyncio
import json
import logging

from openai import AsyncOpenAI
from pydantic import ValidationError

from core.config import GENERATION_RETRIES, GENERATION_TIMEOUT_SEC, MODEL_NAME, OPENAI_API_KEY
from interview_room.errors import GenerationFailure, ResultGenerationFailure
from interview_room.prompts import JOB_ANALYSIS_PROMPT, build_results_prompt
from interview_room.schemas import InterviewRecord, InterviewResults, JobAnalysis, MessageRecord

logger = logging.getLogger("interview_room.services.openai_service")

client = AsyncOpenAI(api_key=OPENAI_API_KEY or "missing-key")


def _safe_parse_json(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.warning("json parse failed | err=%s", exc)
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def _chat_with_retry(
    messages: list[dict],
    json_mode: bool = False,
    timeout_sec: float = GENERATION_TIMEOUT_SEC,
    retries: int = GENERATION_RETRIES,
) -> str:
    last_error: Exception | None = None
    for attempt in range(max(1, retries + 1)):
        try:
            kwargs = {"model": MODEL_NAME, "messages": messages}
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}
            response = await asyncio.wait_for(client.chat.completions.create(**kwargs), timeout=timeout_sec)
            return str(response.choices[0].message.content or "").strip()
        except asyncio.TimeoutError as exc:
            last_error = exc
            logger.warning("LLM timeout | model=%s attempt=%s", MODEL_NAME, attempt + 1)
        except Exception as exc:
            last_error = exc
            logger.warning("LLM failure | model=%s attempt=%s err=%s", MODEL_NAME, attempt + 1, exc)

        if attempt < retries:
            await asyncio.sleep(0.4 * (attempt + 1))

    raise GenerationFailure(f"LLM request failed after retries: {last_error}")


def _transcript_text(messages: list[MessageRecord]) -> str:
    lines = []
    for msg in messages:
        speaker = "Interviewer" if msg.sender == "ai" else "Candidate"
        lines.append(f"{speaker}: {msg.content}")
    return "\n\n".join(lines)


class InterviewAI:
    """OpenAI-backed question generation and evaluation."""

    async def complete(self, messages: list[dict]) -> str:
        if not messages:
            return ""
        logger.info("sending %s messages to model=%s", len(messages), MODEL_NAME)
        return await _chat_with_retry(messages)

    async def generate_results(self, interview: InterviewRecord, messages: list[MessageRecord]) -> InterviewResults:
        prompt_messages = [
            {"role": "system", "content": build_results_prompt(interview.difficulty, interview.skills)},
            {
                "role": "user",
                "content": (
                    f"Job Description: {interview.job_description}\n\n"
                    f"Required Skills: {', '.join(interview.skills)}\n\n"
                    f"Interview Transcript:\n{_transcript_text(messages)}"
                ),
            },
        ]
        try:
            raw = await _chat_with_retry(prompt_messages, json_mode=True)
        except GenerationFailure as exc:
            raise ResultGenerationFailure(str(exc)) from exc

        data = _safe_parse_json(raw)
        try:
            return InterviewResults.model_validate(data)
        except ValidationError as exc:
            logger.warning("results payload invalid | interview_id=%s err=%s", interview.id, exc)
            raise ResultGenerationFailure("Model returned an invalid evaluation payload") from exc

    async def analyze_job_description(self, job_description: str) -> JobAnalysis:
        raw = await _chat_with_retry(
            [
                {"role": "system", "content": JOB_ANALYSIS_PROMPT.strip()},
                {"role": "user", "content": str(job_description or "")},
            ],
            json_mode=True,
        )
        return JobAnalysis.model_validate(_safe_parse_json(raw))
