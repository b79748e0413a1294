import pytest

from interview_room.conversation.orchestrator import ConversationOrchestrator, normalize_history
from interview_room.prompts import FALLBACK_QUESTION
from interview_room.schemas import InterviewRecord, Turn


def _interview() -> InterviewRecord:
    return InterviewRecord(
        id=1,
        job_description="Backend engineer, Python and Postgres.",
        skills=["Python", "SQL"],
        interview_type="technical",
        difficulty="senior",
    )


class EchoGenerator:
    def __init__(self, reply="Next question"):
        self.reply = reply
        self.messages = None

    async def complete(self, messages):
        self.messages = messages
        return self.reply


def test_normalize_history_drops_null_and_blank_turns():
    history = [
        Turn(role="assistant", content="Welcome"),
        {"role": "user", "content": None},
        {"role": "user", "content": "   "},
        {"sender": "ai", "text": "Legacy question"},
        {"sender": "user", "text": 42},
        {"role": "system", "content": "not allowed"},
        None,
    ]

    assert normalize_history(history) == [
        {"role": "assistant", "content": "Welcome"},
        {"role": "assistant", "content": "Legacy question"},
        {"role": "user", "content": "42"},
    ]


def test_turn_rejects_missing_content():
    with pytest.raises(ValueError):
        Turn(role="user", content=None)
    with pytest.raises(ValueError):
        Turn(role="user", content="  ")


@pytest.mark.asyncio
async def test_payload_is_instruction_context_then_history():
    generator = EchoGenerator()
    orchestrator = ConversationOrchestrator(generator)

    reply = await orchestrator.generate_next_turn(
        _interview(),
        [Turn(role="assistant", content="Hi"), {"role": "user", "content": None}],
    )

    assert reply == "Next question"
    assert [item["role"] for item in generator.messages] == ["system", "user", "assistant"]
    assert "senior" in generator.messages[0]["content"]
    assert generator.messages[1]["content"].startswith("Job Description:")


@pytest.mark.asyncio
async def test_blank_reply_and_failure_yield_fallback():
    assert await ConversationOrchestrator(EchoGenerator(reply="  ")).generate_next_turn(_interview(), []) == FALLBACK_QUESTION

    class Broken:
        async def complete(self, messages):
            raise RuntimeError("boom")

    assert await ConversationOrchestrator(Broken()).generate_next_turn(_interview(), []) == FALLBACK_QUESTION
