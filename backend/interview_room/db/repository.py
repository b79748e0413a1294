from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Protocol

from interview_room.errors import InterviewNotFound
from interview_room.schemas import (
    InterviewCreate,
    InterviewRecord,
    InterviewResults,
    MessageRecord,
    ResultRecord,
)

logger = logging.getLogger("interview_room.db.repository")


class InterviewRepository(Protocol):
    async def create_interview(self, payload: InterviewCreate) -> InterviewRecord:
        ...

    async def get_interview(self, interview_id: int) -> InterviewRecord | None:
        ...

    async def list_interviews(self) -> list[InterviewRecord]:
        ...

    async def update_interview_status(self, interview_id: int, status: str) -> None:
        ...

    async def update_interview_recording(self, interview_id: int, recording_url: str) -> None:
        ...

    async def update_interview_duration(self, interview_id: int, duration: int) -> None:
        ...

    async def create_message(self, interview_id: int, sender: str, content: str) -> MessageRecord:
        ...

    async def get_messages(self, interview_id: int) -> list[MessageRecord]:
        ...

    async def create_result(self, interview_id: int, results: InterviewResults) -> ResultRecord:
        ...

    async def get_result_by_interview_id(self, interview_id: int) -> ResultRecord | None:
        ...


class InMemoryInterviewRepository:
    """Process-local persistence with auto-increment ids."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._interviews: dict[int, InterviewRecord] = {}
        self._messages: dict[int, MessageRecord] = {}
        self._results: dict[int, ResultRecord] = {}
        self._interview_seq = 0
        self._message_seq = 0
        self._result_seq = 0

    async def create_interview(self, payload: InterviewCreate) -> InterviewRecord:
        async with self._lock:
            self._interview_seq += 1
            record = InterviewRecord(id=self._interview_seq, **payload.model_dump())
            self._interviews[record.id] = record
        logger.info("interview created | interview_id=%s skills=%s", record.id, len(record.skills))
        return record.model_copy(deep=True)

    async def get_interview(self, interview_id: int) -> InterviewRecord | None:
        async with self._lock:
            record = self._interviews.get(int(interview_id or 0))
            return record.model_copy(deep=True) if record else None

    async def list_interviews(self) -> list[InterviewRecord]:
        async with self._lock:
            rows = [item.model_copy(deep=True) for item in self._interviews.values()]
        return sorted(rows, key=lambda item: item.created_at, reverse=True)

    async def _update(self, interview_id: int, **fields) -> None:
        async with self._lock:
            record = self._interviews.get(int(interview_id or 0))
            if record is None:
                raise InterviewNotFound(interview_id)
            self._interviews[record.id] = record.model_copy(
                update={**fields, "updated_at": datetime.now(timezone.utc)}
            )

    async def update_interview_status(self, interview_id: int, status: str) -> None:
        await self._update(interview_id, status=str(status))

    async def update_interview_recording(self, interview_id: int, recording_url: str) -> None:
        await self._update(interview_id, recording_url=str(recording_url))

    async def update_interview_duration(self, interview_id: int, duration: int) -> None:
        await self._update(interview_id, duration=max(0, int(duration)))

    async def create_message(self, interview_id: int, sender: str, content: str) -> MessageRecord:
        async with self._lock:
            self._message_seq += 1
            record = MessageRecord(
                id=self._message_seq,
                interview_id=int(interview_id),
                sender=sender,
                content=str(content),
            )
            self._messages[record.id] = record
            return record.model_copy()

    async def get_messages(self, interview_id: int) -> list[MessageRecord]:
        async with self._lock:
            rows = [item.model_copy() for item in self._messages.values() if item.interview_id == int(interview_id)]
        return sorted(rows, key=lambda item: item.id)

    async def create_result(self, interview_id: int, results: InterviewResults) -> ResultRecord:
        async with self._lock:
            self._result_seq += 1
            record = ResultRecord(id=self._result_seq, interview_id=int(interview_id), **results.model_dump())
            # one result per interview; a regenerated result replaces the previous one
            for result_id, existing in list(self._results.items()):
                if existing.interview_id == record.interview_id:
                    self._results.pop(result_id, None)
            self._results[record.id] = record
            return record.model_copy(deep=True)

    async def get_result_by_interview_id(self, interview_id: int) -> ResultRecord | None:
        async with self._lock:
            for record in self._results.values():
                if record.interview_id == int(interview_id):
                    return record.model_copy(deep=True)
        return None
