from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Protocol

from core.config import REDIS_URL, USE_REDIS_SESSION_STORE
from core.state import SessionPhase
from interview_room.errors import SessionNotFound
from interview_room.schemas import Turn


@dataclass
class InterviewSession:
    session_id: str
    interview_id: int
    conversation: list[Turn] = field(default_factory=list)
    is_paused: bool = False
    phase: SessionPhase = SessionPhase.CREATED
    connection_id: str = ""
    detached: bool = False
    created_at: float = 0.0
    updated_at: float = 0.0

    def snapshot(self) -> "InterviewSession":
        return replace(self, conversation=list(self.conversation))


class SessionStore(Protocol):
    async def create(self, interview_id: int, connection_id: str = "") -> InterviewSession:
        ...

    async def get(self, session_id: str) -> InterviewSession | None:
        ...

    async def remove(self, session_id: str) -> InterviewSession | None:
        ...

    async def append_turn(self, session_id: str, turn: Turn) -> InterviewSession:
        ...

    async def set_paused(self, session_id: str, paused: bool) -> InterviewSession:
        ...

    async def attach(self, session_id: str, connection_id: str) -> None:
        ...

    async def touch(self, session_id: str) -> None:
        ...

    async def detach_connection(self, connection_id: str) -> int:
        ...

    async def reap_idle(self, ttl_sec: float) -> int:
        ...

    async def count(self) -> int:
        ...


def _phase_for(paused: bool) -> SessionPhase:
    return SessionPhase.PAUSED if paused else SessionPhase.ACTIVE


class LocalSessionStore:
    def __init__(self):
        self._lock = asyncio.Lock()
        self._sessions: dict[str, InterviewSession] = {}

    async def create(self, interview_id: int, connection_id: str = "") -> InterviewSession:
        now_ts = time.time()
        session = InterviewSession(
            session_id=str(uuid.uuid4()),
            interview_id=int(interview_id),
            connection_id=str(connection_id or ""),
            created_at=now_ts,
            updated_at=now_ts,
        )
        async with self._lock:
            self._sessions[session.session_id] = session
            return session.snapshot()

    async def get(self, session_id: str) -> InterviewSession | None:
        async with self._lock:
            session = self._sessions.get(str(session_id or ""))
            return session.snapshot() if session else None

    async def remove(self, session_id: str) -> InterviewSession | None:
        async with self._lock:
            session = self._sessions.pop(str(session_id or ""), None)
        if session is None:
            return None
        session.phase = SessionPhase.ENDED
        return session

    def _require(self, session_id: str) -> InterviewSession:
        session = self._sessions.get(str(session_id or ""))
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def append_turn(self, session_id: str, turn: Turn) -> InterviewSession:
        async with self._lock:
            session = self._require(session_id)
            session.conversation.append(turn)
            if session.phase == SessionPhase.CREATED:
                session.phase = _phase_for(session.is_paused)
            session.updated_at = time.time()
            return session.snapshot()

    async def set_paused(self, session_id: str, paused: bool) -> InterviewSession:
        async with self._lock:
            session = self._require(session_id)
            session.is_paused = bool(paused)
            session.phase = _phase_for(session.is_paused)
            session.updated_at = time.time()
            return session.snapshot()

    async def attach(self, session_id: str, connection_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(str(session_id or ""))
            if session is None:
                return
            session.connection_id = str(connection_id or "")
            session.detached = False
            session.updated_at = time.time()

    async def touch(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(str(session_id or ""))
            if session is not None:
                session.updated_at = time.time()

    async def detach_connection(self, connection_id: str) -> int:
        if not connection_id:
            return 0
        detached = 0
        async with self._lock:
            for session in self._sessions.values():
                if session.connection_id == connection_id and not session.detached:
                    session.detached = True
                    session.updated_at = time.time()
                    detached += 1
        return detached

    async def reap_idle(self, ttl_sec: float) -> int:
        cutoff = time.time() - max(0.0, float(ttl_sec))
        removed = 0
        async with self._lock:
            for session_id, session in list(self._sessions.items()):
                if not session.detached:
                    continue
                if session.updated_at <= cutoff:
                    self._sessions.pop(session_id, None)
                    removed += 1
        return removed

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


class RedisSessionStore:
    """Redis-backed session table.

    Keys:
    - session:{session_id}:meta (hash)
    - session:{session_id}:turns (list of JSON turns)
    - sessions:index (set of session ids)
    """

    _INDEX_KEY = "sessions:index"

    def __init__(self, redis_url: str):
        try:
            import redis.asyncio as redis_async  # type: ignore
        except Exception as exc:
            raise RuntimeError("redis package not installed; install 'redis' to enable the distributed session store") from exc

        self._redis = redis_async.from_url(redis_url, decode_responses=True)

    @staticmethod
    def _meta_key(session_id: str) -> str:
        return f"session:{session_id}:meta"

    @staticmethod
    def _turns_key(session_id: str) -> str:
        return f"session:{session_id}:turns"

    @staticmethod
    def _from_meta(session_id: str, data: dict, turns: list[str]) -> InterviewSession:
        return InterviewSession(
            session_id=session_id,
            interview_id=int(data.get("interview_id") or 0),
            conversation=[Turn.model_validate_json(raw) for raw in turns],
            is_paused=str(data.get("is_paused") or "false").lower() == "true",
            phase=SessionPhase(str(data.get("phase") or SessionPhase.CREATED.value)),
            connection_id=str(data.get("connection_id") or ""),
            detached=str(data.get("detached") or "false").lower() == "true",
            created_at=float(data.get("created_at") or 0.0),
            updated_at=float(data.get("updated_at") or 0.0),
        )

    async def create(self, interview_id: int, connection_id: str = "") -> InterviewSession:
        now_ts = time.time()
        session = InterviewSession(
            session_id=str(uuid.uuid4()),
            interview_id=int(interview_id),
            connection_id=str(connection_id or ""),
            created_at=now_ts,
            updated_at=now_ts,
        )
        await self._redis.hset(
            self._meta_key(session.session_id),
            mapping={
                "interview_id": str(session.interview_id),
                "is_paused": "false",
                "phase": session.phase.value,
                "connection_id": session.connection_id,
                "detached": "false",
                "created_at": str(now_ts),
                "updated_at": str(now_ts),
            },
        )
        await self._redis.sadd(self._INDEX_KEY, session.session_id)
        return session

    async def get(self, session_id: str) -> InterviewSession | None:
        if not session_id:
            return None
        data = await self._redis.hgetall(self._meta_key(session_id))
        if not data:
            return None
        turns = await self._redis.lrange(self._turns_key(session_id), 0, -1)
        return self._from_meta(session_id, data, turns)

    async def remove(self, session_id: str) -> InterviewSession | None:
        session = await self.get(session_id)
        if session is None:
            return None
        await self._redis.delete(self._meta_key(session_id), self._turns_key(session_id))
        await self._redis.srem(self._INDEX_KEY, session_id)
        session.phase = SessionPhase.ENDED
        return session

    async def _require_meta(self, session_id: str) -> dict:
        data = await self._redis.hgetall(self._meta_key(session_id)) if session_id else {}
        if not data:
            raise SessionNotFound(session_id)
        return data

    async def append_turn(self, session_id: str, turn: Turn) -> InterviewSession:
        data = await self._require_meta(session_id)
        await self._redis.rpush(self._turns_key(session_id), turn.model_dump_json())
        updates = {"updated_at": str(time.time())}
        if str(data.get("phase") or "") == SessionPhase.CREATED.value:
            paused = str(data.get("is_paused") or "false").lower() == "true"
            updates["phase"] = _phase_for(paused).value
        await self._redis.hset(self._meta_key(session_id), mapping=updates)
        return await self.get(session_id)

    async def set_paused(self, session_id: str, paused: bool) -> InterviewSession:
        await self._require_meta(session_id)
        await self._redis.hset(
            self._meta_key(session_id),
            mapping={
                "is_paused": json.dumps(bool(paused)),
                "phase": _phase_for(bool(paused)).value,
                "updated_at": str(time.time()),
            },
        )
        return await self.get(session_id)

    async def attach(self, session_id: str, connection_id: str) -> None:
        if not await self._redis.exists(self._meta_key(session_id)):
            return
        await self._redis.hset(
            self._meta_key(session_id),
            mapping={"connection_id": str(connection_id or ""), "detached": "false", "updated_at": str(time.time())},
        )

    async def touch(self, session_id: str) -> None:
        if await self._redis.exists(self._meta_key(session_id)):
            await self._redis.hset(self._meta_key(session_id), "updated_at", str(time.time()))

    async def detach_connection(self, connection_id: str) -> int:
        if not connection_id:
            return 0
        detached = 0
        for session_id in await self._redis.smembers(self._INDEX_KEY):
            data = await self._redis.hgetall(self._meta_key(session_id))
            if str(data.get("connection_id") or "") != connection_id:
                continue
            await self._redis.hset(
                self._meta_key(session_id),
                mapping={"detached": "true", "updated_at": str(time.time())},
            )
            detached += 1
        return detached

    async def reap_idle(self, ttl_sec: float) -> int:
        cutoff = time.time() - max(0.0, float(ttl_sec))
        removed = 0
        for session_id in await self._redis.smembers(self._INDEX_KEY):
            data = await self._redis.hgetall(self._meta_key(session_id))
            if not data:
                await self._redis.srem(self._INDEX_KEY, session_id)
                continue
            if str(data.get("detached") or "false").lower() != "true":
                continue
            if float(data.get("updated_at") or 0.0) <= cutoff:
                await self.remove(session_id)
                removed += 1
        return removed

    async def count(self) -> int:
        return int(await self._redis.scard(self._INDEX_KEY))


def build_session_store() -> SessionStore:
    if not USE_REDIS_SESSION_STORE:
        return LocalSessionStore()

    if not REDIS_URL:
        raise RuntimeError("USE_REDIS_SESSION_STORE=true requires REDIS_URL")
    return RedisSessionStore(REDIS_URL)
