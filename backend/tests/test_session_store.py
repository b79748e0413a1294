import time

import pytest

from core.state import SessionPhase
from interview_room.errors import SessionNotFound
from interview_room.schemas import Turn
from interview_room.session.store import LocalSessionStore


@pytest.mark.asyncio
async def test_session_store_create_append_pause_remove():
    store = LocalSessionStore()

    session = await store.create(7, connection_id="c1")
    assert session.phase == SessionPhase.CREATED
    assert session.conversation == []
    assert await store.count() == 1

    updated = await store.append_turn(session.session_id, Turn(role="assistant", content="Welcome"))
    assert updated.phase == SessionPhase.ACTIVE
    assert [turn.content for turn in updated.conversation] == ["Welcome"]

    paused = await store.set_paused(session.session_id, True)
    assert paused.is_paused is True
    assert paused.phase == SessionPhase.PAUSED

    resumed = await store.set_paused(session.session_id, False)
    assert resumed.phase == SessionPhase.ACTIVE

    removed = await store.remove(session.session_id)
    assert removed is not None
    assert removed.phase == SessionPhase.ENDED
    assert await store.get(session.session_id) is None
    assert await store.remove(session.session_id) is None


@pytest.mark.asyncio
async def test_session_store_snapshot_is_isolated_from_table():
    store = LocalSessionStore()
    session = await store.create(1)

    snapshot = await store.get(session.session_id)
    snapshot.conversation.append(Turn(role="user", content="not stored"))

    fresh = await store.get(session.session_id)
    assert fresh.conversation == []


@pytest.mark.asyncio
async def test_session_store_unknown_session_raises():
    store = LocalSessionStore()

    with pytest.raises(SessionNotFound):
        await store.append_turn("missing", Turn(role="user", content="hi"))
    with pytest.raises(SessionNotFound):
        await store.set_paused("missing", True)


@pytest.mark.asyncio
async def test_session_store_detach_touch_and_reap_idle():
    store = LocalSessionStore()
    attached = await store.create(1, connection_id="c1")
    dropped = await store.create(2, connection_id="c2")

    assert await store.detach_connection("c2") == 1
    assert await store.detach_connection("") == 0

    # attached sessions are never reaped, however old
    store._sessions[attached.session_id].updated_at = time.time() - 3600  # test-only direct mutation
    store._sessions[dropped.session_id].updated_at = time.time() - 3600  # test-only direct mutation

    await store.touch(dropped.session_id)
    assert await store.reap_idle(ttl_sec=60) == 0

    store._sessions[dropped.session_id].updated_at = time.time() - 3600  # test-only direct mutation
    assert await store.reap_idle(ttl_sec=60) == 1
    assert await store.get(dropped.session_id) is None
    assert await store.get(attached.session_id) is not None


@pytest.mark.asyncio
async def test_session_store_reattach_clears_detached_flag():
    store = LocalSessionStore()
    session = await store.create(1, connection_id="c1")
    await store.detach_connection("c1")

    await store.attach(session.session_id, "c9")
    current = await store.get(session.session_id)
    assert current.detached is False
    assert current.connection_id == "c9"
