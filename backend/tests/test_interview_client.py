import asyncio
import json

import httpx
import pytest

from capture_fakes import FakeDevices, FakeRecorderFactory, fast_settings
from interview_room.api.dependencies import dependency_provider
from interview_room.capture.client import InterviewClient, upload_recording
from interview_room.capture.manager import MediaCaptureManager
from interview_room.capture.recording import RecordingArtifact, RecordingController
from interview_room.conversation.orchestrator import ConversationOrchestrator
from interview_room.db.repository import InMemoryInterviewRepository
from interview_room.errors import BlobUploadError, SessionPaused
from interview_room.main import app
from interview_room.schemas import InterviewResults
from interview_room.session.coordinator import SessionCoordinator
from interview_room.session.store import LocalSessionStore
from interview_room.storage.blob_store import LocalBlobStore


class ScriptedAI:
    async def complete(self, messages):
        return "How do you memoize a React component?"

    async def generate_results(self, interview, messages):
        return InterviewResults(overall_rating=8, technical_proficiency="solid")


class LoopbackSocket:
    """Routes client frames straight into a coordinator, replies into an inbox."""

    def __init__(self, coordinator: SessionCoordinator):
        self.coordinator = coordinator
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent = []

    async def send(self, raw: str):
        self.sent.append(json.loads(raw))
        await self.coordinator.handle_text(raw, self._push, connection_id="loopback")

    async def _push(self, payload: dict):
        await self.inbox.put(json.dumps(payload))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self):
        await self.inbox.put(None)


@pytest.fixture
def wiring(tmp_path):
    repository = InMemoryInterviewRepository()
    ai = ScriptedAI()
    coordinator = SessionCoordinator(
        store=LocalSessionStore(),
        repository=repository,
        orchestrator=ConversationOrchestrator(generator=ai),
        result_generator=ai,
        welcome_delay_sec=0,
    )
    dependency_provider.override(repository=repository, blob_store=LocalBlobStore(tmp_path), ai=ai)
    yield coordinator, repository
    dependency_provider.reset()


def _client(coordinator, http_client, factory):
    socket = LoopbackSocket(coordinator)

    async def _connect(url, **kwargs):
        return socket

    capture = MediaCaptureManager(FakeDevices(), settings=fast_settings())
    recorder = RecordingController(capture, factory)
    client = InterviewClient(
        "http://test",
        capture,
        recorder,
        http_client=http_client,
        connect=_connect,
        reply_timeout_sec=2.0,
    )
    return client, socket


@pytest.mark.asyncio
async def test_client_runs_interview_and_uploads_recording(wiring, interview_payload):
    coordinator, repository = wiring
    factory = FakeRecorderFactory(flush=b"-end")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http_client:
        client, socket = _client(coordinator, http_client, factory)
        assert client.ws_url == "ws://test/ws/interview"

        await client.connect()
        session_id = await client.start_session(
            interview_payload["jobDescription"],
            interview_payload["skills"],
        )
        assert session_id
        assert client.interview_id == 1

        await client.start_recording()
        factory.recorders[0].emit(b"video")

        reply = await client.send_message("I use React.memo and useMemo.")
        assert reply["text"] == "How do you memoize a React component?"
        assert client.is_typing is False

        await client.pause()
        with pytest.raises(SessionPaused):
            await client.send_message("still there?")
        await client.resume()

        outcome = await client.finish()
        await client.close()

    assert outcome["message"] == "Interview completed successfully"
    assert outcome["recordingUrl"].startswith("file://")
    assert outcome["uploadError"] is None
    interview = await repository.get_interview(1)
    assert interview.recording_url == outcome["recordingUrl"]
    assert interview.status == "completed"
    assert [frame["type"] for frame in socket.sent][-1] == "end-session"
    assert client.capture.scheduler.closed


@pytest.mark.asyncio
async def test_upload_recording_raises_on_http_error(wiring):
    artifact = RecordingArtifact(data=b"x", mime_type="video/webm", chunk_count=1)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http_client:
        with pytest.raises(BlobUploadError):
            await upload_recording(artifact, 404, "http://test", http_client=http_client)


@pytest.mark.asyncio
async def test_answer_sent_before_welcome_gets_the_real_reply(interview_payload):
    coordinator = SessionCoordinator(
        store=LocalSessionStore(),
        repository=InMemoryInterviewRepository(),
        orchestrator=ConversationOrchestrator(generator=ScriptedAI()),
        result_generator=ScriptedAI(),
        welcome_delay_sec=30,
    )
    client, _ = _client(coordinator, None, FakeRecorderFactory())

    await client.connect()
    await client.start_session(interview_payload["jobDescription"], interview_payload["skills"])
    reply = await client.send_message("Ready when you are.")

    assert reply["text"] == "How do you memoize a React component?"
    assistant_texts = [item["text"] for item in client.transcript if item["role"] == "assistant"]
    assert len(assistant_texts) == 2
    assert "React" in assistant_texts[0]
    await client.close()
    await coordinator.wait_idle()
