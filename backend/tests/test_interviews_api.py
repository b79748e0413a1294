import pytest
from fastapi.testclient import TestClient

from interview_room.api.dependencies import dependency_provider
from interview_room.db.repository import InMemoryInterviewRepository
from interview_room.errors import BlobUploadError, ResultGenerationFailure
from interview_room.main import app
from interview_room.schemas import Feedback, InterviewResults, JobAnalysis, SkillRating
from interview_room.storage.blob_store import LocalBlobStore


class FakeAI:
    def __init__(self):
        self.fail_results = False

    async def complete(self, messages):
        return "Next question?"

    async def generate_results(self, interview, messages):
        if self.fail_results:
            raise ResultGenerationFailure("nope")
        return InterviewResults(
            overall_rating=6,
            technical_proficiency="intermediate",
            skill_ratings=[SkillRating(name="React", score=7)],
            feedback=Feedback(strengths=["Clear answers"], improvements=["Testing depth"]),
        )

    async def analyze_job_description(self, job_description):
        return JobAnalysis(skills=["React"], role="Frontend Engineer", seniority="junior")


class BrokenBlobStore:
    async def upload(self, data, key, content_type):
        raise BlobUploadError("bucket unavailable")


@pytest.fixture
def ai():
    return FakeAI()


@pytest.fixture
def client(tmp_path, ai):
    dependency_provider.override(
        repository=InMemoryInterviewRepository(),
        blob_store=LocalBlobStore(tmp_path),
        ai=ai,
    )
    yield TestClient(app)
    dependency_provider.reset()


def _create(client, interview_payload) -> dict:
    response = client.post("/api/interviews", json=interview_payload)
    assert response.status_code == 201
    return response.json()


def test_healthz_and_metrics(client):
    assert client.get("/healthz").json()["status"] == "ok"
    assert "sessions_active" in client.get("/metrics").json()


def test_create_get_and_list_interviews(client, interview_payload):
    created = _create(client, interview_payload)
    assert created["id"] == 1
    assert created["status"] == "in_progress"
    assert created["skills"] == ["React", "TypeScript"]

    assert client.get("/api/interviews/1").json()["jobDescription"] == interview_payload["jobDescription"]
    assert [item["id"] for item in client.get("/api/interviews").json()["items"]] == [1]
    assert client.get("/api/interviews/404").status_code == 404


def test_create_interview_missing_fields(client):
    response = client.post("/api/interviews", json={"skills": ["Go"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required fields"


def test_analyze_job_description(client):
    response = client.post("/api/analyze-job-description", json={"jobDescription": "React developer"})
    assert response.status_code == 200
    assert response.json()["skills"] == ["React"]

    assert client.post("/api/analyze-job-description", json={"jobDescription": "  "}).status_code == 400


def test_upload_recording_stores_blob_and_url(client, interview_payload, tmp_path):
    _create(client, interview_payload)

    response = client.post(
        "/api/interviews/recording",
        data={"interviewId": "1"},
        files={"recording": ("recording.webm", b"\x1a\x45\xdf\xa3chunk", "video/webm")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["interviewId"] == 1
    assert body["url"].startswith("file://")
    assert client.get("/api/interviews/1").json()["recordingUrl"] == body["url"]
    stored = list((tmp_path / "interviews" / "1").glob("recording-*.webm"))
    assert len(stored) == 1
    assert stored[0].read_bytes() == b"\x1a\x45\xdf\xa3chunk"


def test_upload_recording_validation(client, interview_payload):
    _create(client, interview_payload)

    missing_id = client.post("/api/interviews/recording", files={"recording": ("r.webm", b"x", "video/webm")})
    assert missing_id.status_code == 400
    assert missing_id.json()["detail"] == "Missing interview ID"

    missing_file = client.post("/api/interviews/recording", data={"interviewId": "1"})
    assert missing_file.status_code == 400
    assert missing_file.json()["detail"] == "Missing recording file"


def test_upload_recording_blob_failure_reports_step(client, interview_payload):
    _create(client, interview_payload)
    dependency_provider.override(blob_store=BrokenBlobStore())

    response = client.post(
        "/api/interviews/recording",
        data={"interviewId": "1"},
        files={"recording": ("recording.webm", b"x", "video/webm")},
    )

    assert response.status_code == 500
    assert response.json()["step"] == "BLOB_UPLOAD"


def test_generate_and_fetch_results(client, interview_payload, ai):
    _create(client, interview_payload)
    assert client.get("/api/interviews/1/results").status_code == 404

    ai.fail_results = True
    assert client.post("/api/interviews/1/generate-results").status_code == 500

    ai.fail_results = False
    generated = client.post("/api/interviews/1/generate-results")
    assert generated.status_code == 200
    assert generated.json()["overallRating"] == 6

    body = client.get("/api/interviews/1/results").json()
    assert body["interview"]["status"] == "completed"
    assert body["result"]["interviewId"] == 1


def test_download_report_is_plain_text_attachment(client, interview_payload):
    assert client.get("/api/interviews/1/download-report").status_code == 404

    _create(client, interview_payload)
    assert client.get("/api/interviews/1/download-report").json()["detail"] == "Results not found"
    client.post("/api/interviews/1/generate-results")

    response = client.get("/api/interviews/1/download-report")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["content-disposition"] == 'attachment; filename="interview-report-1.txt"'
    report = response.text
    assert "Overall Rating: 6/10" in report
    assert "Technical Proficiency: intermediate" in report
    assert "Duration: 0 seconds" in report
    assert "- React: 7/10" in report
    assert "- Clear answers" in report
    assert "- Testing depth" in report
    assert "Recommended Learning Paths:\n- none" in report
