import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QA_MODE", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("USE_REDIS_SESSION_STORE", "false")
    monkeypatch.setenv("BLOB_BACKEND", "local")


@pytest.fixture
def interview_payload() -> dict:
    return {
        "jobDescription": "Frontend engineer building React dashboards.",
        "skills": ["React", "TypeScript"],
        "interviewType": "technical",
        "difficulty": "junior",
    }
