import json
import logging

import pytest

from core.logger import event_payload, log_event


def test_event_payload_redacts_free_text():
    payload = event_payload(
        "session_coordinator",
        "user_message",
        "s1",
        message="my salary expectations are...",
        extra={"content": "secret answer", "turns": 3},
        note="x" * 500,
    )

    assert payload["message"] == {"redacted": True, "length": len("my salary expectations are...")}
    assert payload["extra"]["content"]["redacted"] is True
    assert payload["extra"]["turns"] == 3
    assert len(payload["note"]) < 500


def test_log_event_emits_json(caplog: pytest.LogCaptureFixture):
    with caplog.at_level(logging.INFO, logger="interview_room.events"):
        log_event("capture", "stream_installed", tier="ideal")

    record = json.loads(caplog.records[-1].getMessage())
    assert record == {"component": "capture", "event": "stream_installed", "session_id": "", "tier": "ideal"}
