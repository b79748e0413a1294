import json
import logging
from typing import Any

logger = logging.getLogger("interview_room.events")

# free text from candidates and the model never reaches the logs
_REDACTED_KEYS = {"text", "message", "content", "prompt", "job_description", "transcript"}
_MAX_VALUE_CHARS = 200


def _sanitize_value(key: str, value: Any) -> Any:
	normalized_key = str(key or "").lower()
	if normalized_key in _REDACTED_KEYS:
		return {"redacted": True, "length": len(str(value or ""))}
	if isinstance(value, str):
		return value if len(value) <= _MAX_VALUE_CHARS else value[:_MAX_VALUE_CHARS] + "..."
	if isinstance(value, (int, float, bool)) or value is None:
		return value
	if isinstance(value, dict):
		return {str(k): _sanitize_value(str(k), v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set)):
		return [_sanitize_value(normalized_key, item) for item in value]
	return _sanitize_value(normalized_key, str(value))


def event_payload(component: str, event: str, session_id: str = "", **fields) -> dict:
	payload = {
		"component": str(component or "interview_room"),
		"event": str(event or "unknown"),
		"session_id": str(session_id or ""),
	}
	payload.update({str(k): _sanitize_value(str(k), v) for k, v in fields.items()})
	return payload


def log_event(component: str, event: str, session_id: str = "", level: int = logging.INFO, **fields) -> None:
	payload = event_payload(component, event, session_id, **fields)
	logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
