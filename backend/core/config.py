import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()
MODEL_NAME = str(os.getenv("MODEL_NAME") or "gpt-4o").strip()
QA_MODE = _env_flag("QA_MODE")

GENERATION_TIMEOUT_SEC = max(2.0, float(os.getenv("GENERATION_TIMEOUT_SEC", "30")))
GENERATION_RETRIES = max(0, int(os.getenv("GENERATION_RETRIES", "2")))

# delay before the welcome turn is pushed after session-created; QA runs push it at once
WELCOME_DELAY_SEC = 0.0 if QA_MODE else max(0.0, float(os.getenv("WELCOME_DELAY_SEC", "1.0")))

SESSION_IDLE_TTL_SEC = max(60.0, float(os.getenv("SESSION_IDLE_TTL_SEC", "1800")))
SESSION_REAP_INTERVAL_SEC = max(5.0, float(os.getenv("SESSION_REAP_INTERVAL_SEC", "120")))
USE_REDIS_SESSION_STORE = _env_flag("USE_REDIS_SESSION_STORE")
REDIS_URL = str(os.getenv("REDIS_URL") or "").strip()

BLOB_BACKEND = str(os.getenv("BLOB_BACKEND") or "local").strip().lower()
LOCAL_BLOB_DIR = str(os.getenv("LOCAL_BLOB_DIR") or (_BACKEND_ROOT / "recordings")).strip()
AWS_REGION = str(os.getenv("AWS_REGION") or "us-east-1").strip()
AWS_ACCESS_KEY_ID = str(os.getenv("AWS_ACCESS_KEY_ID") or "").strip()
AWS_SECRET_ACCESS_KEY = str(os.getenv("AWS_SECRET_ACCESS_KEY") or "").strip()
AWS_BUCKET_NAME = str(os.getenv("AWS_BUCKET_NAME") or "").strip()
BLOB_URL_EXPIRES_SEC = max(60, int(os.getenv("BLOB_URL_EXPIRES_SEC", "3600")))

WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))
