from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os

from interview_room.api.dependencies import dependency_provider
from interview_room.api.interviews import router as interviews_router
from interview_room.api.ws_interview import router as interview_ws_router
from interview_room.system_metrics import get_metrics_snapshot
from core.config import QA_MODE, SESSION_IDLE_TTL_SEC, SESSION_REAP_INTERVAL_SEC

app = FastAPI(title="Interview Room")
logger = logging.getLogger("interview_room.main")


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(interviews_router)
app.include_router(interview_ws_router)

_session_reaper_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup_banner():
    global _session_reaper_task
    if QA_MODE:
        logger.info("[SYSTEM] QA_MODE ENABLED; welcome delay disabled")
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info(
        "[SYSTEM] session reaper ttl_sec=%s interval_sec=%s",
        SESSION_IDLE_TTL_SEC,
        SESSION_REAP_INTERVAL_SEC,
    )

    async def _session_reaper_loop():
        while True:
            await asyncio.sleep(SESSION_REAP_INTERVAL_SEC)
            try:
                await dependency_provider.coordinator.reap_idle_sessions(SESSION_IDLE_TTL_SEC)
            except Exception as exc:
                logger.warning("[SYSTEM] session reap failed: %s", exc)

    _session_reaper_task = asyncio.create_task(_session_reaper_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_reaper_task
    if _session_reaper_task is not None:
        _session_reaper_task.cancel()
        try:
            await _session_reaper_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_reaper_task = None
    logger.info("[SYSTEM] shutdown complete")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "interview-room"}


@app.get("/metrics")
async def metrics():
    return get_metrics_snapshot()
