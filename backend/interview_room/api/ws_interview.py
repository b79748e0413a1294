from fastapi import APIRouter, WebSocket
import asyncio
import json
import logging
import uuid

from starlette.websockets import WebSocketState

from core.config import WS_MAX_TEXT_BYTES
from core.logger import log_event
from interview_room.api.dependencies import dependency_provider
from interview_room.session.coordinator import ERROR_PROCESS, error_reply
from interview_room.system_metrics import decrement_metric, increment_metric

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("ws_interview")

router = APIRouter()
websocket_send_locks: dict[WebSocket, asyncio.Lock] = {}


async def _send_text_with_lock(websocket: WebSocket, encoded_payload: str) -> None:
    send_lock = websocket_send_locks.get(websocket)
    if send_lock is None:
        return
    async with send_lock:
        await websocket.send_text(encoded_payload)


@router.websocket("/ws/interview")
async def interview_ws(websocket: WebSocket):
    connection_id = str(uuid.uuid4())
    coordinator = dependency_provider.coordinator

    await websocket.accept()
    websocket_send_locks[websocket] = asyncio.Lock()
    increment_metric("ws_connections_active", 1)
    log_event("ws_interview", "connect", "", connection_id=connection_id)

    async def _safe_send(payload: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("ws payload encode failed | connection_id=%s err=%s", connection_id, exc)
            return
        try:
            await _send_text_with_lock(websocket, encoded)
        except Exception as exc:
            logger.warning("ws send failed | connection_id=%s err=%s", connection_id, exc)

    stop_reason = "client_disconnect"
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                await _safe_send(error_reply(ERROR_PROCESS))
                continue
            if len(raw.encode("utf-8")) > WS_MAX_TEXT_BYTES:
                logger.warning("ws message too large | connection_id=%s bytes=%s", connection_id, len(raw))
                await _safe_send(error_reply(ERROR_PROCESS))
                continue

            # each message is handled to completion before the next one is read
            await coordinator.handle_text(raw, _safe_send, connection_id=connection_id)
    except Exception as exc:
        stop_reason = "other"
        logger.warning("ws loop terminated | connection_id=%s err=%s", connection_id, exc)
    finally:
        websocket_send_locks.pop(websocket, None)
        decrement_metric("ws_connections_active", 1)
        increment_metric("ws_disconnects_total", 1)
        await coordinator.connection_closed(connection_id)
        log_event("ws_interview", "disconnect", "", connection_id=connection_id, reason=stop_reason)
