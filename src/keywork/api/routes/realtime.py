"""WebSocket endpoint for worker real-time updates.

    WS /ws?token=<worker jwt>&jobId=<topic>

Without ``jobId`` the socket joins the global room (new jobs, job updates,
messages). With it, the socket joins that job's room only.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from keywork.api.auth import authenticate_worker
from keywork.domain.exceptions import KeyWorkError
from keywork.infrastructure.database.engine import get_session_factory
from keywork.logging_config import get_logger
from keywork.realtime.room import GLOBAL_TOPIC

router = APIRouter(tags=["Realtime"])
logger = get_logger(__name__)

POLICY_VIOLATION = 1008


@router.websocket("/ws")
async def jobs_socket(websocket: WebSocket) -> None:
    token = websocket.query_params.get("token")
    topic = websocket.query_params.get("jobId") or GLOBAL_TOPIC

    if not token:
        await websocket.close(code=POLICY_VIOLATION, reason="Missing token")
        return
    try:
        async with get_session_factory()() as session:
            worker = await authenticate_worker(token, session)
    except KeyWorkError as exc:
        logger.info("ws.auth_rejected", error=exc.message)
        await websocket.close(code=POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    rooms = websocket.app.state.rooms
    room, session_id = await rooms.join(topic, websocket, worker.id, worker.trust_level)
    try:
        while True:
            raw = await websocket.receive_text()
            await room.handle_frame(session_id, raw)
    except WebSocketDisconnect as exc:
        logger.debug("ws.disconnected", session_id=session_id, code=exc.code)
    finally:
        await rooms.leave(topic, session_id)
