"""
Dismissal WebSocket endpoint.

Clients connect with their identity as query parameters and are joined to
their rooms. The server only pushes; the one client message it answers is
``ping``.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from .broadcast import broadcaster, rooms_for

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/dismissal")
async def dismissal_socket(
    websocket: WebSocket,
    school_id: UUID,
    role: str,
    user_id: UUID | None = None,
    homeroom_id: UUID | None = None,
) -> None:
    """Subscribe a dashboard, teacher console or parent app to queue events."""
    rooms = rooms_for(school_id, role, user_id=user_id, homeroom_id=homeroom_id)
    if not rooms:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    for room in rooms:
        broadcaster.join(room, websocket)
    logger.info(f"WebSocket joined {rooms}")
    await websocket.send_json({"event": "joined", "rooms": rooms})

    try:
        while True:
            message = await websocket.receive_text()
            if message.strip() == "ping":
                await websocket.send_json({"event": "pong"})
    except WebSocketDisconnect:
        logger.info(f"WebSocket left {rooms}")
    finally:
        broadcaster.leave(websocket)
