"""Real-time WebSocket channel (scheduling service)."""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from app.config import settings
from app.core.events import get_event_bus
from app.core.exceptions import AppException
from app.core.realtime import can_join, get_room_manager
from app.database import AsyncSessionLocal
from app.dependencies import get_identity_client, resolve_token
from app.services.directory_client import IdentityClient

logger = structlog.get_logger()

router = APIRouter()

# Close code sent when the token is missing or rejected
WS_UNAUTHORIZED = 4401


async def _authenticate(
    websocket: WebSocket, token: str, identity: IdentityClient
) -> dict[str, Any] | None:
    service = getattr(websocket.app.state, "service", settings.service_name)
    async with AsyncSessionLocal() as db:
        try:
            return await resolve_token(token, service, db, identity, get_event_bus())
        except AppException as e:
            logger.info("realtime_auth_rejected", error=e.message)
            return None


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    identity: Annotated[IdentityClient, Depends(get_identity_client)],
    token: str | None = Query(None),
) -> None:
    """
    Room-based push channel.

    Connect with ``?token=<jwt>`` and send ``{"action": "join", "room": ...}``
    or ``{"action": "leave", "room": ...}``. Server frames are
    ``{"event": name, "data": {...}}``.
    """
    user = await _authenticate(websocket, token, identity) if token else None
    if user is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    rooms = get_room_manager()
    await websocket.accept()
    logger.info("realtime_connected", user_id=user["id"], role=user["role"])

    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action") if isinstance(message, dict) else None
            room = message.get("room") if isinstance(message, dict) else None

            if action not in ("join", "leave") or not isinstance(room, str) or not room:
                await websocket.send_json(
                    {"event": "error", "data": {"message": "Expected {action, room}"}}
                )
                continue

            if action == "leave":
                rooms.leave(websocket, room)
                await websocket.send_json({"event": "left", "data": {"room": room}})
                continue

            if not can_join(user, room):
                await websocket.send_json(
                    {"event": "error", "data": {"message": "Not allowed to join room", "room": room}}
                )
                continue

            rooms.join(websocket, room)
            await websocket.send_json({"event": "joined", "data": {"room": room}})
    except WebSocketDisconnect:
        pass
    except ValueError as e:
        # Non-JSON frame
        logger.debug("realtime_bad_frame", user_id=user["id"], error=str(e))
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        rooms.disconnect(websocket)
        logger.info("realtime_disconnected", user_id=user["id"])
