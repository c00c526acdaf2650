"""Room-based WebSocket broadcaster."""

import json
from collections import defaultdict
from datetime import date
from typing import Any

import structlog

logger = structlog.get_logger()

STAFF_ROOM = "staff"


def date_room(day: date | str) -> str:
    value = day.isoformat() if isinstance(day, date) else day
    return f"date:{value}"


def client_room(client_id: int) -> str:
    return f"client:{client_id}"


def practitioner_room(practitioner_id: int) -> str:
    return f"practitioner:{practitioner_id}"


def can_join(user: dict[str, Any], room: str) -> bool:
    """
    Check whether a connected user may listen to a room.

    Staff may join any room. Everyone may join date rooms. Clients and
    practitioners may also join their own personal room.
    """
    role = user.get("role")
    if role in ("admin", "front_desk"):
        return True
    if room.startswith("date:"):
        return True
    if role == "client":
        return room == client_room(user["id"])
    if role == "practitioner":
        return room == practitioner_room(user["id"])
    return False


class RoomManager:
    """Tracks which sockets listen to which rooms and broadcasts frames."""

    def __init__(self):
        # room -> sockets
        self.rooms: dict[str, set[Any]] = defaultdict(set)
        # socket -> rooms
        self.memberships: dict[Any, set[str]] = defaultdict(set)

    def join(self, websocket: Any, room: str) -> None:
        self.rooms[room].add(websocket)
        self.memberships[websocket].add(room)

    def leave(self, websocket: Any, room: str) -> None:
        sockets = self.rooms.get(room)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self.rooms[room]
        rooms = self.memberships.get(websocket)
        if rooms is not None:
            rooms.discard(room)

    def disconnect(self, websocket: Any) -> None:
        """Drop a socket from every room it joined."""
        for room in list(self.memberships.get(websocket, ())):
            self.leave(websocket, room)
        self.memberships.pop(websocket, None)

    def members(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: dict[str, Any]) -> int:
        """
        Send ``{"event", "data"}`` to every socket in a room.

        Delivery is best effort: failures are logged at debug level and the
        failing socket is dropped.

        Returns:
            Number of sockets the frame was written to
        """
        sockets = list(self.rooms.get(room, ()))
        if not sockets:
            return 0

        message_text = json.dumps({"event": event, "data": data}, default=str)
        delivered = 0
        for websocket in sockets:
            try:
                await websocket.send_text(message_text)
                delivered += 1
            except Exception as e:
                logger.debug("realtime_send_failed", room=room, realtime_event=event, error=str(e))
                self.disconnect(websocket)
        return delivered


# Process-wide manager used by the scheduling service
room_manager = RoomManager()


def get_room_manager() -> RoomManager:
    return room_manager
