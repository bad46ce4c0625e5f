import logging
import uuid
from dataclasses import dataclass, field

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def conversation_room(conversation_id: str) -> str:
    return f"conversation/{conversation_id}"


def conversation_list_room(user_id: str) -> str:
    return f"conversationList/user/{user_id}"


@dataclass
class RoomManager:
    """In-process registry of live sessions and the rooms they joined.

    Delivery is best-effort: a session whose socket fails to send is skipped
    and nothing is queued for it.
    """

    sessions: dict[str, WebSocket] = field(default_factory=dict)
    session_users: dict[str, str] = field(default_factory=dict)
    rooms: dict[str, set[str]] = field(default_factory=dict)
    session_rooms: dict[str, set[str]] = field(default_factory=dict)

    async def connect(self, websocket: WebSocket, user_id: str) -> str:
        await websocket.accept()
        return self.register(websocket, user_id)

    def register(self, websocket: WebSocket, user_id: str) -> str:
        session_id = uuid.uuid4().hex
        self.sessions[session_id] = websocket
        self.session_users[session_id] = user_id
        self.session_rooms[session_id] = set()
        return session_id

    def disconnect(self, session_id: str):
        for room in list(self.session_rooms.get(session_id, set())):
            self.leave(session_id, room)
        self.session_rooms.pop(session_id, None)
        self.session_users.pop(session_id, None)
        self.sessions.pop(session_id, None)

    def join(self, session_id: str, room: str):
        if session_id not in self.sessions:
            return
        self.rooms.setdefault(room, set()).add(session_id)
        self.session_rooms[session_id].add(room)

    def leave(self, session_id: str, room: str):
        if room in self.rooms:
            self.rooms[room].discard(session_id)
            if not self.rooms[room]:
                del self.rooms[room]
        if session_id in self.session_rooms:
            self.session_rooms[session_id].discard(room)

    def evict_user(self, user_id: str, room: str) -> list[str]:
        """Drop every session of *user_id* from *room*; returns the evicted sessions."""
        evicted = [
            session_id
            for session_id in self.room_sessions(room)
            if self.session_users.get(session_id) == user_id
        ]
        for session_id in evicted:
            self.leave(session_id, room)
        return evicted

    def is_joined(self, session_id: str, room: str) -> bool:
        return session_id in self.rooms.get(room, set())

    def room_sessions(self, room: str) -> list[str]:
        return list(self.rooms.get(room, set()))

    async def publish(
        self, room: str, event: str, payload, exclude_session: str | None = None
    ):
        for session_id in self.room_sessions(room):
            if session_id == exclude_session:
                continue
            ws = self.sessions.get(session_id)
            if ws is None:
                continue
            try:
                await ws.send_json({"event": event, "data": payload})
            except Exception as exc:
                logger.warning("Dropping %s for session %s: %s", event, session_id, exc)
