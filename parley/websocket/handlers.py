import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy import select

from parley.errors import AppError, ForbiddenError, ValidationError
from parley.models.base import is_object_id
from parley.models.user import User
from parley.services.auth import decode_access_token
from parley.services.notifier import Notifier
from parley.services.seen import SeenTracker
from parley.services.store import get_member_conversation
from parley.websocket.manager import RoomManager, conversation_list_room, conversation_room

logger = logging.getLogger(__name__)


async def authenticate_ws(websocket: WebSocket, session_factory) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        return None
    user_id = decode_access_token(token)
    if user_id is None:
        return None

    async with session_factory() as db:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
    if user is None or not user.is_verified:
        return None
    return user


def _conversation_id(data) -> str:
    conversation_id = data.get("conversation_id") if isinstance(data, dict) else None
    if not is_object_id(conversation_id):
        raise ValidationError.for_field("conversation_id", "A valid conversation_id is required")
    return conversation_id.lower()


class SocketHandler:
    """Dispatches inbound frames of one WebSocket session.

    Frames are ``{"event", "data", "ack"?}``. When ``ack`` is present the
    session gets ``{"event": "ack", "ack", "success", "message", "data"}``
    back; otherwise failures are reported as an ``error`` event.
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        rooms: RoomManager,
        notifier: Notifier,
        session_factory,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.rooms = rooms
        self.notifier = notifier
        self.session_factory = session_factory
        self.session_id: str | None = None
        self.handlers = {
            "conversationList/user": self.join_conversation_list,
            "conversation/join": self.join_conversation,
            "conversation/leave": self.leave_conversation,
            "conversation/seen": self.mark_seen,
            "conversation/typing": self.typing,
        }

    async def run(self):
        self.session_id = await self.rooms.connect(self.websocket, self.user_id)
        self.rooms.join(self.session_id, conversation_list_room(self.user_id))
        logger.debug("Session %s connected for user %s", self.session_id, self.user_id)
        try:
            while True:
                try:
                    frame = await self.websocket.receive_json()
                except json.JSONDecodeError:
                    await self._send_error(
                        ValidationError.for_field("frame", "Frame is not valid JSON")
                    )
                    continue
                await self.dispatch(frame)
        except WebSocketDisconnect:
            pass
        finally:
            self.rooms.disconnect(self.session_id)
            logger.debug("Session %s disconnected", self.session_id)

    async def dispatch(self, frame):
        if not isinstance(frame, dict):
            frame = {}
        event = frame.get("event")
        ack = frame.get("ack")

        handler = self.handlers.get(event)
        try:
            if handler is None:
                raise ValidationError.for_field("event", f"Unknown event: {event}")
            result = await handler(frame.get("data") or {})
        except AppError as exc:
            if ack is not None:
                await self._reply(ack, False, exc.message, exc.to_dict())
            else:
                await self._send_error(exc)
            return

        if ack is not None:
            await self._reply(ack, True, "ok", result)

    async def _send_error(self, exc: AppError):
        await self.websocket.send_json({"event": "error", "data": exc.to_dict()})

    async def _reply(self, ack, success: bool, message: str, data):
        await self.websocket.send_json({
            "event": "ack",
            "ack": ack,
            "success": 1 if success else 0,
            "message": message,
            "data": data,
        })

    async def join_conversation_list(self, data):
        room = conversation_list_room(self.user_id)
        self.rooms.join(self.session_id, room)
        return {"room": room}

    async def join_conversation(self, data):
        conversation_id = _conversation_id(data)
        async with self.session_factory() as db:
            seen_at = await SeenTracker(db, self.notifier).mark_entered(
                conversation_id, self.user_id
            )
        self.rooms.join(self.session_id, conversation_room(conversation_id))
        return {"conversation_id": conversation_id, "seen_at": seen_at.isoformat()}

    async def leave_conversation(self, data):
        conversation_id = _conversation_id(data)
        self.rooms.leave(self.session_id, conversation_room(conversation_id))
        return {"conversation_id": conversation_id}

    async def mark_seen(self, data):
        conversation_id = _conversation_id(data)
        async with self.session_factory() as db:
            seen_at = await SeenTracker(db, self.notifier).mark_entered(
                conversation_id, self.user_id
            )
        return {"conversation_id": conversation_id, "seen_at": seen_at.isoformat()}

    async def typing(self, data):
        conversation_id = _conversation_id(data)
        room = conversation_room(conversation_id)
        if not self.rooms.is_joined(self.session_id, room):
            raise ForbiddenError("Join the conversation before sending typing events")
        async with self.session_factory() as db:
            try:
                await get_member_conversation(db, conversation_id, self.user_id)
            except AppError:
                self.rooms.leave(self.session_id, room)
                raise
        is_typing = bool(data.get("is_typing", True))
        await self.notifier.notify_typing(
            conversation_id, self.user_id, is_typing, exclude_session=self.session_id
        )
        return {"conversation_id": conversation_id, "is_typing": is_typing}


async def websocket_endpoint(websocket: WebSocket):
    state = websocket.app.state
    user = await authenticate_ws(websocket, state.session_factory)
    if not user:
        await websocket.close(code=4001, reason="Unauthorized")
        return

    handler = SocketHandler(websocket, user.id, state.rooms, state.notifier, state.session_factory)
    await handler.run()
