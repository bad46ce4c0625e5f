"""Real-time fan-out of conversation events to WebSocket rooms.

Every method is called only after the corresponding write has been
committed. Publishing is fire-and-forget: failures are logged and never
propagate to the caller, and missed events are not redelivered.
"""
import logging
from datetime import datetime
from typing import Iterable

from fastapi import Request

from parley.schemas.conversation import ConversationOut
from parley.schemas.message import MessageOut
from parley.websocket.manager import RoomManager, conversation_list_room, conversation_room

logger = logging.getLogger(__name__)


def _message_payload(message: MessageOut) -> dict:
    return message.model_dump(mode="json", exclude={"unread"})


def _conversation_payload(conversation: ConversationOut) -> dict:
    # unread_count is per viewer and never broadcast
    payload = conversation.model_dump(mode="json", exclude={"unread_count"})
    if payload.get("last_message"):
        payload["last_message"].pop("unread", None)
    return payload


class Notifier:
    def __init__(self, rooms: RoomManager):
        self.rooms = rooms

    async def _publish(self, room: str, event: str, payload, exclude_session: str | None = None):
        try:
            await self.rooms.publish(room, event, payload, exclude_session=exclude_session)
        except Exception:
            logger.warning("Broadcast of %s to %s failed", event, room, exc_info=True)

    async def _publish_to_members(self, member_ids: Iterable[str], event: str, payload):
        for member_id in member_ids:
            await self._publish(conversation_list_room(member_id), event, payload)

    async def notify_new_message(
        self,
        conversation: ConversationOut,
        message: MessageOut,
        is_new_conversation: bool,
    ):
        message_payload = _message_payload(message)
        member_ids = [m.id for m in conversation.members]

        if is_new_conversation:
            await self._publish_to_members(
                member_ids,
                "conversationList/newConversation",
                _conversation_payload(conversation),
            )
        else:
            await self._publish_to_members(
                member_ids,
                "conversationList/newMessage",
                {"conversation_id": conversation.id, "message": message_payload},
            )

        await self._publish(
            conversation_room(conversation.id), "conversation/newMessage", message_payload
        )

    async def notify_message_updated(
        self, conversation: ConversationOut, message: MessageOut, is_last_message: bool
    ):
        message_payload = _message_payload(message)
        await self._publish(
            conversation_room(conversation.id), "conversation/messageUpdated", message_payload
        )
        if is_last_message:
            await self._publish_to_members(
                [m.id for m in conversation.members],
                "conversationList/lastMessageChanged",
                {"conversation_id": conversation.id, "message": message_payload},
            )

    async def notify_message_deleted(
        self, conversation: ConversationOut, message: MessageOut, is_last_message: bool
    ):
        await self._publish(
            conversation_room(conversation.id),
            "conversation/messageDeleted",
            _message_payload(message),
        )
        if is_last_message:
            await self._publish_to_members(
                [m.id for m in conversation.members],
                "conversationList/lastMessageDeleted",
                {"conversation_id": conversation.id, "message": None},
            )

    async def notify_seen(self, conversation_id: str, user_id: str, seen_at: datetime):
        await self._publish(
            conversation_room(conversation_id),
            "conversation/seen",
            {
                "conversation_id": conversation_id,
                "user_id": user_id,
                "seen_at": seen_at.isoformat(),
            },
        )

    async def notify_typing(
        self,
        conversation_id: str,
        user_id: str,
        is_typing: bool,
        exclude_session: str | None = None,
    ):
        await self._publish(
            conversation_room(conversation_id),
            "conversation/typing",
            {"conversation_id": conversation_id, "user_id": user_id, "is_typing": is_typing},
            exclude_session=exclude_session,
        )

    async def notify_new_conversation(
        self, conversation: ConversationOut, member_ids: Iterable[str]
    ):
        await self._publish_to_members(
            member_ids, "conversationList/newConversation", _conversation_payload(conversation)
        )

    async def notify_members_changed(
        self, conversation_id: str, event: str, member_ids: list[str]
    ):
        await self._publish(
            conversation_room(conversation_id),
            event,
            {"conversation_id": conversation_id, "members": member_ids},
        )

    async def notify_members_removed(self, conversation_id: str, member_ids: list[str]):
        """Announce removed members, then unsubscribe their sessions from the room."""
        payload = {"conversation_id": conversation_id, "members": member_ids}
        room = conversation_room(conversation_id)
        await self._publish(room, "conversation/membersRemoved", payload)
        await self._publish_to_members(
            member_ids, "conversationList/removedFromConversation", payload
        )
        for member_id in member_ids:
            evicted = self.rooms.evict_user(member_id, room)
            if evicted:
                logger.debug("Evicted %d session(s) of %s from %s", len(evicted), member_id, room)

    async def notify_conversation_updated(self, conversation: ConversationOut):
        await self._publish(
            conversation_room(conversation.id),
            "conversation/updated",
            _conversation_payload(conversation),
        )


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
