from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.database import get_db, transaction
from parley.models.user import User
from parley.schemas.common import ObjectIdStr, Page
from parley.schemas.conversation import (
    ConversationOut,
    ConversationUpdate,
    GroupCreate,
    MembersChange,
    ReceiversQuery,
    SeenOut,
)
from parley.services.auth import get_current_user
from parley.services.conversations import (
    add_group_members,
    create_group,
    ensure_mutable_membership,
    remove_group_members,
    resolve_conversation,
)
from parley.services.notifier import Notifier, get_notifier
from parley.services.pagination import pagination
from parley.services.presenters import conversation_out, conversation_outs
from parley.services.seen import SeenTracker, get_seen_tracker
from parley.services.store import (
    get_conversation,
    get_member_conversation,
    list_conversations,
    update_conversation_details,
)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("/", response_model=Page[ConversationOut])
async def list_my_conversations(
    q: str | None = None,
    conversation_type: str | None = Query(
        None, alias="type", pattern="^(individual|group|channel)$"
    ),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    window = pagination(page, limit)
    conversations, total = await list_conversations(
        db, current_user.id, window, q, conversation_type
    )
    outs = await conversation_outs(db, conversations, current_user.id)
    return window.paginate_result(total, outs)


@router.post("/", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_group_conversation(
    data: GroupCreate,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    async with transaction(db):
        conversation = await create_group(
            db, current_user.id, data.members, data.type, data.name, data.thumbnail
        )
        out = await conversation_out(db, conversation, current_user.id)

    await notifier.notify_new_conversation(out, [m.id for m in out.members])
    return out


@router.post("/find", response_model=ConversationOut | None)
async def find_conversation(
    data: ReceiversQuery,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation, _ = await resolve_conversation(
        db, data.receivers, current_user.id, create=False
    )
    if conversation is None:
        return None
    return await conversation_out(db, conversation, current_user.id)


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_my_conversation(
    conversation_id: ObjectIdStr,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = await get_member_conversation(db, conversation_id, current_user.id)
    return await conversation_out(db, conversation, current_user.id)


@router.get("/{conversation_id}/unread-count")
async def get_unread_count(
    conversation_id: ObjectIdStr,
    tracker: SeenTracker = Depends(get_seen_tracker),
    current_user: User = Depends(get_current_user),
):
    count = await tracker.unread_count(conversation_id, current_user.id)
    return {"conversation_id": conversation_id, "unread_count": count}


@router.patch("/{conversation_id}", response_model=ConversationOut)
async def update_conversation(
    conversation_id: ObjectIdStr,
    data: ConversationUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    async with transaction(db):
        conversation = await get_member_conversation(db, conversation_id, current_user.id)
        ensure_mutable_membership(conversation)
        values = data.model_dump(exclude_none=True)
        if values:
            await update_conversation_details(db, conversation_id, **values)
            conversation = await get_conversation(db, conversation_id)
        out = await conversation_out(db, conversation, current_user.id)

    if values:
        await notifier.notify_conversation_updated(out)
    return out


@router.patch("/{conversation_id}/members/add", response_model=ConversationOut)
async def add_conversation_members(
    conversation_id: ObjectIdStr,
    data: MembersChange,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    async with transaction(db):
        conversation = await get_member_conversation(db, conversation_id, current_user.id)
        added = await add_group_members(db, conversation, data.members)
        conversation = await get_conversation(db, conversation_id)
        out = await conversation_out(db, conversation, current_user.id)

    if added:
        await notifier.notify_members_changed(conversation_id, "conversation/membersAdded", added)
        await notifier.notify_new_conversation(out, added)
    return out


@router.patch("/{conversation_id}/members/remove", response_model=ConversationOut | None)
async def remove_conversation_members(
    conversation_id: ObjectIdStr,
    data: MembersChange,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    async with transaction(db):
        conversation = await get_member_conversation(db, conversation_id, current_user.id)
        removed, deleted = await remove_group_members(db, conversation, data.members)
        out = None
        if not deleted:
            conversation = await get_conversation(db, conversation_id)
            if any(m.user_id == current_user.id for m in conversation.members):
                out = await conversation_out(db, conversation, current_user.id)

    if removed:
        await notifier.notify_members_removed(conversation_id, removed)
    return out


@router.delete("/{conversation_id}/members/me", status_code=status.HTTP_204_NO_CONTENT)
async def leave_conversation(
    conversation_id: ObjectIdStr,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    current_user: User = Depends(get_current_user),
):
    async with transaction(db):
        conversation = await get_member_conversation(db, conversation_id, current_user.id)
        removed, _ = await remove_group_members(db, conversation, [current_user.id])

    if removed:
        await notifier.notify_members_removed(conversation_id, removed)


@router.post("/{conversation_id}/seen", response_model=SeenOut)
async def mark_seen(
    conversation_id: ObjectIdStr,
    tracker: SeenTracker = Depends(get_seen_tracker),
    current_user: User = Depends(get_current_user),
):
    seen_at = await tracker.mark_entered(conversation_id, current_user.id)
    return SeenOut(conversation_id=conversation_id, user_id=current_user.id, seen_at=seen_at)
