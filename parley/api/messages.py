from fastapi import APIRouter, Depends, Query, status

from parley.config import settings
from parley.models.user import User
from parley.schemas.common import ObjectIdStr, Page
from parley.schemas.message import (
    DirectMessageCreate,
    MessageCreate,
    MessageOut,
    MessageUpdate,
)
from parley.services.auth import get_current_user
from parley.services.messages import MessagePipeline, get_pipeline
from parley.services.pagination import pagination

router = APIRouter(prefix="/api/conversations", tags=["messages"])


@router.post("/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_to_receivers(
    data: DirectMessageCreate,
    pipeline: MessagePipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    return await pipeline.send(
        current_user.id,
        data.content,
        data.type,
        receivers=data.receivers,
        reply_to_id=data.reply_to_id,
    )


@router.patch("/messages/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: ObjectIdStr,
    data: MessageUpdate,
    pipeline: MessagePipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    return await pipeline.edit(message_id, current_user.id, data.content)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_message(
    message_id: ObjectIdStr,
    pipeline: MessagePipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    await pipeline.delete(message_id, current_user.id)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_to_conversation(
    conversation_id: ObjectIdStr,
    data: MessageCreate,
    pipeline: MessagePipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    return await pipeline.send(
        current_user.id,
        data.content,
        data.type,
        conversation_id=conversation_id,
        reply_to_id=data.reply_to_id,
    )


@router.get("/{conversation_id}/messages", response_model=Page[MessageOut])
async def list_messages(
    conversation_id: ObjectIdStr,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    pipeline: MessagePipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    return await pipeline.page_messages(
        conversation_id, current_user.id, pagination(page, limit)
    )
