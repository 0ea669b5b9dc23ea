"""
api/routes/messages.py
----------------------
Tenant conversation endpoints.

GET  /workspaces/{workspace_ref}/messages        — Paginated conversation (oldest first)
POST /workspaces/{workspace_ref}/messages        — Send a message
POST /workspaces/{workspace_ref}/messages/read   — Mark everything read
GET  /workspaces/{workspace_ref}/messages/unread — Unread count
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.dependencies import GatedMemberContext
from agency_portal.schemas.message import (
    ConversationRead,
    MarkReadResponse,
    MessageCreate,
    MessageListResponse,
    MessageRead,
)
from agency_portal.services.message_service import MessageService

router = APIRouter(prefix="/workspaces/{workspace_ref}/messages", tags=["Messages"])


@router.post(
    "",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message to the workspace conversation",
)
async def send_message(
    body: MessageCreate,
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageRead:
    """
    The author tag (agency / client) comes from the caller's effective
    role, never from the request body or the preview flag.
    """
    message = await MessageService.send_message(
        db,
        tenant_id=ctx.tenant.id,
        author_user_id=ctx.user.id,
        author_effective_role=ctx.effective_role,
        body=body.body,
    )
    return MessageRead.model_validate(message)


@router.get(
    "",
    response_model=MessageListResponse,
    summary="List messages for the workspace (paginated)",
)
async def list_messages(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(default=0, ge=0, description="Pagination offset"),
    limit: int = Query(default=50, ge=1, le=200, description="Results per page"),
) -> MessageListResponse:
    conversation = await MessageService.get_or_create_conversation(db, ctx.tenant.id)
    total, items = await MessageService.list_messages(
        db, ctx.tenant.id, ctx.user.id, skip=skip, limit=limit
    )
    unread = await MessageService.unread_count(db, ctx.tenant.id, ctx.user.id)
    return MessageListResponse(
        conversation=ConversationRead.model_validate(conversation),
        total=total,
        unread=unread,
        items=items,
    )


@router.post("/read", response_model=MarkReadResponse, summary="Mark the conversation read")
async def mark_read(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MarkReadResponse:
    marked, last_read_at = await MessageService.mark_read(db, ctx.tenant.id, ctx.user.id)
    return MarkReadResponse(marked=marked, last_read_at=last_read_at)


@router.get("/unread", response_model=int, summary="Unread message count")
async def unread_count(
    ctx: GatedMemberContext,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> int:
    return await MessageService.unread_count(db, ctx.tenant.id, ctx.user.id)
