"""
services/message_service.py
----------------------------
Tenant conversation: one per tenant, created lazily.

Critical security invariant:
  Every query MUST include tenant_id in the WHERE clause.
  This prevents cross-tenant data leakage even if ids are somehow guessable.

author_role is derived from the sender's effective role when the message
is written and never rewritten afterwards.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.logging import get_logger
from agency_portal.db.base import utcnow
from agency_portal.models.message import (
    Conversation,
    ConversationRead,
    Message,
    MessageReadReceipt,
)
from agency_portal.models.tenant import Role
from agency_portal.schemas.message import MessageRead
from agency_portal.services.access_service import author_role_for

logger = get_logger(__name__)


class MessageService:

    @staticmethod
    async def get_conversation(db: AsyncSession, tenant_id: str) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation).where(Conversation.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_conversation(db: AsyncSession, tenant_id: str) -> Conversation:
        """
        Check-then-insert. The insert runs in a savepoint so losing the race
        to a concurrent creator leaves the caller's transaction and loaded
        objects untouched; the winner's row is re-queried.
        """
        conversation = await MessageService.get_conversation(db, tenant_id)
        if conversation is not None:
            return conversation

        try:
            async with db.begin_nested():
                conversation = Conversation(tenant_id=tenant_id)
                db.add(conversation)
        except IntegrityError:
            logger.info("Conversation created concurrently, re-resolving", tenant_id=tenant_id)
            conversation = await MessageService.get_conversation(db, tenant_id)
            if conversation is None:
                raise
            return conversation
        logger.info("Conversation created", tenant_id=tenant_id, conversation_id=conversation.id)
        return conversation

    @staticmethod
    async def send_message(
        db: AsyncSession,
        tenant_id: str,
        author_user_id: str,
        author_effective_role: Role,
        body: str,
    ) -> Message:
        conversation = await MessageService.get_or_create_conversation(db, tenant_id)
        message = Message(
            conversation_id=conversation.id,
            tenant_id=tenant_id,
            author_user_id=author_user_id,
            author_role=author_role_for(author_effective_role),
            body=body,
            created_at=utcnow(),
        )
        db.add(message)
        await db.flush()
        logger.info(
            "Message stored",
            message_id=message.id,
            tenant_id=tenant_id,
            author_role=message.author_role,
        )
        return message

    @staticmethod
    async def list_messages(
        db: AsyncSession,
        tenant_id: str,
        viewer_user_id: str,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[int, list[MessageRead]]:
        """
        Oldest-first page of the tenant's messages. The viewer's own messages
        carry is_read / read_at from the earliest receipt by anyone else.

        Returns:
            (total_count, page_of_messages)
        """
        base_filter = Message.tenant_id == tenant_id

        count_result = await db.execute(
            select(func.count()).select_from(Message).where(base_filter)
        )
        total = count_result.scalar_one()

        result = await db.execute(
            select(Message)
            .where(base_filter)
            .order_by(Message.created_at, Message.id)
            .offset(skip)
            .limit(limit)
        )
        messages = list(result.scalars().all())

        own_ids = [m.id for m in messages if m.author_user_id == viewer_user_id]
        first_read: dict[str, datetime] = {}
        if own_ids:
            receipts = await db.execute(
                select(MessageReadReceipt.message_id, func.min(MessageReadReceipt.read_at))
                .where(
                    MessageReadReceipt.message_id.in_(own_ids),
                    MessageReadReceipt.user_id != viewer_user_id,
                )
                .group_by(MessageReadReceipt.message_id)
            )
            first_read = {message_id: read_at for message_id, read_at in receipts.all()}

        items = []
        for message in messages:
            item = MessageRead.model_validate(message)
            if message.author_user_id == viewer_user_id:
                item.read_at = first_read.get(message.id)
                item.is_read = item.read_at is not None
            items.append(item)
        return total, items

    @staticmethod
    async def mark_read(db: AsyncSession, tenant_id: str, user_id: str) -> tuple[int, datetime]:
        """
        Receipt every unreceipted message by someone else and move the
        conversation last-read-at marker to now.

        Returns:
            (receipts_written, last_read_at)
        """
        now = utcnow()
        conversation = await MessageService.get_or_create_conversation(db, tenant_id)

        already = select(MessageReadReceipt.message_id).where(
            MessageReadReceipt.user_id == user_id
        )
        result = await db.execute(
            select(Message.id).where(
                Message.tenant_id == tenant_id,
                Message.author_user_id != user_id,
                Message.id.not_in(already),
            )
        )
        unreceipted = list(result.scalars().all())
        for message_id in unreceipted:
            db.add(MessageReadReceipt(message_id=message_id, user_id=user_id, read_at=now))

        marker_result = await db.execute(
            select(ConversationRead).where(
                ConversationRead.conversation_id == conversation.id,
                ConversationRead.user_id == user_id,
            )
        )
        marker = marker_result.scalar_one_or_none()
        if marker is None:
            db.add(ConversationRead(conversation_id=conversation.id, user_id=user_id, last_read_at=now))
        else:
            marker.last_read_at = now
        await db.flush()
        return len(unreceipted), now

    @staticmethod
    async def unread_count(db: AsyncSession, tenant_id: str, user_id: str) -> int:
        """Messages by others created after the reader's last-read-at marker."""
        conversation = await MessageService.get_conversation(db, tenant_id)
        if conversation is None:
            return 0

        stmt = select(func.count()).select_from(Message).where(
            Message.tenant_id == tenant_id,
            Message.conversation_id == conversation.id,
            Message.author_user_id != user_id,
        )
        last_read = (
            select(ConversationRead.last_read_at)
            .where(
                ConversationRead.conversation_id == conversation.id,
                ConversationRead.user_id == user_id,
            )
            .scalar_subquery()
        )
        # No marker yet: everything by others is unread
        stmt = stmt.where(
            (last_read.is_(None)) | (Message.created_at > last_read)
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def recent_messages(db: AsyncSession, tenant_id: str, limit: int = 3) -> list[Message]:
        """The latest `limit` messages, returned oldest first."""
        result = await db.execute(
            select(Message)
            .where(Message.tenant_id == tenant_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))
