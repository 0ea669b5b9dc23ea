"""
schemas/message.py
------------------
Pydantic models for the tenant conversation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MessageCreate(BaseModel):
    body: str = Field(
        ...,
        min_length=1,
        max_length=8000,
        examples=["The new landing page is ready for your review."],
        description="Message text",
    )

    @field_validator("body")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message must not be blank")
        return v


class MessageRead(BaseModel):
    id: str
    conversation_id: str
    author_user_id: str
    author_role: str
    body: str
    created_at: datetime
    # Populated for the caller's own messages only
    is_read: Optional[bool] = None
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConversationRead(BaseModel):
    id: str
    tenant_id: str
    title: str

    model_config = {"from_attributes": True}


class MessageListResponse(BaseModel):
    conversation: ConversationRead
    total: int
    unread: int
    items: list[MessageRead]


class MarkReadResponse(BaseModel):
    marked: int
    last_read_at: datetime
