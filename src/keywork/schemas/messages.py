"""Pydantic schemas for job conversations."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    agent_id: str
    worker_id: str
    sender_role: str
    body: str
    kind: str
    is_read: bool
    read_at: datetime | None
    created_at: datetime


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    count: int
    marked_read: int = 0


class ConversationResponse(BaseModel):
    job_id: uuid.UUID
    job_title: str
    job_status: str
    agent_id: str
    last_message: str | None
    last_message_at: datetime | None
    unread_count: int


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]


class UnreadCountResponse(BaseModel):
    unread_count: int
