"""Worker-side messaging routes.

Routes:
    GET    /api/v1/messages                : Conversations, most recent first
    GET    /api/v1/messages/unread/count   : Unread messages from agents
    GET    /api/v1/messages/{job_id}       : Read one conversation (marks it read)
    POST   /api/v1/messages/{job_id}/send  : Message the job's agent
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from keywork.api.deps import get_current_worker, get_message_service, worker_rate_limit
from keywork.domain.enums import RateLimitCategory
from keywork.schemas.messages import (
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
    UnreadCountResponse,
)

if TYPE_CHECKING:
    from keywork.domain.identity import WorkerIdentity
    from keywork.services import MessageService

router = APIRouter(prefix="/api/v1/messages", tags=["Messages"])


@router.get("", response_model=ConversationListResponse, summary="List conversations")
async def list_conversations(
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: MessageService = Depends(get_message_service),
) -> ConversationListResponse:
    conversations = await svc.conversations(worker)
    return ConversationListResponse(
        conversations=[ConversationResponse(**c) for c in conversations]
    )


@router.get("/unread/count", response_model=UnreadCountResponse, summary="Unread count")
async def unread_count(
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: MessageService = Depends(get_message_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await svc.unread_count(worker))


@router.get("/{job_id}", response_model=MessageListResponse, summary="Read a conversation")
async def list_messages(
    job_id: uuid.UUID,
    before: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: MessageService = Depends(get_message_service),
) -> MessageListResponse:
    messages = await svc.list_messages(worker, job_id, before=before, limit=limit)
    marked = await svc.mark_read(worker, job_id)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        count=len(messages),
        marked_read=marked,
    )


@router.post(
    "/{job_id}/send",
    response_model=MessageResponse,
    status_code=201,
    summary="Message the agent",
)
async def send_message(
    job_id: uuid.UUID,
    request: SendMessageRequest,
    worker: WorkerIdentity = Depends(worker_rate_limit(RateLimitCategory.MESSAGES)),
    svc: MessageService = Depends(get_message_service),
) -> MessageResponse:
    message = await svc.send(worker, job_id, request.body)
    return MessageResponse.model_validate(message)
