"""Agent-facing REST API routes.

Agents authenticate with their Keeper API key. The MCP tools in
mcp_server/tools.py call the same service layer, ensuring consistency.

Routes:
    POST   /api/v1/agent/register               : Register / update callback URL
    POST   /api/v1/agent/jobs                   : Post a job (funds an escrow hold)
    GET    /api/v1/agent/jobs                   : List own jobs
    GET    /api/v1/agent/jobs/{id}              : Job details
    GET    /api/v1/agent/jobs/{id}/status       : Lightweight status check
    GET    /api/v1/agent/jobs/{id}/deliverables : Uploaded deliverables
    POST   /api/v1/agent/jobs/{id}/approve      : Approve and pay
    POST   /api/v1/agent/jobs/{id}/reject       : Send back or release to pool
    POST   /api/v1/agent/jobs/{id}/cancel       : Cancel with refund
    POST   /api/v1/agent/jobs/{id}/review       : Rate the worker
    POST   /api/v1/agent/jobs/{id}/message      : Message the worker
    GET    /api/v1/agent/jobs/{id}/messages     : Read the conversation
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from keywork.api.deps import (
    agent_rate_limit,
    get_current_agent,
    get_db_session,
    get_job_service,
    get_message_service,
    get_reputation_service,
)
from keywork.domain.enums import JobStatus, RateLimitCategory
from keywork.infrastructure.database.repositories import AgentRepository
from keywork.logging_config import get_logger
from keywork.schemas.jobs import (
    AgentResponse,
    ApproveJobRequest,
    ApproveJobResponse,
    CancelJobRequest,
    CancelJobResponse,
    CreateJobRequest,
    DeliverableResponse,
    JobListResponse,
    JobResponse,
    JobStatusResponse,
    RegisterAgentRequest,
    RejectJobRequest,
    ReviewResponse,
    SubmitReviewRequest,
    TransactionResponse,
)
from keywork.schemas.messages import (
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import AgentIdentity
    from keywork.services import JobService, MessageService, ReputationService

router = APIRouter(prefix="/api/v1/agent", tags=["Agent"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AgentResponse, summary="Register agent")
async def register_agent(
    request: RegisterAgentRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    session: AsyncSession = Depends(get_db_session),
) -> AgentResponse:
    """Create or update the agent record; sets the webhook callback URL."""
    row = await AgentRepository(session).upsert(agent.id, callback_url=request.callback_url)
    logger.info("agent.registered", agent_id=agent.id, has_callback=bool(row.callback_url))
    response = AgentResponse.model_validate(row)
    response.balance = agent.balance
    return response


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@router.post("/jobs", response_model=JobResponse, status_code=201, summary="Post a job")
async def create_job(
    request: CreateJobRequest,
    agent: AgentIdentity = Depends(agent_rate_limit(RateLimitCategory.JOB_CREATE)),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """Hold the payment in escrow and publish the job to eligible workers."""
    job = await svc.create_job(agent, request)
    return JobResponse.model_validate(job)


@router.get("/jobs", response_model=JobListResponse, summary="List own jobs")
async def list_jobs(
    status: JobStatus | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    agent: AgentIdentity = Depends(get_current_agent),
    svc: JobService = Depends(get_job_service),
) -> JobListResponse:
    jobs, total = await svc.list_agent_jobs(agent, status=status, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Get job details")
async def get_job(
    job_id: uuid.UUID,
    agent: AgentIdentity = Depends(agent_rate_limit(RateLimitCategory.JOB_STATUS)),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    job = await svc.get_job_for_agent(agent, job_id)
    return JobResponse.model_validate(job)


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusResponse,
    summary="Get job status",
)
async def get_job_status(
    job_id: uuid.UUID,
    agent: AgentIdentity = Depends(agent_rate_limit(RateLimitCategory.JOB_STATUS)),
    svc: JobService = Depends(get_job_service),
) -> JobStatusResponse:
    """Status, assignee and the lifecycle events that can fire next."""
    return JobStatusResponse(**await svc.job_status(agent, job_id))


@router.get(
    "/jobs/{job_id}/deliverables",
    response_model=list[DeliverableResponse],
    summary="List deliverables",
)
async def list_deliverables(
    job_id: uuid.UUID,
    agent: AgentIdentity = Depends(get_current_agent),
    svc: JobService = Depends(get_job_service),
) -> list[DeliverableResponse]:
    deliverables = await svc.list_deliverables(agent, job_id)
    return [DeliverableResponse.model_validate(d) for d in deliverables]


# ---------------------------------------------------------------------------
# Review decisions
# ---------------------------------------------------------------------------


@router.post(
    "/jobs/{job_id}/approve",
    response_model=ApproveJobResponse,
    summary="Approve submitted work",
)
async def approve_job(
    job_id: uuid.UUID,
    request: ApproveJobRequest | None = None,
    agent: AgentIdentity = Depends(get_current_agent),
    svc: JobService = Depends(get_job_service),
) -> ApproveJobResponse:
    """Transitions SUBMITTED -> COMPLETED, releases escrow and pays the worker."""
    request = request or ApproveJobRequest()
    result = await svc.approve_job(
        agent, job_id, tip_amount=request.tip_amount, tip_currency=request.tip_currency
    )
    return ApproveJobResponse(
        job=JobResponse.model_validate(result.job),
        transactions=[TransactionResponse.model_validate(t) for t in result.transactions],
        total_paid=result.total_paid,
        escrow_released=result.escrow_released,
    )


@router.post(
    "/jobs/{job_id}/reject",
    response_model=JobResponse,
    summary="Reject submitted work",
)
async def reject_job(
    job_id: uuid.UUID,
    request: RejectJobRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """SUBMITTED -> IN_PROGRESS (keep_assigned) or SUBMITTED -> AVAILABLE."""
    job = await svc.reject_job(
        agent, job_id, reason=request.reason, keep_assigned=request.keep_assigned
    )
    return JobResponse.model_validate(job)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=CancelJobResponse,
    summary="Cancel a job",
)
async def cancel_job(
    job_id: uuid.UUID,
    request: CancelJobRequest | None = None,
    agent: AgentIdentity = Depends(get_current_agent),
    svc: JobService = Depends(get_job_service),
) -> CancelJobResponse:
    reason = request.reason if request is not None else None
    result = await svc.cancel_job(agent, job_id, reason=reason)
    return CancelJobResponse(
        job=JobResponse.model_validate(result.job),
        refund_percent=result.refund_percent,
        compensation=result.compensation,
        escrow_voided=result.escrow_voided,
    )


@router.post(
    "/jobs/{job_id}/review",
    response_model=ReviewResponse,
    status_code=201,
    summary="Review the worker",
)
async def review_job(
    job_id: uuid.UUID,
    request: SubmitReviewRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    svc: ReputationService = Depends(get_reputation_service),
) -> ReviewResponse:
    review = await svc.submit_review(agent, job_id, request)
    return ReviewResponse.model_validate(review)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@router.post(
    "/jobs/{job_id}/message",
    response_model=MessageResponse,
    status_code=201,
    summary="Message the assigned worker",
)
async def send_message(
    job_id: uuid.UUID,
    request: SendMessageRequest,
    agent: AgentIdentity = Depends(agent_rate_limit(RateLimitCategory.MESSAGES)),
    svc: MessageService = Depends(get_message_service),
) -> MessageResponse:
    message = await svc.send(agent, job_id, request.body)
    return MessageResponse.model_validate(message)


@router.get(
    "/jobs/{job_id}/messages",
    response_model=MessageListResponse,
    summary="Read the job conversation",
)
async def list_messages(
    job_id: uuid.UUID,
    before: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    agent: AgentIdentity = Depends(get_current_agent),
    svc: MessageService = Depends(get_message_service),
) -> MessageListResponse:
    """Returns messages oldest first and marks the worker's messages read."""
    messages = await svc.list_messages(agent, job_id, before=before, limit=limit)
    marked = await svc.mark_read(agent, job_id)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        count=len(messages),
        marked_read=marked,
    )
