"""MCP Tool definitions for KeyWork.

These tools expose the agent side of the marketplace via the Model Context
Protocol, allowing AI agents to discover and call them programmatically.

Tools:
    - create_job: Post a job (funds an escrow hold)
    - get_job_status: Check the status of a job
    - list_my_jobs: List the agent's jobs
    - approve_job: Approve submitted work and pay the worker
    - reject_job: Send work back or release the job to the pool
    - cancel_job: Cancel a job with the appropriate refund
    - review_worker: Rate the worker of a completed job
    - message_worker: Message the assigned worker

Every tool takes the agent's Keeper API key as ``api_key``. The MCP server
is mounted into FastAPI at /mcp via app.mount(). Each tool manages its own
database session (no FastAPI Depends available).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from keywork.api.auth import authenticate_agent
from keywork.config import get_settings
from keywork.domain.enums import JobStatus
from keywork.domain.exceptions import KeyWorkError
from keywork.infrastructure.database.engine import get_session_factory
from keywork.infrastructure.ledger import build_ledger_client
from keywork.infrastructure.storage import build_object_store
from keywork.logging_config import get_logger
from keywork.schemas.jobs import CreateJobRequest, SubmitReviewRequest
from keywork.services import JobService, MessageService, ReputationService

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import AgentIdentity
    from keywork.infrastructure.ledger import LedgerClient
    from keywork.infrastructure.storage import ObjectStore
    from keywork.realtime.notifier import Notifier

logger = get_logger(__name__)

mcp = FastMCP(
    "KeyWork",
    json_response=True,
)


@dataclass
class _Runtime:
    ledger: LedgerClient
    storage: ObjectStore
    notifier: Notifier | None = None


_runtime: _Runtime | None = None


def configure(ledger: LedgerClient, storage: ObjectStore, notifier: Notifier | None) -> None:
    """Share the application's clients with the tools (called from the lifespan)."""
    global _runtime
    _runtime = _Runtime(ledger=ledger, storage=storage, notifier=notifier)


def _get_runtime() -> _Runtime:
    global _runtime
    if _runtime is None:
        settings = get_settings()
        _runtime = _Runtime(
            ledger=build_ledger_client(settings), storage=build_object_store(settings)
        )
    return _runtime


async def _call(
    tool: str,
    api_key: str,
    op: Callable[[AsyncSession, AgentIdentity, _Runtime], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """Authenticate, run ``op`` in its own transaction and render errors as data."""
    runtime = _get_runtime()
    factory = get_session_factory()
    try:
        async with factory() as session:
            try:
                agent = await authenticate_agent(api_key, runtime.ledger, session)
                result = await op(session, agent, runtime)
                await session.commit()
            except BaseException:
                await session.rollback()
                raise
            return result
    except KeyWorkError as exc:
        logger.info(f"mcp.{tool}.rejected", code=exc.code, error=exc.message)
        return {"error": exc.code, "message": exc.message}
    except ValueError as exc:
        return {"error": "VALIDATION_ERROR", "message": str(exc)}
    except Exception as exc:
        logger.exception(f"mcp.{tool}.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}


def _job_summary(job: Any) -> dict[str, Any]:
    return {
        "job_id": str(job.id),
        "status": job.status,
        "title": job.title,
        "payment_amount": str(job.payment_amount),
        "payment_currency": job.payment_currency,
        "worker_id": job.worker_id,
        "rejection_count": job.rejection_count,
    }


@mcp.tool()
async def create_job(
    api_key: str,
    title: str,
    description: str,
    latitude: float,
    longitude: float,
    payment_amount: float,
    expires_at: str,
    category: str = "other",
    address: str = "",
    required_trust_level: str = "basic",
    required_deliverables: list[str] | None = None,
    payment_currency: str = "USD",
    idempotency_key: str = "",
) -> dict:
    """Post a physical-world task for human workers.

    The payment is held in escrow from your Keeper balance until you
    approve or cancel.

    Args:
        api_key: Your Keeper API key (kk_...).
        title: Short task title.
        description: What the worker must do on site.
        latitude: Task location latitude.
        longitude: Task location longitude.
        payment_amount: Amount paid on approval.
        expires_at: ISO-8601 time after which nobody can accept the job.
        category: photo_survey, verification, transcription, delivery,
            inspection, data_collection or other.
        address: Optional street address.
        required_trust_level: basic, verified or kyc_gold.
        required_deliverables: Any of photo, video, audio, document.
        payment_currency: ISO currency code.
        idempotency_key: Repeat-safe key; a second call with the same key fails.

    Returns:
        The job id and status.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        request = CreateJobRequest(
            title=title,
            description=description,
            category=category,
            latitude=latitude,
            longitude=longitude,
            address=address or None,
            required_trust_level=required_trust_level,
            required_deliverables=required_deliverables or ["photo"],
            payment_amount=Decimal(str(payment_amount)).quantize(Decimal("0.01")),
            payment_currency=payment_currency,
            expires_at=datetime.fromisoformat(expires_at),
            idempotency_key=idempotency_key or None,
        )
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        job = await svc.create_job(agent, request)
        return {
            **_job_summary(job),
            "escrow_hold_id": job.escrow_hold_id,
            "message": "Job posted. Workers can now accept it.",
        }

    return await _call("create_job", api_key, op)


@mcp.tool()
async def get_job_status(api_key: str, job_id: str) -> dict:
    """Check the status of one of your jobs.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of the job.

    Returns:
        Status, assigned worker and the actions available next.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        status = await svc.job_status(agent, uuid.UUID(job_id))
        return {**status, "job_id": str(status["job_id"])}

    return await _call("get_job_status", api_key, op)


@mcp.tool()
async def list_my_jobs(api_key: str, status: str = "", limit: int = 20) -> dict:
    """List your jobs, newest first.

    Args:
        api_key: Your Keeper API key (kk_...).
        status: Optional status filter (available, assigned, in_progress,
            submitted, completed, cancelled).
        limit: Maximum number of jobs.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        jobs, total = await svc.list_agent_jobs(
            agent, status=JobStatus(status) if status else None, limit=limit
        )
        return {"jobs": [_job_summary(j) for j in jobs], "total": total}

    return await _call("list_my_jobs", api_key, op)


@mcp.tool()
async def approve_job(
    api_key: str,
    job_id: str,
    tip_amount: float = 0.0,
) -> dict:
    """Approve submitted work, release escrow and pay the worker.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of a job in 'submitted' status.
        tip_amount: Optional bonus on top of the payment.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        result = await svc.approve_job(
            agent, uuid.UUID(job_id), tip_amount=Decimal(str(tip_amount))
        )
        return {
            **_job_summary(result.job),
            "total_paid": str(result.total_paid),
            "escrow_released": result.escrow_released,
            "message": "Job approved and worker paid.",
        }

    return await _call("approve_job", api_key, op)


@mcp.tool()
async def reject_job(
    api_key: str,
    job_id: str,
    reason: str,
    keep_assigned: bool = True,
) -> dict:
    """Reject submitted work.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of a job in 'submitted' status.
        reason: What was wrong; sent to the worker.
        keep_assigned: True asks the same worker to revise; False returns
            the job to the pool and discards the deliverables.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        job = await svc.reject_job(agent, uuid.UUID(job_id), reason, keep_assigned)
        return _job_summary(job)

    return await _call("reject_job", api_key, op)


@mcp.tool()
async def cancel_job(api_key: str, job_id: str, reason: str = "") -> dict:
    """Cancel a job that has not been submitted.

    Before work starts the hold is refunded in full; once work has started
    the worker is compensated and the rest is refunded.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of the job.
        reason: Optional reason shared with the worker.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        svc = JobService(session, rt.ledger, rt.storage, rt.notifier)
        result = await svc.cancel_job(agent, uuid.UUID(job_id), reason or None)
        return {
            **_job_summary(result.job),
            "refund_percent": result.refund_percent,
            "compensation": str(result.compensation) if result.compensation else None,
            "escrow_voided": result.escrow_voided,
        }

    return await _call("cancel_job", api_key, op)


@mcp.tool()
async def review_worker(
    api_key: str,
    job_id: str,
    rating: int,
    review_text: str = "",
) -> dict:
    """Rate the worker of a completed job (1-5). One review per job.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of a completed job.
        rating: Overall rating from 1 to 5.
        review_text: Optional free-text review.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        request = SubmitReviewRequest(rating=rating, review_text=review_text or None)
        review = await ReputationService(session).submit_review(
            agent, uuid.UUID(job_id), request
        )
        return {
            "review_id": str(review.id),
            "job_id": str(review.job_id),
            "worker_id": review.worker_id,
            "rating": review.rating,
        }

    return await _call("review_worker", api_key, op)


@mcp.tool()
async def message_worker(api_key: str, job_id: str, body: str) -> dict:
    """Send a message to the worker assigned to your job.

    Args:
        api_key: Your Keeper API key (kk_...).
        job_id: UUID of the job.
        body: Message text.
    """

    async def op(session: AsyncSession, agent: AgentIdentity, rt: _Runtime) -> dict:
        message = await MessageService(session, rt.notifier).send(agent, uuid.UUID(job_id), body)
        return {"message_id": str(message.id), "job_id": job_id, "worker_id": message.worker_id}

    return await _call("message_worker", api_key, op)
