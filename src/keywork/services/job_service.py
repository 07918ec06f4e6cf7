"""Job Service: core business logic for the job lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access, compare-and-set status writes)
    - Ledger client (escrow hold / release / void)
    - Object storage (deliverable files)
    - Notifier (WebSocket rooms and agent webhooks, fire-and-forget)

Both REST routes and MCP tools call into this service, so every business
rule lives in exactly one place. Each operation follows the same shape:
load the job scoped to the caller, guard the transition, call the ledger
where money moves, write the new status with a compare-and-set, then
record messages and schedule notifications.

A job the caller may not act on and a job in the wrong status produce the
same PreconditionFailedError, so existence is never leaked.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from statemachine.exceptions import TransitionNotAllowed

from keywork.config import get_settings
from keywork.domain.enums import (
    DeliverableKind,
    JobStatus,
    MessageKind,
    SenderRole,
    TransactionType,
    TrustLevel,
    WebhookEvent,
)
from keywork.domain.exceptions import (
    InvalidTransitionError,
    KeyWorkError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
    ValidationError,
)
from keywork.domain.state_machine import REQUIRED_STATUS, JobStateMachine
from keywork.infrastructure.database.orm_models import Deliverable, Job, Message
from keywork.infrastructure.database.repositories import (
    AgentRepository,
    DeliverableRepository,
    JobRepository,
    MessageRepository,
    TransactionRepository,
    WorkerRepository,
)
from keywork.infrastructure.redis_client import (
    claim_idempotency_key,
    release_idempotency_key,
)
from keywork.infrastructure.storage import deliverable_key
from keywork.logging_config import get_logger
from keywork.services.message_service import message_payload

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.config import Settings
    from keywork.domain.identity import AgentIdentity, WorkerIdentity
    from keywork.infrastructure.database.orm_models import Transaction
    from keywork.infrastructure.ledger import LedgerClient
    from keywork.infrastructure.storage import ObjectStore
    from keywork.realtime.notifier import Notifier
    from keywork.schemas.jobs import CreateJobRequest

logger = get_logger(__name__)

_CENTS = Decimal("0.01")


def _now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite, client input without offset) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def job_payload(job: Job) -> dict[str, Any]:
    """Compact job view pushed over WebSocket and webhooks."""
    return {
        "id": str(job.id),
        "title": job.title,
        "category": job.category,
        "latitude": job.latitude,
        "longitude": job.longitude,
        "address": job.address,
        "payment_amount": str(job.payment_amount),
        "payment_currency": job.payment_currency,
        "required_trust_level": job.required_trust_level,
        "status": job.status,
        "expires_at": job.expires_at.isoformat() if job.expires_at else None,
    }


@dataclass(frozen=True)
class ApprovalResult:
    job: Job
    transactions: list[Transaction]
    total_paid: Decimal
    escrow_released: bool


@dataclass(frozen=True)
class CancellationResult:
    job: Job
    refund_percent: int
    compensation: Decimal | None
    escrow_voided: bool


class JobService:
    """Manages the job lifecycle from posting to settlement."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerClient,
        storage: ObjectStore,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._ledger = ledger
        self._storage = storage
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._job_repo = JobRepository(session)
        self._deliverable_repo = DeliverableRepository(session)
        self._transaction_repo = TransactionRepository(session)
        self._message_repo = MessageRepository(session)
        self._worker_repo = WorkerRepository(session)
        self._agent_repo = AgentRepository(session)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    async def create_job(self, agent: AgentIdentity, request: CreateJobRequest) -> Job:
        """Fund a hold on the agent's balance and post the job as available.

        The hold comes first: no job row exists without committed funds. If
        the insert fails after a successful hold, the hold is voided in full.
        """
        settings = self._settings
        if request.payment_amount < settings.platform_min_payment:
            raise ValidationError(
                f"payment_amount must be at least {settings.platform_min_payment}"
            )
        expires_at = _as_utc(request.expires_at)
        if expires_at is None or expires_at <= _now():
            raise ValidationError("expires_at must be a valid future datetime")
        must_complete_by = _as_utc(request.must_complete_by)
        if must_complete_by is not None and must_complete_by <= expires_at:
            raise ValidationError("must_complete_by must be later than expires_at")

        idempotency_key = None
        if request.idempotency_key:
            idempotency_key = f"job_create:{agent.id}:{request.idempotency_key}"
            await claim_idempotency_key(idempotency_key)

        job_id = uuid.uuid4()
        amount = request.payment_amount.quantize(_CENTS)
        currency = request.payment_currency.upper()

        try:
            hold_id = await self._ledger.hold(
                amount, currency, reference=f"keywork_job_{job_id}", credential=agent.api_key
            )
        except KeyWorkError:
            if idempotency_key:
                await release_idempotency_key(idempotency_key)
            raise

        job = Job(
            id=job_id,
            agent_id=agent.id,
            title=request.title,
            description=request.description,
            category=request.category.value,
            latitude=request.latitude,
            longitude=request.longitude,
            address=request.address,
            radius_meters=request.radius_meters,
            required_trust_level=request.required_trust_level.value,
            required_deliverables=[kind.value for kind in request.required_deliverables],
            estimated_duration_minutes=request.estimated_duration_minutes,
            payment_amount=amount,
            payment_currency=currency,
            escrow_hold_id=hold_id,
            status=JobStatus.AVAILABLE.value,
            expires_at=expires_at,
            must_complete_by=must_complete_by,
        )
        try:
            agent_row = await self._agent_repo.upsert(agent.id)
            await self._job_repo.create(job)
            await self._agent_repo.increment_jobs_created(agent.id)
        except SQLAlchemyError:
            logger.exception("job.insert_failed", job_id=str(job_id), hold_id=hold_id)
            await self._ledger.void(hold_id, 100, agent.api_key)
            if idempotency_key:
                await release_idempotency_key(idempotency_key)
            raise

        logger.info(
            "job.created",
            job_id=str(job.id),
            agent_id=agent.id,
            amount=str(amount),
            required_trust=job.required_trust_level,
        )
        if self._notifier is not None:
            self._notifier.job_created(job_payload(job), min_trust=job.required_trust_level)
            self._notifier.webhook(
                agent_row.callback_url,
                agent.id,
                WebhookEvent.JOB_CREATED,
                str(job.id),
                job_payload(job),
            )
        return job

    # ------------------------------------------------------------------
    # Worker actions
    # ------------------------------------------------------------------

    async def accept_job(self, worker: WorkerIdentity, job_id: uuid.UUID) -> Job:
        """Claim an available job. The worker's tier must meet the job's."""
        job = await self._job_repo.get_by_id(job_id)
        if job is None:
            raise PreconditionFailedError(str(job_id))
        self._fire_transition(job, "accept")

        expires_at = _as_utc(job.expires_at)
        if expires_at is not None and expires_at <= _now():
            raise PreconditionFailedError(str(job_id), actual="expired")
        if not TrustLevel(worker.trust_level).satisfies(job.required_trust_level):
            raise UnauthorizedError(
                f"Job requires trust level {job.required_trust_level}; "
                f"worker is {worker.trust_level}"
            )

        job = await self._job_repo.mark_assigned(job.id, worker.id)
        await self._worker_repo.touch(worker.id)

        logger.info("job.accepted", job_id=str(job.id), worker_id=worker.id)
        await self._announce(job, WebhookEvent.JOB_ACCEPTED, {"worker_id": worker.id})
        return job

    async def start_job(self, worker: WorkerIdentity, job_id: uuid.UUID) -> Job:
        job = await self._get_assigned_or_raise(job_id, worker.id)
        self._fire_transition(job, "begin_work")

        job = await self._job_repo.mark_started(job.id)

        logger.info("job.started", job_id=str(job.id), worker_id=worker.id)
        await self._announce(
            job, WebhookEvent.JOB_STARTED, {"worker_id": worker.id}, worker_id=worker.id
        )
        return job

    async def upload_deliverable(
        self,
        worker: WorkerIdentity,
        job_id: uuid.UUID,
        *,
        kind: str,
        data: bytes,
        filename: str | None = None,
        media_type: str | None = None,
        caption: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        captured_at: datetime | None = None,
    ) -> Deliverable:
        """Store a file against an in-progress job and record it."""
        job = await self._get_assigned_or_raise(job_id, worker.id)
        if job.status != JobStatus.IN_PROGRESS:
            raise PreconditionFailedError(
                str(job_id), required=JobStatus.IN_PROGRESS.value, actual=job.status
            )
        try:
            deliverable_kind = DeliverableKind(kind)
        except ValueError:
            valid = ", ".join(k.value for k in DeliverableKind)
            raise ValidationError(f"kind must be one of: {valid}") from None
        if not data:
            raise ValidationError("Uploaded file is empty")

        deliverable_id = uuid.uuid4()
        key = deliverable_key(job.id, deliverable_id, filename)
        await self._storage.put(key, data, media_type)

        deliverable = await self._deliverable_repo.create(
            Deliverable(
                id=deliverable_id,
                job_id=job.id,
                worker_id=worker.id,
                kind=deliverable_kind.value,
                storage_key=key,
                size_bytes=len(data),
                media_type=media_type,
                caption=caption,
                latitude=latitude,
                longitude=longitude,
                captured_at=_as_utc(captured_at),
            )
        )

        logger.info(
            "job.deliverable_uploaded",
            job_id=str(job.id),
            deliverable_id=str(deliverable.id),
            kind=deliverable.kind,
            size_bytes=deliverable.size_bytes,
        )
        await self._webhook(
            job,
            WebhookEvent.DELIVERABLE_UPLOADED,
            {"deliverable_id": str(deliverable.id), "kind": deliverable.kind},
        )
        return deliverable

    async def complete_job(self, worker: WorkerIdentity, job_id: uuid.UUID) -> Job:
        """Submit the work for agent review. No money moves yet."""
        job = await self._get_assigned_or_raise(job_id, worker.id)
        self._fire_transition(job, "submit")

        if await self._deliverable_repo.count_for_job(job.id) == 0:
            raise ValidationError(
                "At least one deliverable must be uploaded before completing the job"
            )

        job = await self._job_repo.mark_submitted(job.id)

        logger.info("job.submitted", job_id=str(job.id), worker_id=worker.id)
        await self._announce(
            job, WebhookEvent.JOB_SUBMITTED, {"worker_id": worker.id}, worker_id=worker.id
        )
        return job

    # ------------------------------------------------------------------
    # Agent review
    # ------------------------------------------------------------------

    async def approve_job(
        self,
        agent: AgentIdentity,
        job_id: uuid.UUID,
        tip_amount: Decimal | None = None,
        tip_currency: str | None = None,
    ) -> ApprovalResult:
        """Complete a submitted job and pay the worker.

        The status write happens before any money moves, so a second
        approve loses the compare-and-set and never pays twice.
        """
        job = await self._get_owned_or_raise(job_id, agent.id)
        self._fire_transition(job, "approve")

        tip = (tip_amount or Decimal("0")).quantize(_CENTS)
        if tip < 0:
            raise ValidationError("tip_amount cannot be negative")
        if tip > 0 and tip_currency and tip_currency.upper() != job.payment_currency:
            raise ValidationError("tip_currency must match the job's payment currency")

        worker_id = job.worker_id
        job = await self._job_repo.mark_completed(job.id)

        released = False
        if job.escrow_hold_id:
            released = await self._ledger.release(job.escrow_hold_id, agent.api_key)

        base = Decimal(job.payment_amount).quantize(_CENTS)
        transactions = [
            await self._transaction_repo.record(
                worker_id,
                TransactionType.JOB_PAYMENT,
                base,
                job.payment_currency,
                job_id=job.id,
                description=f"Payment for job: {job.title}",
                metadata={"escrow_hold_id": job.escrow_hold_id, "released": released},
            )
        ]
        if tip > 0:
            transactions.append(
                await self._transaction_repo.record(
                    worker_id,
                    TransactionType.BONUS,
                    tip,
                    job.payment_currency,
                    job_id=job.id,
                    description=f"Tip for job: {job.title}",
                )
            )
        total = base + tip

        await self._worker_repo.add_earnings(worker_id, total, job_completed=True)
        await self._agent_repo.record_completion(agent.id, total)

        logger.info(
            "job.approved",
            job_id=str(job.id),
            worker_id=worker_id,
            total=str(total),
            escrow_released=released,
        )
        await self._announce(
            job,
            WebhookEvent.JOB_COMPLETED,
            {"worker_id": worker_id, "total_paid": str(total)},
            worker_id=worker_id,
        )
        return ApprovalResult(job, transactions, total, released)

    async def reject_job(
        self,
        agent: AgentIdentity,
        job_id: uuid.UUID,
        reason: str,
        keep_assigned: bool = True,
    ) -> Job:
        """Send submitted work back.

        keep_assigned=True returns the job to the same worker (in_progress).
        keep_assigned=False puts it back in the pool (available) and deletes
        every deliverable, so the original worker keeps no credit for it.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required")

        job = await self._get_owned_or_raise(job_id, agent.id)
        self._fire_transition(job, "request_revision" if keep_assigned else "release_to_pool")
        original_worker = job.worker_id

        # Written before the unassignment so the thread still reaches the worker.
        notice = await self._message_repo.create(
            Message(
                job_id=job.id,
                agent_id=agent.id,
                worker_id=original_worker,
                sender_role=SenderRole.AGENT.value,
                body=f"Job rejected: {reason}",
                kind=MessageKind.SYSTEM.value,
            )
        )

        if keep_assigned:
            job = await self._job_repo.mark_revision_requested(job.id, reason)
        else:
            deliverables = await self._deliverable_repo.list_for_job(job.id)
            job = await self._job_repo.mark_released(job.id, reason)
            await self._discard_deliverables(job, deliverables)

        logger.info(
            "job.rejected",
            job_id=str(job.id),
            worker_id=original_worker,
            keep_assigned=keep_assigned,
            rejection_count=job.rejection_count,
        )
        if self._notifier is not None:
            self._notifier.message_posted(
                message_payload(notice), original_worker, str(job.id)
            )
        await self._announce(
            job,
            WebhookEvent.JOB_REJECTED,
            {"worker_id": original_worker, "reason": reason, "keep_assigned": keep_assigned},
            worker_id=original_worker,
        )
        return job

    async def _discard_deliverables(
        self, job: Job, deliverables: list[Deliverable]
    ) -> None:
        for deliverable in deliverables:
            try:
                await self._storage.delete(deliverable.storage_key)
            except Exception as exc:
                logger.warning(
                    "job.deliverable_cleanup_failed",
                    job_id=str(job.id),
                    storage_key=deliverable.storage_key,
                    error=str(exc),
                )
        removed = await self._deliverable_repo.delete_for_job(job.id)
        logger.info("job.deliverables_removed", job_id=str(job.id), count=removed)

    async def cancel_job(
        self,
        agent: AgentIdentity,
        job_id: uuid.UUID,
        reason: str | None = None,
    ) -> CancellationResult:
        """Withdraw a job that has not been submitted.

        available/assigned: the hold is voided with a full refund.
        in_progress: the worker is compensated for time spent and the agent
        is refunded the remainder of the hold.
        """
        job = await self._get_owned_or_raise(job_id, agent.id)
        previous = JobStatus(job.status)
        try:
            JobStateMachine(current_status=job.status).cancel()
        except TransitionNotAllowed as err:
            detail = (
                "submitted jobs must be approved or rejected first"
                if previous == JobStatus.SUBMITTED
                else "job is already closed"
            )
            raise InvalidTransitionError(job.status, "cancel", detail) from err

        worker_id = job.worker_id
        job = await self._job_repo.mark_cancelled(job.id, previous)

        compensation: Decimal | None = None
        refund_percent = 100
        if previous == JobStatus.IN_PROGRESS and worker_id:
            refund_percent = self._settings.refund_percent_on_in_progress_cancel
            ratio = self._settings.cancellation_compensation_ratio
            compensation = (Decimal(job.payment_amount) * ratio).quantize(_CENTS)

        voided = False
        if job.escrow_hold_id:
            voided = await self._ledger.void(job.escrow_hold_id, refund_percent, agent.api_key)

        if compensation is not None:
            await self._transaction_repo.record(
                worker_id,
                TransactionType.JOB_PAYMENT,
                compensation,
                job.payment_currency,
                job_id=job.id,
                description=f"Cancellation compensation for job: {job.title}",
                metadata={"kind": "cancellation_compensation", "ratio": str(ratio)},
            )
            await self._worker_repo.add_earnings(worker_id, compensation, job_completed=False)

        if worker_id:
            body = "Job cancelled by agent"
            if reason:
                body = f"{body}: {reason}"
            notice = await self._message_repo.create(
                Message(
                    job_id=job.id,
                    agent_id=agent.id,
                    worker_id=worker_id,
                    sender_role=SenderRole.AGENT.value,
                    body=body,
                    kind=MessageKind.SYSTEM.value,
                )
            )
            if self._notifier is not None:
                self._notifier.message_posted(message_payload(notice), worker_id, str(job.id))

        logger.info(
            "job.cancelled",
            job_id=str(job.id),
            previous_status=previous.value,
            refund_percent=refund_percent,
            compensation=str(compensation) if compensation is not None else None,
            escrow_voided=voided,
        )
        await self._announce(
            job,
            WebhookEvent.JOB_CANCELLED,
            {"reason": reason, "refund_percent": refund_percent},
            worker_id=worker_id,
        )
        return CancellationResult(job, refund_percent, compensation, voided)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_job_for_agent(self, agent: AgentIdentity, job_id: uuid.UUID) -> Job:
        job = await self._job_repo.get_for_agent(job_id, agent.id)
        if job is None:
            raise NotFoundError("Job", str(job_id))
        return job

    async def get_job_for_worker(self, worker: WorkerIdentity, job_id: uuid.UUID) -> Job:
        job = await self._job_repo.get_for_worker(job_id, worker.id)
        if job is None:
            raise NotFoundError("Job", str(job_id))
        return job

    async def job_status(self, agent: AgentIdentity, job_id: uuid.UUID) -> dict:
        """Status with the state machine events that can fire next."""
        job = await self.get_job_for_agent(agent, job_id)
        sm = JobStateMachine(current_status=job.status)
        return {
            "job_id": job.id,
            "status": job.status,
            "worker_id": job.worker_id,
            "rejection_count": job.rejection_count,
            "allowed_events": sm.get_allowed_events(),
        }

    async def list_agent_jobs(
        self,
        agent: AgentIdentity,
        status: JobStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        return await self._job_repo.list_for_agent(
            agent.id, status=status, limit=self._clamp(limit), offset=max(0, offset)
        )

    async def list_available_jobs(
        self,
        worker: WorkerIdentity,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_m: float | None = None,
        category: str | None = None,
        limit: int | None = None,
    ) -> list[tuple[Job, float | None]]:
        return await self._job_repo.list_available(
            worker.trust_level,
            latitude=latitude,
            longitude=longitude,
            radius_m=radius_m or self._settings.default_search_radius_meters,
            category=category,
            limit=self._clamp(limit),
        )

    async def list_active_jobs(self, worker: WorkerIdentity) -> list[Job]:
        return await self._job_repo.list_for_worker_active(worker.id)

    async def list_completed_jobs(
        self, worker: WorkerIdentity, limit: int | None = None, offset: int = 0
    ) -> list[Job]:
        return await self._job_repo.list_for_worker_completed(
            worker.id, limit=self._clamp(limit), offset=max(0, offset)
        )

    async def list_deliverables(
        self, agent: AgentIdentity, job_id: uuid.UUID
    ) -> list[Deliverable]:
        job = await self.get_job_for_agent(agent, job_id)
        return await self._deliverable_repo.list_for_job(job.id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _clamp(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self._settings.job_list_default_limit
        return min(limit, self._settings.job_list_max_limit)

    async def _get_owned_or_raise(self, job_id: uuid.UUID, agent_id: str) -> Job:
        job = await self._job_repo.get_for_agent(job_id, agent_id)
        if job is None:
            raise PreconditionFailedError(str(job_id))
        return job

    async def _get_assigned_or_raise(self, job_id: uuid.UUID, worker_id: str) -> Job:
        job = await self._job_repo.get_by_id(job_id)
        if job is None or job.worker_id != worker_id:
            raise PreconditionFailedError(str(job_id))
        return job

    def _fire_transition(self, job: Job, event_name: str) -> None:
        """Validate a transition against the job's stored status.

        Raises PreconditionFailedError if the job is not in a status the
        event can fire from.
        """
        sm = JobStateMachine(current_status=job.status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as err:
            required = tuple(s.value for s in REQUIRED_STATUS[event_name])
            raise PreconditionFailedError(
                str(job.id), required=required, actual=job.status
            ) from err

    async def _announce(
        self,
        job: Job,
        event: WebhookEvent,
        data: dict[str, Any],
        worker_id: str | None = None,
    ) -> None:
        if self._notifier is not None:
            self._notifier.job_updated(str(job.id), job.status, worker_id)
        await self._webhook(job, event, {"status": job.status, **data})

    async def _webhook(self, job: Job, event: WebhookEvent, data: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        agent = await self._agent_repo.get_by_id(job.agent_id)
        if agent is not None:
            self._notifier.webhook(agent.callback_url, agent.id, event, str(job.id), data)
