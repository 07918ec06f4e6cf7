"""Repository classes for database access.

Repositories encapsulate all SQL queries and give the service layer a
narrow interface. They accept an AsyncSession and never manage their own
transactions; the caller commits or rolls back.

Counters (earnings, ratings, job totals) are updated with single UPDATE
statements so concurrent requests cannot lose increments. The job status
column is only written by ``JobRepository.transition``, a compare-and-set
on the expected current status.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, delete, func, or_, select, update

from keywork.domain.enums import (
    JobStatus,
    SenderRole,
    TransactionStatus,
    TrustLevel,
)
from keywork.domain.exceptions import PreconditionFailedError
from keywork.domain.geo import bounding_box, haversine_meters
from keywork.infrastructure.database.orm_models import (
    Agent,
    Deliverable,
    Job,
    Message,
    Review,
    Transaction,
    Worker,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.enums import TransactionType

_CENTS = Decimal("0.01")

_ACTIVE_STATUSES = (
    JobStatus.ASSIGNED.value,
    JobStatus.IN_PROGRESS.value,
    JobStatus.SUBMITTED.value,
)


def _now() -> datetime:
    return datetime.now(UTC)


def _within_box(model: Any, latitude: float, longitude: float, radius_m: float) -> list:
    """SQL pre-filter for rows whose coordinates fall inside the radius' box."""
    min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_m)
    clauses = [model.latitude.between(min_lat, max_lat)]
    # A box that wraps the antimeridian is left to the exact distance check.
    if min_lon >= -180.0 and max_lon <= 180.0:
        clauses.append(model.longitude.between(min_lon, max_lon))
    return clauses


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------
class JobRepository:
    """Data access for jobs, including the compare-and-set status writes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, job: Job) -> Job:
        self._session.add(job)
        await self._session.flush()
        return job

    async def get_by_id(self, job_id: uuid.UUID) -> Job | None:
        result = await self._session.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one_or_none()

    async def get_for_agent(self, job_id: uuid.UUID, agent_id: str) -> Job | None:
        """Fetch a job only if ``agent_id`` created it."""
        result = await self._session.execute(
            select(Job).where(Job.id == job_id, Job.agent_id == agent_id)
        )
        return result.scalar_one_or_none()

    async def get_for_worker(self, job_id: uuid.UUID, worker_id: str) -> Job | None:
        """Fetch a job the worker is assigned to, or any job still open for discovery."""
        result = await self._session.execute(
            select(Job).where(
                Job.id == job_id,
                or_(
                    Job.worker_id == worker_id,
                    Job.status == JobStatus.AVAILABLE.value,
                ),
            )
        )
        return result.scalar_one_or_none()

    async def list_for_agent(
        self,
        agent_id: str,
        status: JobStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """Page through an agent's jobs, newest first. Returns (jobs, total)."""
        filters = [Job.agent_id == agent_id]
        if status is not None:
            filters.append(Job.status == status.value)

        total = await self._session.scalar(
            select(func.count()).select_from(Job).where(*filters)
        )
        result = await self._session.execute(
            select(Job)
            .where(*filters)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def list_available(
        self,
        trust_level: TrustLevel | str,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_m: float = 10_000.0,
        category: str | None = None,
        limit: int = 50,
    ) -> list[tuple[Job, float | None]]:
        """Open jobs a worker at ``trust_level`` may take.

        With coordinates, only jobs within ``radius_m`` (great-circle) are
        returned, nearest first, each paired with its distance in meters.
        Without coordinates, jobs come newest first with a None distance; jobs
        carry no rating, so the rating order of WorkerRepository.search does
        not apply here.
        """
        tier = TrustLevel(trust_level)
        eligible = [t.value for t in TrustLevel if tier.satisfies(t)]
        now = _now()

        stmt = select(Job).where(
            Job.status == JobStatus.AVAILABLE.value,
            or_(Job.expires_at.is_(None), Job.expires_at > now),
            Job.required_trust_level.in_(eligible),
        )
        if category is not None:
            stmt = stmt.where(Job.category == category)

        if latitude is None or longitude is None:
            result = await self._session.execute(
                stmt.order_by(Job.created_at.desc()).limit(limit)
            )
            return [(job, None) for job in result.scalars().all()]

        stmt = stmt.where(*_within_box(Job, latitude, longitude, radius_m))
        result = await self._session.execute(stmt)

        nearby: list[tuple[Job, float | None]] = []
        for job in result.scalars().all():
            distance = haversine_meters(latitude, longitude, job.latitude, job.longitude)
            if distance <= radius_m:
                nearby.append((job, distance))
        nearby.sort(key=lambda pair: pair[1])
        return nearby[:limit]

    async def list_for_worker_active(self, worker_id: str) -> list[Job]:
        result = await self._session.execute(
            select(Job)
            .where(Job.worker_id == worker_id, Job.status.in_(_ACTIVE_STATUSES))
            .order_by(Job.assigned_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_worker_completed(
        self, worker_id: str, limit: int = 50, offset: int = 0
    ) -> list[Job]:
        result = await self._session.execute(
            select(Job)
            .where(
                Job.worker_id == worker_id,
                Job.status == JobStatus.COMPLETED.value,
            )
            .order_by(Job.completed_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def sum_submitted_for_worker(self, worker_id: str) -> Decimal:
        """Total payment of the worker's jobs awaiting agent review."""
        total = await self._session.scalar(
            select(func.coalesce(func.sum(Job.payment_amount), 0)).where(
                Job.worker_id == worker_id,
                Job.status == JobStatus.SUBMITTED.value,
            )
        )
        return Decimal(str(total or 0)).quantize(_CENTS)

    # --- Compare-and-set status writes ---

    async def transition(
        self,
        job_id: uuid.UUID,
        expected_status: JobStatus,
        new_status: JobStatus,
        **fields: Any,
    ) -> Job:
        """Move a job from ``expected_status`` to ``new_status`` atomically.

        Issues ``UPDATE jobs SET ... WHERE id = :id AND status = :expected``.
        If no row matched (the job is gone or another request moved it
        first) nothing is written and PreconditionFailedError is raised.
        """
        result = await self._session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == expected_status.value)
            .values(status=new_status.value, **fields)
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            raise PreconditionFailedError(
                str(job_id), required=expected_status.value
            )

        job = await self._session.get(Job, job_id, populate_existing=True)
        if job is None:  # pragma: no cover - row matched a moment ago
            raise PreconditionFailedError(str(job_id))
        return job

    async def mark_assigned(self, job_id: uuid.UUID, worker_id: str) -> Job:
        return await self.transition(
            job_id,
            JobStatus.AVAILABLE,
            JobStatus.ASSIGNED,
            worker_id=worker_id,
            assigned_at=_now(),
        )

    async def mark_started(self, job_id: uuid.UUID) -> Job:
        return await self.transition(
            job_id, JobStatus.ASSIGNED, JobStatus.IN_PROGRESS, started_at=_now()
        )

    async def mark_submitted(self, job_id: uuid.UUID) -> Job:
        return await self.transition(
            job_id, JobStatus.IN_PROGRESS, JobStatus.SUBMITTED, submitted_at=_now()
        )

    async def mark_completed(self, job_id: uuid.UUID) -> Job:
        return await self.transition(
            job_id, JobStatus.SUBMITTED, JobStatus.COMPLETED, completed_at=_now()
        )

    async def mark_revision_requested(self, job_id: uuid.UUID, reason: str) -> Job:
        """Send a submitted job back to its worker for another attempt."""
        return await self.transition(
            job_id,
            JobStatus.SUBMITTED,
            JobStatus.IN_PROGRESS,
            submitted_at=None,
            rejection_count=Job.rejection_count + 1,
            last_rejection_reason=reason,
        )

    async def mark_released(self, job_id: uuid.UUID, reason: str) -> Job:
        """Return a submitted job to the open pool, unassigning its worker."""
        return await self.transition(
            job_id,
            JobStatus.SUBMITTED,
            JobStatus.AVAILABLE,
            worker_id=None,
            assigned_at=None,
            started_at=None,
            submitted_at=None,
            rejection_count=Job.rejection_count + 1,
            last_rejection_reason=reason,
        )

    async def mark_cancelled(self, job_id: uuid.UUID, expected_status: JobStatus) -> Job:
        return await self.transition(job_id, expected_status, JobStatus.CANCELLED)


# ---------------------------------------------------------------------------
# Deliverables
# ---------------------------------------------------------------------------
class DeliverableRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, deliverable: Deliverable) -> Deliverable:
        self._session.add(deliverable)
        await self._session.flush()
        return deliverable

    async def list_for_job(self, job_id: uuid.UUID) -> list[Deliverable]:
        result = await self._session.execute(
            select(Deliverable)
            .where(Deliverable.job_id == job_id)
            .order_by(Deliverable.created_at.asc())
        )
        return list(result.scalars().all())

    async def count_for_job(self, job_id: uuid.UUID) -> int:
        count = await self._session.scalar(
            select(func.count()).select_from(Deliverable).where(
                Deliverable.job_id == job_id
            )
        )
        return int(count or 0)

    async def delete_for_job(self, job_id: uuid.UUID) -> int:
        """Remove every deliverable row of a job. Returns the number deleted."""
        result = await self._session.execute(
            delete(Deliverable)
            .where(Deliverable.job_id == job_id)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)


# ---------------------------------------------------------------------------
# Transactions (append-only)
# ---------------------------------------------------------------------------
class TransactionRepository:
    """Data access for worker transactions. Insert and read only."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        user_id: str,
        type_: TransactionType,
        amount: Decimal,
        currency: str,
        *,
        job_id: uuid.UUID | None = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> Transaction:
        txn = Transaction(
            user_id=user_id,
            type=type_.value,
            amount=amount,
            currency=currency,
            job_id=job_id,
            status=status.value,
            description=description,
            metadata_json=metadata,
            completed_at=_now() if status == TransactionStatus.COMPLETED else None,
        )
        self._session.add(txn)
        await self._session.flush()
        return txn

    async def list_for_user(
        self,
        user_id: str,
        type_: TransactionType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        filters = [Transaction.user_id == user_id]
        if type_ is not None:
            filters.append(Transaction.type == type_.value)

        total = await self._session.scalar(
            select(func.count()).select_from(Transaction).where(*filters)
        )
        result = await self._session.execute(
            select(Transaction)
            .where(*filters)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def list_for_job(self, job_id: uuid.UUID) -> list[Transaction]:
        result = await self._session.execute(
            select(Transaction)
            .where(Transaction.job_id == job_id)
            .order_by(Transaction.created_at.asc())
        )
        return list(result.scalars().all())

    async def sum_for_user(
        self,
        user_id: str,
        types: Iterable[TransactionType],
        status: TransactionStatus,
    ) -> Decimal:
        total = await self._session.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == user_id,
                Transaction.type.in_([t.value for t in types]),
                Transaction.status == status.value,
            )
        )
        return Decimal(str(total or 0)).quantize(_CENTS)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, message: Message) -> Message:
        self._session.add(message)
        await self._session.flush()
        return message

    async def list_for_job(
        self,
        job_id: uuid.UUID,
        worker_id: str | None = None,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Newest ``limit`` messages older than ``before``, oldest first.

        ``worker_id`` narrows the thread to one worker's conversation, which
        matters once a job has been released and reassigned.
        """
        stmt = select(Message).where(Message.job_id == job_id)
        if worker_id is not None:
            stmt = stmt.where(Message.worker_id == worker_id)
        if before is not None:
            stmt = stmt.where(Message.created_at < before)

        result = await self._session.execute(
            stmt.order_by(Message.created_at.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def mark_read(
        self,
        job_id: uuid.UUID,
        reader_role: SenderRole,
        worker_id: str | None = None,
    ) -> int:
        """Mark unread messages from the other party as read. Returns the count."""
        filters = [
            Message.job_id == job_id,
            Message.sender_role != reader_role.value,
            Message.is_read.is_(False),
        ]
        if worker_id is not None:
            filters.append(Message.worker_id == worker_id)

        result = await self._session.execute(
            update(Message)
            .where(*filters)
            .values(is_read=True, read_at=_now())
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def unread_count_for_worker(self, worker_id: str) -> int:
        count = await self._session.scalar(
            select(func.count()).select_from(Message).where(
                Message.worker_id == worker_id,
                Message.sender_role == SenderRole.AGENT.value,
                Message.is_read.is_(False),
            )
        )
        return int(count or 0)

    async def conversations_for_worker(self, worker_id: str) -> list[dict[str, Any]]:
        """One entry per job the worker has messages on, most recent first."""
        unread = func.sum(
            case(
                (
                    and_(
                        Message.sender_role == SenderRole.AGENT.value,
                        Message.is_read.is_(False),
                    ),
                    1,
                ),
                else_=0,
            )
        )
        result = await self._session.execute(
            select(
                Message.job_id,
                Job.title,
                Job.status,
                Job.agent_id,
                func.max(Message.created_at).label("last_message_at"),
                unread.label("unread_count"),
            )
            .join(Job, Job.id == Message.job_id)
            .where(Message.worker_id == worker_id)
            .group_by(Message.job_id, Job.title, Job.status, Job.agent_id)
            .order_by(func.max(Message.created_at).desc())
        )

        conversations = []
        for row in result.all():
            last = await self._session.scalar(
                select(Message)
                .where(Message.job_id == row.job_id, Message.worker_id == worker_id)
                .order_by(Message.created_at.desc())
                .limit(1)
            )
            conversations.append(
                {
                    "job_id": row.job_id,
                    "job_title": row.title,
                    "job_status": row.status,
                    "agent_id": row.agent_id,
                    "last_message": last.body if last is not None else None,
                    "last_message_at": row.last_message_at,
                    "unread_count": int(row.unread_count or 0),
                }
            )
        return conversations


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
class ReviewRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, review: Review) -> Review:
        self._session.add(review)
        await self._session.flush()
        return review

    async def get_by_job(self, job_id: uuid.UUID) -> Review | None:
        result = await self._session.execute(
            select(Review).where(Review.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def list_for_worker(self, worker_id: str, limit: int = 20) -> list[Review]:
        result = await self._session.execute(
            select(Review)
            .where(Review.worker_id == worker_id)
            .order_by(Review.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------
class WorkerRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, worker: Worker) -> Worker:
        self._session.add(worker)
        await self._session.flush()
        return worker

    async def get_by_id(self, worker_id: str) -> Worker | None:
        result = await self._session.execute(
            select(Worker).where(Worker.id == worker_id)
        )
        return result.scalar_one_or_none()

    async def _reload(self, worker_id: str) -> Worker | None:
        return await self._session.get(Worker, worker_id, populate_existing=True)

    async def touch(self, worker_id: str) -> None:
        await self._session.execute(
            update(Worker)
            .where(Worker.id == worker_id)
            .values(last_active=_now())
            .execution_options(synchronize_session=False)
        )

    async def add_earnings(
        self, worker_id: str, amount: Decimal, *, job_completed: bool
    ) -> Worker | None:
        """Credit ``amount`` to total_earned, and count a completed job if asked."""
        values: dict[str, Any] = {"total_earned": Worker.total_earned + amount}
        if job_completed:
            values["jobs_completed"] = Worker.jobs_completed + 1
        await self._session.execute(
            update(Worker)
            .where(Worker.id == worker_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return await self._reload(worker_id)

    async def apply_rating(self, worker_id: str, rating: int) -> Worker | None:
        """Fold one rating into the running average.

        new_avg = (old_avg * old_count + rating) / (old_count + 1); both SET
        expressions read the pre-update row.
        """
        await self._session.execute(
            update(Worker)
            .where(Worker.id == worker_id)
            .values(
                rating=(Worker.rating * Worker.rating_count + float(rating))
                / (Worker.rating_count + 1),
                rating_count=Worker.rating_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._reload(worker_id)

    async def search(
        self,
        skills: list[str] | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        radius_km: float = 50.0,
        min_trust: TrustLevel | str = TrustLevel.BASIC,
        min_rating: float = 0.0,
        limit: int = 20,
        offset: int = 0,
    ) -> list[tuple[Worker, float | None]]:
        """Available workers matching the filters.

        Nearest first when coordinates are supplied, otherwise by rating
        and then completed-job count. ``skills`` matches workers having
        any of the listed skills (case-insensitive).
        """
        stmt = select(Worker).where(
            Worker.available.is_(True),
            Worker.latitude.is_not(None),
            Worker.longitude.is_not(None),
            Worker.trust_level.in_([t.value for t in TrustLevel.at_least(min_trust)]),
            Worker.rating >= min_rating,
        )
        has_location = latitude is not None and longitude is not None
        radius_m = radius_km * 1000.0
        if has_location:
            stmt = stmt.where(*_within_box(Worker, latitude, longitude, radius_m))
        else:
            stmt = stmt.order_by(Worker.rating.desc(), Worker.jobs_completed.desc())

        wanted = {s.strip().lower() for s in skills or [] if s.strip()}
        result = await self._session.execute(stmt)

        matches: list[tuple[Worker, float | None]] = []
        for worker in result.scalars().all():
            if wanted and not wanted & {s.lower() for s in worker.skills or []}:
                continue
            distance = None
            if has_location:
                distance = haversine_meters(
                    latitude, longitude, worker.latitude, worker.longitude
                )
                if distance > radius_m:
                    continue
            matches.append((worker, distance))

        if has_location:
            matches.sort(key=lambda pair: pair[1])
        return matches[offset : offset + limit]

    async def skill_counts(self) -> list[tuple[str, int]]:
        """Every skill offered by an available worker, most common first."""
        result = await self._session.execute(
            select(Worker.skills).where(Worker.available.is_(True))
        )
        counts: dict[str, int] = {}
        for skills in result.scalars().all():
            for skill in skills or []:
                counts[skill] = counts.get(skill, 0) + 1
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------
class AgentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, agent_id: str) -> Agent | None:
        return await self._session.get(Agent, agent_id)

    async def upsert(self, agent_id: str, callback_url: str | None = None) -> Agent:
        """Create the agent row on first sight; update callback_url if given."""
        agent = await self.get_by_id(agent_id)
        if agent is None:
            agent = Agent(id=agent_id, callback_url=callback_url)
            self._session.add(agent)
        elif callback_url is not None:
            agent.callback_url = callback_url
        await self._session.flush()
        return agent

    async def increment_jobs_created(self, agent_id: str) -> None:
        await self._session.execute(
            update(Agent)
            .where(Agent.id == agent_id)
            .values(jobs_created=Agent.jobs_created + 1)
            .execution_options(synchronize_session=False)
        )

    async def record_completion(self, agent_id: str, amount: Decimal) -> None:
        await self._session.execute(
            update(Agent)
            .where(Agent.id == agent_id)
            .values(
                jobs_completed=Agent.jobs_completed + 1,
                total_spent=Agent.total_spent + amount,
            )
            .execution_options(synchronize_session=False)
        )
