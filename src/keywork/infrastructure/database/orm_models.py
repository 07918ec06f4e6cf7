"""SQLAlchemy 2.0 ORM models for the KeyWork marketplace.

Seven tables:
    1. workers          : Humans who take jobs; id is issued by the auth service.
    2. agents           : Job creators; id is the Keeper agent id.
    3. jobs             : Funded, location-bound tasks and their lifecycle.
    4. job_deliverables : Media uploaded against an in-progress job.
    5. transactions     : Append-only worker money movements.
    6. messages         : Per-job conversation between agent and worker.
    7. reviews          : One agent review per completed job.

Design decisions:
    - UUID primary keys for records we mint; string ids for identities
      that come from outside (workers, agents).
    - Decimal for money (Numeric(12, 2)), never float.
    - JSON columns (JSONB on PostgreSQL) for skills and deliverable lists.
    - CHECK constraints on enum columns, built from the domain enums so the
      database and the code cannot drift apart.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from keywork.domain.enums import (
    DeliverableKind,
    JobCategory,
    JobStatus,
    MessageKind,
    SenderRole,
    TransactionStatus,
    TransactionType,
    TrustLevel,
)

JsonColumn = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(12, 2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _one_of(column: str, values: type[enum.StrEnum], name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{member.value}'" for member in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ---------------------------------------------------------------------------
# 1. workers
# ---------------------------------------------------------------------------
class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    trust_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TrustLevel.BASIC.value
    )

    # --- Location (last reported) ---
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    skills: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # --- Reputation and earnings ---
    jobs_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00")
    )
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    last_active: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        _one_of("trust_level", TrustLevel, "ck_worker_trust_level"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_worker_rating_range"),
        Index("idx_worker_available", "available"),
        Index("idx_worker_location", "latitude", "longitude"),
    )

    def __repr__(self) -> str:
        return f"<Worker id={self.id} trust={self.trust_level} rating={self.rating}>"


# ---------------------------------------------------------------------------
# 2. agents
# ---------------------------------------------------------------------------
class Agent(Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    callback_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Webhook target for job lifecycle events",
    )
    jobs_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jobs_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0.00")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Agent id={self.id} jobs_created={self.jobs_created}>"


# ---------------------------------------------------------------------------
# 3. jobs
# ---------------------------------------------------------------------------
class Job(Base):
    """A funded task pinned to a location.

    ``status`` is only ever written through JobRepository.transition, a
    compare-and-set on the current value.
    """

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.id"), nullable=False
    )

    # --- Task definition ---
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)

    # --- Location ---
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    radius_meters: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # --- Requirements ---
    required_trust_level: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TrustLevel.BASIC.value
    )
    required_deliverables: Mapped[list] = mapped_column(
        JsonColumn, nullable=False, default=list
    )
    estimated_duration_minutes: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )

    # --- Payment ---
    payment_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="USD"
    )
    escrow_hold_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="Keeper hold backing the payment",
    )

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.AVAILABLE.value
    )
    worker_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("workers.id"), nullable=True
    )
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    must_complete_by: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Review outcome ---
    rejection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        _one_of("status", JobStatus, "ck_job_valid_status"),
        _one_of("category", JobCategory, "ck_job_valid_category"),
        _one_of("required_trust_level", TrustLevel, "ck_job_trust_level"),
        CheckConstraint("payment_amount > 0", name="ck_job_positive_amount"),
        CheckConstraint("radius_meters > 0", name="ck_job_positive_radius"),
        Index("idx_job_status", "status"),
        Index("idx_job_agent", "agent_id"),
        Index("idx_job_worker", "worker_id"),
        Index("idx_job_location", "latitude", "longitude"),
        Index("idx_job_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} status={self.status} "
            f"amount={self.payment_amount} {self.payment_currency}>"
        )


# ---------------------------------------------------------------------------
# 4. job_deliverables
# ---------------------------------------------------------------------------
class Deliverable(Base):
    __tablename__ = "job_deliverables"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
    )
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    storage_key: Mapped[str] = mapped_column(
        String(500), nullable=False, comment="Object store key of the uploaded file"
    )
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    media_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Capture metadata reported by the device ---
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    captured_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        _one_of("kind", DeliverableKind, "ck_deliverable_kind"),
        Index("idx_deliverable_job", "job_id"),
    )

    def __repr__(self) -> str:
        return f"<Deliverable id={self.id} job={self.job_id} kind={self.kind}>"


# ---------------------------------------------------------------------------
# 5. transactions (append-only)
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A worker money movement. Rows are inserted, never updated or deleted."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("jobs.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JsonColumn, nullable=True, default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        _one_of("type", TransactionType, "ck_transaction_type"),
        _one_of("status", TransactionStatus, "ck_transaction_status"),
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        Index("idx_transaction_user", "user_id"),
        Index("idx_transaction_job", "job_id"),
        Index("idx_transaction_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} type={self.type} "
            f"amount={self.amount} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 6. messages
# ---------------------------------------------------------------------------
class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id"), nullable=False
    )
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="The worker this conversation is with (kept after reassignment)",
    )
    sender_role: Mapped[str] = mapped_column(String(10), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(
        String(10), nullable=False, default=MessageKind.TEXT.value
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        _one_of("sender_role", SenderRole, "ck_message_sender_role"),
        _one_of("kind", MessageKind, "ck_message_kind"),
        Index("idx_message_job_created", "job_id", "created_at"),
        Index("idx_message_worker", "worker_id"),
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} job={self.job_id} from={self.sender_role}>"


# ---------------------------------------------------------------------------
# 7. reviews
# ---------------------------------------------------------------------------
class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id"), nullable=False, unique=True
    )
    reviewer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workers.id"), nullable=False
    )

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    quality_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    speed_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    communication_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    review_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
        Index("idx_review_worker", "worker_id"),
    )

    def __repr__(self) -> str:
        return f"<Review job={self.job_id} worker={self.worker_id} rating={self.rating}>"
