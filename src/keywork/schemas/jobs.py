"""Pydantic schemas for the job lifecycle API.

Request bodies are validated here before they reach the services;
responses are built from ORM rows via ``from_attributes``.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from keywork.domain.enums import DeliverableKind, JobCategory, TrustLevel

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateJobRequest(BaseModel):
    """Request body for an agent posting a new job."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    category: JobCategory
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str | None = Field(default=None, max_length=500)
    radius_meters: int = Field(
        default=100,
        gt=0,
        le=50_000,
        description="How close to the location the worker must be",
    )
    required_trust_level: TrustLevel = TrustLevel.BASIC
    required_deliverables: list[DeliverableKind] = Field(
        default_factory=lambda: [DeliverableKind.PHOTO],
    )
    estimated_duration_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    payment_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        examples=["15.00"],
    )
    payment_currency: str = Field(default="USD", min_length=3, max_length=3)
    expires_at: datetime = Field(
        ..., description="Deadline for a worker to accept the job (must be in the future)"
    )
    must_complete_by: datetime | None = None
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Optional key to prevent posting (and funding) the same job twice",
    )


class ApproveJobRequest(BaseModel):
    tip_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    tip_currency: str | None = Field(default=None, min_length=3, max_length=3)


class RejectJobRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    keep_assigned: bool = Field(
        default=True,
        description="Send the job back to the same worker (True) or release it to the pool",
    )


class CancelJobRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class SubmitReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    quality_rating: int | None = Field(default=None, ge=1, le=5)
    speed_rating: int | None = Field(default=None, ge=1, le=5)
    communication_rating: int | None = Field(default=None, ge=1, le=5)
    review_text: str | None = Field(default=None, max_length=2000)


class RegisterAgentRequest(BaseModel):
    callback_url: str | None = Field(
        default=None,
        max_length=500,
        pattern=r"^https?://",
        description="Receives signed job lifecycle webhooks",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    agent_id: str
    title: str
    description: str
    category: str
    latitude: float
    longitude: float
    address: str | None
    radius_meters: int
    required_trust_level: str
    required_deliverables: list[str]
    estimated_duration_minutes: int | None
    payment_amount: Decimal
    payment_currency: str
    escrow_hold_id: str | None
    status: str
    worker_id: str | None
    assigned_at: datetime | None
    started_at: datetime | None
    submitted_at: datetime | None
    completed_at: datetime | None
    expires_at: datetime | None
    must_complete_by: datetime | None
    rejection_count: int
    last_rejection_reason: str | None
    created_at: datetime
    updated_at: datetime


class NearbyJobResponse(JobResponse):
    distance_meters: float | None = None


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class NearbyJobListResponse(BaseModel):
    jobs: list[NearbyJobResponse]
    count: int


class JobStatusResponse(BaseModel):
    job_id: uuid.UUID
    status: str
    worker_id: str | None
    rejection_count: int
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class DeliverableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    worker_id: str
    kind: str
    storage_key: str
    size_bytes: int
    media_type: str | None
    caption: str | None
    latitude: float | None
    longitude: float | None
    captured_at: datetime | None
    verified: bool
    created_at: datetime


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    type: str
    amount: Decimal
    currency: str
    job_id: uuid.UUID | None
    status: str
    description: str | None
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime
    completed_at: datetime | None


class ApproveJobResponse(BaseModel):
    job: JobResponse
    transactions: list[TransactionResponse]
    total_paid: Decimal
    escrow_released: bool


class CancelJobResponse(BaseModel):
    job: JobResponse
    refund_percent: int
    compensation: Decimal | None = None
    escrow_voided: bool


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    reviewer_id: str
    worker_id: str
    rating: int
    quality_rating: int | None
    speed_rating: int | None
    communication_rating: int | None
    review_text: str | None
    created_at: datetime


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    callback_url: str | None
    jobs_created: int
    jobs_completed: int
    total_spent: Decimal
    balance: Decimal | None = None
