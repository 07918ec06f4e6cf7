"""Domain enumerations for the KeyWork marketplace.

These enums are the canonical values persisted in the database and sent
over the wire. They are framework-agnostic (no SQLAlchemy, no FastAPI).
"""

from __future__ import annotations

import enum


class JobStatus(enum.StrEnum):
    """Lifecycle states of a job.

    Transitions are enforced by JobStateMachine (domain/state_machine.py)
    and by the compare-and-set update in JobRepository.transition.
    """

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED)


class TrustLevel(enum.StrEnum):
    """Worker verification tier, ordered basic < verified < kyc_gold."""

    BASIC = "basic"
    VERIFIED = "verified"
    KYC_GOLD = "kyc_gold"

    @property
    def rank(self) -> int:
        return _TRUST_ORDER.index(self)

    def satisfies(self, required: TrustLevel | str) -> bool:
        """True if a worker at this tier may take a job requiring ``required``."""
        return self.rank >= TrustLevel(required).rank

    @classmethod
    def at_least(cls, minimum: TrustLevel | str) -> list[TrustLevel]:
        """All tiers equal to or above ``minimum``."""
        floor = cls(minimum).rank
        return [tier for tier in _TRUST_ORDER if tier.rank >= floor]


_TRUST_ORDER = (TrustLevel.BASIC, TrustLevel.VERIFIED, TrustLevel.KYC_GOLD)


class JobCategory(enum.StrEnum):
    PHOTO_SURVEY = "photo_survey"
    VERIFICATION = "verification"
    TRANSCRIPTION = "transcription"
    DELIVERY = "delivery"
    INSPECTION = "inspection"
    DATA_COLLECTION = "data_collection"
    OTHER = "other"


class DeliverableKind(enum.StrEnum):
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class TransactionType(enum.StrEnum):
    """Ledger entry kinds recorded in the transactions table."""

    JOB_PAYMENT = "job_payment"
    WITHDRAWAL = "withdrawal"
    BONUS = "bonus"
    REFUND = "refund"


class TransactionStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SenderRole(enum.StrEnum):
    AGENT = "agent"
    WORKER = "worker"


class MessageKind(enum.StrEnum):
    TEXT = "text"
    SYSTEM = "system"


class WebhookEvent(enum.StrEnum):
    """Events delivered to an agent's callback_url."""

    JOB_CREATED = "job.created"
    JOB_ACCEPTED = "job.accepted"
    JOB_STARTED = "job.started"
    JOB_SUBMITTED = "job.submitted"
    JOB_COMPLETED = "job.completed"
    JOB_REJECTED = "job.rejected"
    JOB_CANCELLED = "job.cancelled"
    JOB_MESSAGE = "job.message"
    DELIVERABLE_UPLOADED = "deliverable.uploaded"


class RateLimitCategory(enum.StrEnum):
    WORKER_SEARCH = "worker_search"
    JOB_CREATE = "job_create"
    JOB_STATUS = "job_status"
    MESSAGES = "messages"
    DEFAULT = "default"
