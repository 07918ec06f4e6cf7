"""Pydantic API schemas."""

from keywork.schemas.health import HealthResponse
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
    NearbyJobListResponse,
    NearbyJobResponse,
    RegisterAgentRequest,
    RejectJobRequest,
    ReviewResponse,
    SubmitReviewRequest,
    TransactionResponse,
)
from keywork.schemas.messages import (
    ConversationListResponse,
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from keywork.schemas.wallet import (
    BalanceResponse,
    TransactionListResponse,
    WithdrawRequest,
)
from keywork.schemas.workers import (
    SkillCount,
    SkillListResponse,
    WorkerSearchResponse,
    WorkerSearchResult,
)

__all__ = [
    "AgentResponse",
    "ApproveJobRequest",
    "ApproveJobResponse",
    "BalanceResponse",
    "CancelJobRequest",
    "CancelJobResponse",
    "ConversationListResponse",
    "ConversationResponse",
    "CreateJobRequest",
    "DeliverableResponse",
    "HealthResponse",
    "JobListResponse",
    "JobResponse",
    "JobStatusResponse",
    "MessageListResponse",
    "MessageResponse",
    "NearbyJobListResponse",
    "NearbyJobResponse",
    "RegisterAgentRequest",
    "RejectJobRequest",
    "ReviewResponse",
    "SendMessageRequest",
    "SkillCount",
    "SkillListResponse",
    "SubmitReviewRequest",
    "TransactionListResponse",
    "TransactionResponse",
    "UnreadCountResponse",
    "WithdrawRequest",
    "WorkerSearchResponse",
    "WorkerSearchResult",
]
