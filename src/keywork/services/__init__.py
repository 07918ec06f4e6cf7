"""Application services shared by the REST API and the MCP server."""

from keywork.services.job_service import ApprovalResult, CancellationResult, JobService
from keywork.services.message_service import MessageService
from keywork.services.reputation_service import ReputationService
from keywork.services.wallet_service import WalletService

__all__ = [
    "ApprovalResult",
    "CancellationResult",
    "JobService",
    "MessageService",
    "ReputationService",
    "WalletService",
]
