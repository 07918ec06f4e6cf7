"""Domain layer: pure business rules with zero framework dependencies."""

from keywork.domain.enums import (
    JobCategory,
    JobStatus,
    TransactionType,
    TrustLevel,
)
from keywork.domain.exceptions import (
    InvalidTransitionError,
    KeyWorkError,
    NotFoundError,
    PreconditionFailedError,
)
from keywork.domain.state_machine import (
    JobStateMachine,
    validate_transition,
)

__all__ = [
    "JobCategory",
    "JobStatus",
    "TransactionType",
    "TrustLevel",
    "InvalidTransitionError",
    "KeyWorkError",
    "NotFoundError",
    "PreconditionFailedError",
    "JobStateMachine",
    "validate_transition",
]
