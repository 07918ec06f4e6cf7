"""Database infrastructure: engine, ORM models, and repositories."""

from keywork.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from keywork.infrastructure.database.orm_models import (
    Agent,
    Base,
    Deliverable,
    Job,
    Message,
    Review,
    Transaction,
    Worker,
)
from keywork.infrastructure.database.repositories import (
    AgentRepository,
    DeliverableRepository,
    JobRepository,
    MessageRepository,
    ReviewRepository,
    TransactionRepository,
    WorkerRepository,
)

__all__ = [
    "Base",
    "Agent",
    "Deliverable",
    "Job",
    "Message",
    "Review",
    "Transaction",
    "Worker",
    "AgentRepository",
    "DeliverableRepository",
    "JobRepository",
    "MessageRepository",
    "ReviewRepository",
    "TransactionRepository",
    "WorkerRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
