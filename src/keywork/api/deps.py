"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
process-wide clients held on ``app.state``, services, caller identities and
rate limits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from keywork.api.auth import authenticate_agent, authenticate_worker
from keywork.config import Settings, get_settings
from keywork.domain.exceptions import UnauthenticatedError
from keywork.infrastructure.database.engine import get_async_session
from keywork.services import JobService, MessageService, ReputationService, WalletService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.enums import RateLimitCategory
    from keywork.domain.identity import AgentIdentity, WorkerIdentity
    from keywork.infrastructure.ledger import LedgerClient
    from keywork.infrastructure.redis_client import RateLimiter
    from keywork.infrastructure.storage import ObjectStore
    from keywork.realtime.notifier import Notifier

bearer = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


# --- Process-wide clients (created in the lifespan) ---


def get_ledger(request: Request) -> LedgerClient:
    return request.app.state.ledger


def get_storage(request: Request) -> ObjectStore:
    return request.app.state.storage


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_rate_limiter(request: Request) -> RateLimiter | None:
    return getattr(request.app.state, "rate_limiter", None)


# --- Services ---


async def get_job_service(
    session: AsyncSession = Depends(get_db_session),
    ledger: LedgerClient = Depends(get_ledger),
    storage: ObjectStore = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
) -> JobService:
    return JobService(session, ledger, storage, notifier)


async def get_message_service(
    session: AsyncSession = Depends(get_db_session),
    notifier: Notifier = Depends(get_notifier),
) -> MessageService:
    return MessageService(session, notifier)


async def get_reputation_service(
    session: AsyncSession = Depends(get_db_session),
) -> ReputationService:
    return ReputationService(session)


async def get_wallet_service(
    session: AsyncSession = Depends(get_db_session),
) -> WalletService:
    return WalletService(session)


# --- Caller identity ---


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Missing bearer token")
    return credentials.credentials


async def get_current_worker(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    session: AsyncSession = Depends(get_db_session),
) -> WorkerIdentity:
    return await authenticate_worker(_bearer_token(credentials), session)


async def get_current_agent(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ledger: LedgerClient = Depends(get_ledger),
    session: AsyncSession = Depends(get_db_session),
) -> AgentIdentity:
    return await authenticate_agent(_bearer_token(credentials), ledger, session)


# --- Rate limits ---


def agent_rate_limit(
    category: RateLimitCategory,
) -> Callable[..., Awaitable[AgentIdentity]]:
    """Dependency that authenticates an agent and charges one request to ``category``."""

    async def _dependency(
        agent: AgentIdentity = Depends(get_current_agent),
        limiter: RateLimiter | None = Depends(get_rate_limiter),
    ) -> AgentIdentity:
        if limiter is not None:
            await limiter.check(agent.rate_limit_key, category)
        return agent

    return _dependency


def worker_rate_limit(
    category: RateLimitCategory,
) -> Callable[..., Awaitable[WorkerIdentity]]:
    """Dependency that authenticates a worker and charges one request to ``category``."""

    async def _dependency(
        worker: WorkerIdentity = Depends(get_current_worker),
        limiter: RateLimiter | None = Depends(get_rate_limiter),
    ) -> WorkerIdentity:
        if limiter is not None:
            await limiter.check(worker.rate_limit_key, category)
        return worker

    return _dependency
