"""Caller authentication.

Workers present a session JWT (``sub`` is the worker id). Agents present
their Keeper API key (``kk_...``), which is validated against Keeper's
balance endpoint on every request; the balance comes back with the
identity.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from keywork.config import get_settings
from keywork.domain.enums import TrustLevel
from keywork.domain.exceptions import UnauthenticatedError
from keywork.domain.identity import AgentIdentity, WorkerIdentity
from keywork.infrastructure.database.repositories import AgentRepository, WorkerRepository
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.config import Settings
    from keywork.infrastructure.ledger import LedgerClient

logger = get_logger(__name__)


def create_access_token(
    worker_id: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Issue a worker session token. Used by development tooling and tests."""
    settings = settings or get_settings()
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    claims = {"sub": worker_id, "exp": expire, "iat": now, "type": "access"}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings | None = None) -> dict:
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise UnauthenticatedError("Invalid or expired token") from err


async def authenticate_worker(token: str, session: AsyncSession) -> WorkerIdentity:
    claims = decode_token(token)
    worker_id = claims.get("sub")
    if not worker_id:
        raise UnauthenticatedError("Token has no subject")

    worker = await WorkerRepository(session).get_by_id(worker_id)
    if worker is None:
        raise UnauthenticatedError("Unknown worker")
    return WorkerIdentity(id=worker.id, trust_level=TrustLevel(worker.trust_level))


def is_agent_key(token: str) -> bool:
    return token.startswith(get_settings().agent_key_prefix)


async def authenticate_agent(
    api_key: str,
    ledger: LedgerClient,
    session: AsyncSession,
) -> AgentIdentity:
    """Resolve an agent key through the ledger and make sure the agent row exists."""
    if not api_key or not is_agent_key(api_key):
        raise UnauthenticatedError("Invalid API key format")

    account = await ledger.agent_balance(api_key)
    if account is None:
        logger.info("auth.agent_rejected", key_prefix=api_key[:6])
        raise UnauthenticatedError("Invalid API key")

    await AgentRepository(session).upsert(account.agent_id)
    return AgentIdentity(
        id=account.agent_id, api_key=api_key, balance=Decimal(account.balance)
    )
