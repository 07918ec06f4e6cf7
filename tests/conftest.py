"""Shared test fixtures for the KeyWork test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Seeded workers at each trust level and an agent identity
    - Simulated ledger, in-memory object storage and a notifier
    - A factory for job creation requests
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from keywork.config import Settings
from keywork.domain.enums import JobCategory, TrustLevel
from keywork.domain.identity import AgentIdentity, WorkerIdentity
from keywork.infrastructure.database.orm_models import Base, Worker
from keywork.infrastructure.ledger import SimulatedLedgerClient
from keywork.infrastructure.storage import InMemoryObjectStore
from keywork.realtime import Notifier, RoomRegistry
from keywork.schemas.jobs import CreateJobRequest
from keywork.services import JobService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

AGENT_KEY = "kk_test_agent_0001"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[AsyncSession, None]:
    """A session on a fresh in-memory database, discarded after the test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db_session:
        yield db_session
    await engine.dispose()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def ledger() -> SimulatedLedgerClient:
    return SimulatedLedgerClient()


@pytest.fixture
def storage() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def rooms() -> RoomRegistry:
    return RoomRegistry(ping_interval_seconds=3600, stale_after_seconds=60)


@pytest.fixture
def notifier(rooms: RoomRegistry) -> Notifier:
    return Notifier(rooms)


@pytest.fixture
def job_service(
    session: AsyncSession,
    ledger: SimulatedLedgerClient,
    storage: InMemoryObjectStore,
    notifier: Notifier,
    settings: Settings,
) -> JobService:
    return JobService(session, ledger, storage, notifier, settings)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


async def _seed_worker(session: AsyncSession, worker_id: str, trust: TrustLevel, **extra: Any) -> WorkerIdentity:
    session.add(Worker(id=worker_id, name=worker_id, trust_level=trust.value, **extra))
    await session.flush()
    return WorkerIdentity(id=worker_id, trust_level=trust)


@pytest_asyncio.fixture
async def basic_worker(session: AsyncSession) -> WorkerIdentity:
    return await _seed_worker(session, "usr_basic", TrustLevel.BASIC)


@pytest_asyncio.fixture
async def verified_worker(session: AsyncSession) -> WorkerIdentity:
    return await _seed_worker(session, "usr_verified", TrustLevel.VERIFIED)


@pytest_asyncio.fixture
async def other_worker(session: AsyncSession) -> WorkerIdentity:
    return await _seed_worker(session, "usr_other", TrustLevel.KYC_GOLD)


@pytest_asyncio.fixture
async def agent(ledger: SimulatedLedgerClient) -> AgentIdentity:
    account = await ledger.agent_balance(AGENT_KEY)
    assert account is not None
    return AgentIdentity(id=account.agent_id, api_key=AGENT_KEY, balance=account.balance)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def make_job_request(**overrides: Any) -> CreateJobRequest:
    """Return a valid job creation request, with ``overrides`` applied."""
    data: dict[str, Any] = {
        "title": "Photograph storefront hours",
        "description": "Take a clear photo of the opening hours sign.",
        "category": JobCategory.PHOTO_SURVEY,
        "latitude": 40.7128,
        "longitude": -74.0060,
        "payment_amount": Decimal("15.00"),
        "expires_at": datetime.now(UTC) + timedelta(hours=4),
    }
    data.update(overrides)
    return CreateJobRequest(**data)


@pytest.fixture
def job_request() -> CreateJobRequest:
    return make_job_request()
