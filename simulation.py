#!/usr/bin/env python3
"""KeyWork: End-to-End Simulation.

Simulates four scenarios with an AgentBot and WorkerBots against the
simulated ledger and in-memory object storage:

    Scenario 1: Happy Path
        - Agent posts a 15.00 job requiring 'verified'
        - A basic worker is refused; a verified worker accepts, starts,
          uploads a photo and completes
        - Agent approves with a 2.00 tip -> COMPLETED, worker earns 17.00

    Scenario 2: Cancel Before Work
        - Agent posts a job and cancels it while still available
        - Hold voided at 100%, no compensation

    Scenario 3: Reject and Release
        - Worker submits, agent rejects with keep_assigned=False
        - Job back to AVAILABLE, deliverables removed, worker notified

    Scenario 4: Cancel During Work
        - Worker starts, agent cancels -> worker compensated 50%,
          agent refunded the remaining 50%

Usage:
    # SQLite in-memory (no Docker):
    uv run python simulation.py --sqlite

    # Against the configured PostgreSQL:
    uv run python simulation.py

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 1
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from keywork.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from keywork.domain.enums import TrustLevel  # noqa: E402
from keywork.domain.exceptions import KeyWorkError  # noqa: E402
from keywork.domain.identity import AgentIdentity, WorkerIdentity  # noqa: E402
from keywork.infrastructure.database.orm_models import Base, Worker  # noqa: E402
from keywork.infrastructure.database.repositories import (  # noqa: E402
    DeliverableRepository,
    MessageRepository,
    TransactionRepository,
    WorkerRepository,
)
from keywork.infrastructure.ledger import SimulatedLedgerClient  # noqa: E402
from keywork.infrastructure.storage import InMemoryObjectStore  # noqa: E402
from keywork.schemas.jobs import CreateJobRequest  # noqa: E402
from keywork.services import JobService  # noqa: E402

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_ledger = SimulatedLedgerClient()
_storage = InMemoryObjectStore()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

        _sqlite_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from keywork.infrastructure.database.engine import init_db

        await init_db()


async def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from keywork.infrastructure.database.engine import get_session_factory

    return get_session_factory()()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from keywork.infrastructure.database.engine import close_db

        await close_db()


def _service(session: Any) -> JobService:
    return JobService(session, _ledger, _storage)


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------
@dataclass
class AgentBot:
    """Simulated AI agent that posts and reviews jobs."""

    api_key: str = field(default_factory=lambda: f"kk_{uuid.uuid4().hex}")

    async def identity(self) -> AgentIdentity:
        account = await _ledger.agent_balance(self.api_key)
        return AgentIdentity(id=account.agent_id, api_key=self.api_key, balance=account.balance)

    async def post_job(
        self,
        session: Any,
        title: str,
        amount: Decimal,
        trust: TrustLevel = TrustLevel.BASIC,
    ) -> uuid.UUID:
        request = CreateJobRequest(
            title=title,
            description=f"{title}. Take a clear photo on site.",
            category="photo_survey",
            latitude=40.7128,
            longitude=-74.0060,
            required_trust_level=trust,
            payment_amount=amount,
            expires_at=datetime.now(UTC) + timedelta(hours=6),
        )
        job = await _service(session).create_job(await self.identity(), request)
        await session.commit()
        logger.info(
            "🔵 AGENT: Job posted",
            job_id=str(job.id),
            amount=str(amount),
            hold_id=job.escrow_hold_id,
            balance=str(_ledger.balance_of(self.api_key)),
        )
        return job.id

    async def approve(self, session: Any, job_id: uuid.UUID, tip: Decimal) -> None:
        result = await _service(session).approve_job(await self.identity(), job_id, tip)
        await session.commit()
        logger.info(
            "🔵 AGENT: Work approved",
            job_id=str(job_id),
            total_paid=str(result.total_paid),
            transactions=len(result.transactions),
        )

    async def reject(self, session: Any, job_id: uuid.UUID, reason: str, keep: bool) -> None:
        job = await _service(session).reject_job(await self.identity(), job_id, reason, keep)
        await session.commit()
        logger.info(
            "🔵 AGENT: Work rejected",
            job_id=str(job_id),
            status=job.status,
            worker_id=job.worker_id,
        )

    async def cancel(self, session: Any, job_id: uuid.UUID, reason: str) -> None:
        result = await _service(session).cancel_job(await self.identity(), job_id, reason)
        await session.commit()
        logger.info(
            "🔵 AGENT: Job cancelled",
            job_id=str(job_id),
            refund_percent=result.refund_percent,
            compensation=str(result.compensation) if result.compensation else None,
            balance=str(_ledger.balance_of(self.api_key)),
        )


@dataclass
class WorkerBot:
    """Simulated human worker."""

    trust: TrustLevel = TrustLevel.VERIFIED
    worker_id: str = field(default_factory=lambda: f"usr_{uuid.uuid4().hex[:12]}")

    @property
    def identity(self) -> WorkerIdentity:
        return WorkerIdentity(id=self.worker_id, trust_level=self.trust)

    async def register(self, session: Any) -> None:
        await WorkerRepository(session).create(
            Worker(id=self.worker_id, name=f"Worker {self.worker_id[-4:]}", trust_level=self.trust)
        )
        await session.commit()

    async def accept(self, session: Any, job_id: uuid.UUID) -> bool:
        try:
            await _service(session).accept_job(self.identity, job_id)
        except KeyWorkError as exc:
            await session.rollback()
            logger.info("🟢 WORKER: Accept refused", worker=self.worker_id, reason=exc.message)
            return False
        await session.commit()
        logger.info("🟢 WORKER: Job accepted", worker=self.worker_id, job_id=str(job_id))
        return True

    async def do_work(self, session: Any, job_id: uuid.UUID) -> None:
        svc = _service(session)
        await svc.start_job(self.identity, job_id)
        await svc.upload_deliverable(
            self.identity,
            job_id,
            kind="photo",
            data=b"\x89PNG simulated image bytes",
            filename="storefront.png",
            media_type="image/png",
        )
        await svc.complete_job(self.identity, job_id)
        await session.commit()
        logger.info("🟢 WORKER: Work submitted", worker=self.worker_id, job_id=str(job_id))

    async def start(self, session: Any, job_id: uuid.UUID) -> None:
        await _service(session).start_job(self.identity, job_id)
        await session.commit()
        logger.info("🟢 WORKER: Work started", worker=self.worker_id, job_id=str(job_id))


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_ledger(session: Any, job_id: uuid.UUID, worker: WorkerBot) -> None:
    """Print the transactions recorded for a job and the worker's totals."""
    txns = await TransactionRepository(session).list_for_job(job_id)
    print("\n  💰 Transactions:")
    if not txns:
        print("    (none)")
    for i, txn in enumerate(txns, 1):
        print(f"    {i}. [{txn.type}] {txn.amount} {txn.currency} -> {txn.user_id}")
    row = await WorkerRepository(session).get_by_id(worker.worker_id)
    if row is not None:
        print(f"  Worker total earned: {row.total_earned} ({row.jobs_completed} jobs)")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path: verified job, approved with tip")

    agent = AgentBot()
    novice = WorkerBot(trust=TrustLevel.BASIC)
    pro = WorkerBot(trust=TrustLevel.VERIFIED)

    session = await get_session()
    async with session:
        await novice.register(session)
        await pro.register(session)

        section("Step 1: Agent posts a 15.00 job requiring 'verified'")
        job_id = await agent.post_job(
            session, "Photograph storefront hours", Decimal("15.00"), TrustLevel.VERIFIED
        )

        section("Step 2: Basic worker tries to accept")
        await novice.accept(session, job_id)

        section("Step 3: Verified worker accepts and does the work")
        await pro.accept(session, job_id)
        await pro.do_work(session, job_id)

        section("Step 4: Agent approves with a 2.00 tip")
        await agent.approve(session, job_id, Decimal("2.00"))
        await print_ledger(session, job_id, pro)


# ===========================================================================
# Scenario 2: Cancel before work
# ===========================================================================
async def scenario_2_cancel_available() -> None:
    banner("SCENARIO 2: Cancel Before Work: full refund")

    agent = AgentBot()
    session = await get_session()
    async with session:
        job_id = await agent.post_job(session, "Count parked bicycles", Decimal("8.00"))

        section("Agent cancels while the job is still available")
        await agent.cancel(session, job_id, "No longer needed")


# ===========================================================================
# Scenario 3: Reject and release
# ===========================================================================
async def scenario_3_reject_release() -> None:
    banner("SCENARIO 3: Reject and Release: job returns to the pool")

    agent = AgentBot()
    worker = WorkerBot()
    session = await get_session()
    async with session:
        await worker.register(session)
        job_id = await agent.post_job(session, "Photograph menu board", Decimal("12.00"))
        await worker.accept(session, job_id)
        await worker.do_work(session, job_id)

        section("Agent rejects with keep_assigned=False")
        await agent.reject(session, job_id, "Photo is blurry", keep=False)

        remaining = await DeliverableRepository(session).count_for_job(job_id)
        thread = await MessageRepository(session).list_for_job(job_id, worker_id=worker.worker_id)
        print(f"  Deliverables remaining: {remaining}")
        for msg in thread:
            print(f"  ✉️  [{msg.kind}] {msg.body}")


# ===========================================================================
# Scenario 4: Cancel during work
# ===========================================================================
async def scenario_4_cancel_in_progress() -> None:
    banner("SCENARIO 4: Cancel During Work: worker compensated")

    agent = AgentBot()
    worker = WorkerBot()
    session = await get_session()
    async with session:
        await worker.register(session)
        job_id = await agent.post_job(session, "Check parcel locker", Decimal("20.00"))
        await worker.accept(session, job_id)
        await worker.start(session, job_id)

        section("Agent cancels while work is in progress")
        await agent.cancel(session, job_id, "Plans changed")
        await print_ledger(session, job_id, worker)


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_cancel_available,
    3: scenario_3_reject_release,
    4: scenario_4_cancel_in_progress,
}


async def main(use_sqlite: bool, scenario: int | None) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        selected = [SCENARIOS[scenario]] if scenario else list(SCENARIOS.values())
        for run in selected:
            await run()
    finally:
        await shutdown_database()
    banner("Simulation complete")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="KeyWork end-to-end simulation")
    parser.add_argument("--sqlite", action="store_true", help="Use in-memory SQLite")
    parser.add_argument("--scenario", type=int, choices=sorted(SCENARIOS), help="Run one scenario")
    args = parser.parse_args()
    asyncio.run(main(use_sqlite=args.sqlite, scenario=args.scenario))
