"""Tests for worker reviews and the wallet built on approved payments."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from conftest import make_job_request
from keywork.domain.enums import TransactionStatus, TransactionType
from keywork.domain.exceptions import (
    InsufficientFundsError,
    PreconditionFailedError,
    UnauthorizedError,
    ValidationError,
)
from keywork.infrastructure.database.orm_models import Worker
from keywork.schemas.jobs import SubmitReviewRequest
from keywork.services import ReputationService, WalletService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.config import Settings
    from keywork.domain.identity import AgentIdentity, WorkerIdentity
    from keywork.services import JobService


async def _approved_job(
    service: JobService,
    agent: AgentIdentity,
    worker: WorkerIdentity,
    amount: str = "15.00",
    tip: str | None = None,
):
    job = await service.create_job(agent, make_job_request(payment_amount=Decimal(amount)))
    await service.accept_job(worker, job.id)
    await service.start_job(worker, job.id)
    await service.upload_deliverable(worker, job.id, kind="photo", data=b"x")
    await service.complete_job(worker, job.id)
    result = await service.approve_job(
        agent, job.id, tip_amount=Decimal(tip) if tip is not None else None
    )
    return result.job


@pytest.fixture
def reputation(session: AsyncSession) -> ReputationService:
    return ReputationService(session)


@pytest.fixture
def wallet(session: AsyncSession, settings: Settings) -> WalletService:
    return WalletService(session, settings)


class TestReviews:
    @pytest.mark.asyncio
    async def test_running_average(
        self,
        job_service: JobService,
        reputation: ReputationService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
        session: AsyncSession,
    ) -> None:
        for rating in (5, 3, 4):
            job = await _approved_job(job_service, agent, verified_worker)
            await reputation.submit_review(agent, job.id, SubmitReviewRequest(rating=rating))

        worker = await session.get(Worker, verified_worker.id)
        assert worker.rating == pytest.approx(4.0)
        assert worker.rating_count == 3

    @pytest.mark.asyncio
    async def test_one_review_per_job(
        self,
        job_service: JobService,
        reputation: ReputationService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        job = await _approved_job(job_service, agent, verified_worker)
        await reputation.submit_review(agent, job.id, SubmitReviewRequest(rating=5))

        with pytest.raises(PreconditionFailedError) as exc_info:
            await reputation.submit_review(agent, job.id, SubmitReviewRequest(rating=1))
        assert exc_info.value.actual == "already reviewed"

    @pytest.mark.asyncio
    async def test_only_completed_jobs(
        self,
        job_service: JobService,
        reputation: ReputationService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        job = await job_service.create_job(agent, make_job_request())
        await job_service.accept_job(verified_worker, job.id)

        with pytest.raises(PreconditionFailedError):
            await reputation.submit_review(agent, job.id, SubmitReviewRequest(rating=4))

    @pytest.mark.asyncio
    async def test_rating_out_of_range(self, reputation: ReputationService) -> None:
        with pytest.raises(ValidationError):
            await reputation.apply_rating("usr_anyone", 6)


class TestWallet:
    @pytest.mark.asyncio
    async def test_balance_after_payment(
        self,
        job_service: JobService,
        wallet: WalletService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        await _approved_job(job_service, agent, verified_worker, tip="2.00")

        balance = await wallet.balance(verified_worker)

        assert balance["available"] == Decimal("17.00")
        assert balance["total_earned"] == Decimal("17.00")
        assert balance["pending"] == Decimal("0.00")
        assert balance["pending_withdrawals"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_submitted_job_counts_as_pending(
        self,
        job_service: JobService,
        wallet: WalletService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        job = await job_service.create_job(agent, make_job_request())
        await job_service.accept_job(verified_worker, job.id)
        await job_service.start_job(verified_worker, job.id)
        await job_service.upload_deliverable(verified_worker, job.id, kind="photo", data=b"x")
        await job_service.complete_job(verified_worker, job.id)

        balance = await wallet.balance(verified_worker)

        assert balance["pending"] == Decimal("15.00")
        assert balance["available"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_withdraw_rules(
        self,
        job_service: JobService,
        wallet: WalletService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        await _approved_job(job_service, agent, verified_worker, amount="25.00")

        with pytest.raises(ValidationError, match="Minimum"):
            await wallet.withdraw(verified_worker, Decimal("5.00"))

        txn = await wallet.withdraw(verified_worker, Decimal("20.00"), destination="acct_123")
        assert txn.type == TransactionType.WITHDRAWAL
        assert txn.status == TransactionStatus.PENDING

        # 25.00 earned, 20.00 already pending
        with pytest.raises(InsufficientFundsError):
            await wallet.withdraw(verified_worker, Decimal("10.00"))

        balance = await wallet.balance(verified_worker)
        assert balance["pending_withdrawals"] == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_basic_tier_cannot_withdraw(
        self, wallet: WalletService, basic_worker: WorkerIdentity
    ) -> None:
        with pytest.raises(UnauthorizedError):
            await wallet.withdraw(basic_worker, Decimal("10.00"))

    @pytest.mark.asyncio
    async def test_history_filters_by_type(
        self,
        job_service: JobService,
        wallet: WalletService,
        agent: AgentIdentity,
        verified_worker: WorkerIdentity,
    ) -> None:
        await _approved_job(job_service, agent, verified_worker, tip="3.00")

        all_txns, total = await wallet.history(verified_worker)
        bonuses, bonus_total = await wallet.history(verified_worker, type_=TransactionType.BONUS)

        assert total == 2
        assert len(all_txns) == 2
        assert bonus_total == 1
        assert bonuses[0].amount == Decimal("3.00")
