"""Reputation: agent reviews and the worker's running rating."""

from __future__ import annotations

from typing import TYPE_CHECKING

from keywork.domain.enums import JobStatus
from keywork.domain.exceptions import PreconditionFailedError, ValidationError
from keywork.infrastructure.database.orm_models import Review
from keywork.infrastructure.database.repositories import (
    JobRepository,
    ReviewRepository,
    WorkerRepository,
)
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import AgentIdentity
    from keywork.infrastructure.database.orm_models import Worker
    from keywork.schemas.jobs import SubmitReviewRequest

logger = get_logger(__name__)


class ReputationService:
    def __init__(self, session: AsyncSession) -> None:
        self._job_repo = JobRepository(session)
        self._review_repo = ReviewRepository(session)
        self._worker_repo = WorkerRepository(session)

    async def submit_review(
        self,
        agent: AgentIdentity,
        job_id: uuid.UUID,
        request: SubmitReviewRequest,
    ) -> Review:
        """Review the worker of a completed job. One review per job."""
        job = await self._job_repo.get_for_agent(job_id, agent.id)
        if job is None or job.status != JobStatus.COMPLETED or job.worker_id is None:
            raise PreconditionFailedError(
                str(job_id),
                required=JobStatus.COMPLETED.value,
                actual=job.status if job is not None else None,
            )
        if await self._review_repo.get_by_job(job.id) is not None:
            raise PreconditionFailedError(str(job_id), actual="already reviewed")

        review = await self._review_repo.create(
            Review(
                job_id=job.id,
                reviewer_id=agent.id,
                worker_id=job.worker_id,
                rating=request.rating,
                quality_rating=request.quality_rating,
                speed_rating=request.speed_rating,
                communication_rating=request.communication_rating,
                review_text=request.review_text,
            )
        )
        worker = await self.apply_rating(job.worker_id, request.rating)

        logger.info(
            "review.submitted",
            job_id=str(job.id),
            worker_id=job.worker_id,
            rating=request.rating,
            new_average=worker.rating if worker is not None else None,
        )
        return review

    async def apply_rating(self, worker_id: str, rating: int) -> Worker | None:
        if not 1 <= rating <= 5:
            raise ValidationError("rating must be between 1 and 5")
        return await self._worker_repo.apply_rating(worker_id, rating)
