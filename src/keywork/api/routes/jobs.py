"""Worker-facing job routes.

Routes:
    GET    /api/v1/jobs                 : Available jobs (nearby when lat/lon given)
    GET    /api/v1/jobs/my/active       : Own assigned / in-progress / submitted jobs
    GET    /api/v1/jobs/my/completed    : Own completed jobs
    GET    /api/v1/jobs/{id}            : Job details
    POST   /api/v1/jobs/{id}/accept     : Claim an available job
    POST   /api/v1/jobs/{id}/start      : Begin work
    POST   /api/v1/jobs/{id}/upload     : Upload a deliverable (multipart)
    POST   /api/v1/jobs/{id}/complete   : Submit for review
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from keywork.api.deps import get_current_worker, get_job_service, worker_rate_limit
from keywork.domain.enums import DeliverableKind, JobCategory, RateLimitCategory
from keywork.schemas.jobs import (
    DeliverableResponse,
    JobResponse,
    NearbyJobListResponse,
    NearbyJobResponse,
)

if TYPE_CHECKING:
    from keywork.domain.identity import WorkerIdentity
    from keywork.services import JobService

router = APIRouter(prefix="/api/v1/jobs", tags=["Jobs"])


@router.get("", response_model=NearbyJobListResponse, summary="Browse available jobs")
async def list_available_jobs(
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
    radius: float | None = Query(default=None, gt=0, le=100_000, description="Meters"),
    category: JobCategory | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    worker: WorkerIdentity = Depends(worker_rate_limit(RateLimitCategory.DEFAULT)),
    svc: JobService = Depends(get_job_service),
) -> NearbyJobListResponse:
    """Jobs the worker's trust level qualifies for, nearest first when located."""
    pairs = await svc.list_available_jobs(
        worker,
        latitude=lat,
        longitude=lon,
        radius_m=radius,
        category=category.value if category else None,
        limit=limit,
    )
    jobs = []
    for job, distance in pairs:
        item = NearbyJobResponse.model_validate(job)
        item.distance_meters = round(distance, 1) if distance is not None else None
        jobs.append(item)
    return NearbyJobListResponse(jobs=jobs, count=len(jobs))


@router.get("/my/active", response_model=list[JobResponse], summary="My active jobs")
async def my_active_jobs(
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> list[JobResponse]:
    return [JobResponse.model_validate(j) for j in await svc.list_active_jobs(worker)]


@router.get("/my/completed", response_model=list[JobResponse], summary="My completed jobs")
async def my_completed_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> list[JobResponse]:
    jobs = await svc.list_completed_jobs(worker, limit=limit, offset=offset)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse, summary="Get job details")
async def get_job(
    job_id: uuid.UUID,
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """Visible when the job is open or assigned to the caller."""
    return JobResponse.model_validate(await svc.get_job_for_worker(worker, job_id))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/{job_id}/accept", response_model=JobResponse, summary="Accept a job")
async def accept_job(
    job_id: uuid.UUID,
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """Transitions AVAILABLE -> ASSIGNED."""
    return JobResponse.model_validate(await svc.accept_job(worker, job_id))


@router.post("/{job_id}/start", response_model=JobResponse, summary="Start work")
async def start_job(
    job_id: uuid.UUID,
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """Transitions ASSIGNED -> IN_PROGRESS."""
    return JobResponse.model_validate(await svc.start_job(worker, job_id))


@router.post(
    "/{job_id}/upload",
    response_model=DeliverableResponse,
    status_code=201,
    summary="Upload a deliverable",
)
async def upload_deliverable(
    job_id: uuid.UUID,
    file: UploadFile = File(...),
    kind: DeliverableKind = Form(DeliverableKind.PHOTO),
    caption: str | None = Form(default=None, max_length=500),
    latitude: float | None = Form(default=None, ge=-90, le=90),
    longitude: float | None = Form(default=None, ge=-180, le=180),
    captured_at: datetime | None = Form(default=None),
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> DeliverableResponse:
    data = await file.read()
    deliverable = await svc.upload_deliverable(
        worker,
        job_id,
        kind=kind.value,
        data=data,
        filename=file.filename,
        media_type=file.content_type,
        caption=caption,
        latitude=latitude,
        longitude=longitude,
        captured_at=captured_at,
    )
    return DeliverableResponse.model_validate(deliverable)


@router.post("/{job_id}/complete", response_model=JobResponse, summary="Submit for review")
async def complete_job(
    job_id: uuid.UUID,
    worker: WorkerIdentity = Depends(get_current_worker),
    svc: JobService = Depends(get_job_service),
) -> JobResponse:
    """Transitions IN_PROGRESS -> SUBMITTED. Requires at least one deliverable."""
    return JobResponse.model_validate(await svc.complete_job(worker, job_id))
