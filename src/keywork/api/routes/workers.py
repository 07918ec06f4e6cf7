"""Agent-facing worker discovery.

Routes:
    GET    /api/v1/workers/search  : Available workers by skill, location, tier, rating
    GET    /api/v1/workers/skills  : Skills offered by available workers
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from keywork.api.deps import agent_rate_limit, get_current_agent, get_db_session
from keywork.domain.enums import RateLimitCategory, TrustLevel
from keywork.infrastructure.database.repositories import WorkerRepository
from keywork.schemas.workers import (
    SkillCount,
    SkillListResponse,
    WorkerSearchResponse,
    WorkerSearchResult,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import AgentIdentity

router = APIRouter(prefix="/api/v1/workers", tags=["Workers"])


@router.get("/search", response_model=WorkerSearchResponse, summary="Search workers")
async def search_workers(
    skills: str | None = Query(default=None, description="Comma-separated skills"),
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
    radius_km: float = Query(default=50.0, gt=0, le=500),
    min_trust: TrustLevel = TrustLevel.BASIC,
    min_rating: float = Query(default=0.0, ge=0, le=5),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    agent: AgentIdentity = Depends(agent_rate_limit(RateLimitCategory.WORKER_SEARCH)),
    session: AsyncSession = Depends(get_db_session),
) -> WorkerSearchResponse:
    """Nearest first when lat/lon are given, otherwise best rated first."""
    wanted = [s for s in (skills or "").split(",") if s.strip()]
    matches = await WorkerRepository(session).search(
        skills=wanted,
        latitude=lat,
        longitude=lon,
        radius_km=radius_km,
        min_trust=min_trust,
        min_rating=min_rating,
        limit=limit,
        offset=offset,
    )
    workers = [
        WorkerSearchResult(
            id=w.id,
            name=w.name,
            trust_level=w.trust_level,
            skills=list(w.skills or []),
            rating=round(w.rating, 2),
            rating_count=w.rating_count,
            jobs_completed=w.jobs_completed,
            distance_km=round(d / 1000.0, 2) if d is not None else None,
            last_active=w.last_active,
        )
        for w, d in matches
    ]
    return WorkerSearchResponse(workers=workers, count=len(workers), limit=limit, offset=offset)


@router.get("/skills", response_model=SkillListResponse, summary="List available skills")
async def list_skills(
    agent: AgentIdentity = Depends(get_current_agent),
    session: AsyncSession = Depends(get_db_session),
) -> SkillListResponse:
    counts = await WorkerRepository(session).skill_counts()
    return SkillListResponse(skills=[SkillCount(skill=s, workers=n) for s, n in counts])
