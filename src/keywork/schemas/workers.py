"""Pydantic schemas for agent-facing worker discovery."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic resolves annotations at runtime

from pydantic import BaseModel


class WorkerSearchResult(BaseModel):
    id: str
    name: str | None
    trust_level: str
    skills: list[str]
    rating: float
    rating_count: int
    jobs_completed: int
    distance_km: float | None = None
    last_active: datetime | None = None


class WorkerSearchResponse(BaseModel):
    workers: list[WorkerSearchResult]
    count: int
    limit: int
    offset: int


class SkillCount(BaseModel):
    skill: str
    workers: int


class SkillListResponse(BaseModel):
    skills: list[SkillCount]
