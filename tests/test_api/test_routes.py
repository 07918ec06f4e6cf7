"""HTTP-level tests: error mapping, authentication and the job flow over REST.

The app is served in-process through httpx's ASGI transport. The lifespan
does not run; the clients it would create are placed on ``app.state`` and
the database session is swapped for the test session.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio

from conftest import AGENT_KEY, make_job_request
from keywork.api.auth import create_access_token, decode_token
from keywork.api.deps import get_db_session
from keywork.api.middleware import error_response, status_for
from keywork.domain.exceptions import (
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitExceededError,
    UnauthenticatedError,
    UpstreamUnavailableError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import WorkerIdentity
    from keywork.infrastructure.ledger import SimulatedLedgerClient
    from keywork.infrastructure.storage import InMemoryObjectStore
    from keywork.realtime import Notifier

AGENT_HEADERS = {"Authorization": f"Bearer {AGENT_KEY}"}


def _worker_headers(worker: WorkerIdentity) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(worker.id)}"}


@pytest_asyncio.fixture
async def client(
    session: AsyncSession,
    ledger: SimulatedLedgerClient,
    storage: InMemoryObjectStore,
    notifier: Notifier,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    from keywork.main import create_app

    app = create_app()

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_db_session] = _session_override
    app.state.ledger = ledger
    app.state.storage = storage
    app.state.notifier = notifier
    app.state.rate_limiter = None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (ValidationError("bad"), 400),
            (UnauthenticatedError(), 401),
            (InsufficientFundsError(), 402),
            (NotFoundError("Job", "x"), 404),
            (PreconditionFailedError("x"), 404),
            (InvalidTransitionError("submitted", "cancel"), 409),
            (UpstreamUnavailableError("Keeper"), 502),
        ],
    )
    def test_status_codes(self, exc, status_code: int) -> None:
        assert status_for(exc) == status_code

    def test_rate_limit_sets_retry_after(self) -> None:
        response = error_response(RateLimitExceededError("job_create", 20, 60))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert json.loads(response.body)["error"] == "RATE_LIMITED"


class TestTokens:
    def test_round_trip(self) -> None:
        claims = decode_token(create_access_token("usr_1"))

        assert claims["sub"] == "usr_1"
        assert claims["type"] == "access"

    def test_expired_token(self) -> None:
        token = create_access_token("usr_1", expires_delta=timedelta(seconds=-5))

        with pytest.raises(UnauthenticatedError):
            decode_token(token)

    def test_garbage_token(self) -> None:
        with pytest.raises(UnauthenticatedError):
            decode_token("not-a-jwt")


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/agent/jobs")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHENTICATED"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_agent_key_format(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/v1/agent/jobs", headers={"Authorization": "Bearer sk_wrong_prefix"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_worker(self, client: httpx.AsyncClient) -> None:
        headers = {"Authorization": f"Bearer {create_access_token('usr_ghost')}"}

        response = await client.get("/api/v1/jobs", headers=headers)

        assert response.status_code == 401


class TestJobFlow:
    @pytest.mark.asyncio
    async def test_post_work_approve(
        self, client: httpx.AsyncClient, verified_worker: WorkerIdentity
    ) -> None:
        body = make_job_request().model_dump(mode="json")
        created = await client.post("/api/v1/agent/jobs", json=body, headers=AGENT_HEADERS)
        assert created.status_code == 201
        job_id = created.json()["id"]
        assert created.json()["status"] == "available"

        worker_headers = _worker_headers(verified_worker)
        listing = await client.get(
            "/api/v1/jobs",
            params={"lat": 40.713, "lon": -74.006, "radius": 2000},
            headers=worker_headers,
        )
        assert listing.status_code == 200
        assert [j["id"] for j in listing.json()["jobs"]] == [job_id]
        assert listing.json()["jobs"][0]["distance_meters"] is not None

        for step in ("accept", "start"):
            response = await client.post(f"/api/v1/jobs/{job_id}/{step}", headers=worker_headers)
            assert response.status_code == 200, response.text

        upload = await client.post(
            f"/api/v1/jobs/{job_id}/upload",
            files={"file": ("sign.jpg", b"\xff\xd8jpeg", "image/jpeg")},
            data={"kind": "photo", "caption": "Opening hours"},
            headers=worker_headers,
        )
        assert upload.status_code == 201, upload.text
        assert upload.json()["size_bytes"] == 6

        completed = await client.post(f"/api/v1/jobs/{job_id}/complete", headers=worker_headers)
        assert completed.json()["status"] == "submitted"

        approved = await client.post(
            f"/api/v1/agent/jobs/{job_id}/approve",
            json={"tip_amount": "2.00"},
            headers=AGENT_HEADERS,
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["job"]["status"] == "completed"
        assert approved.json()["escrow_released"] is True
        assert len(approved.json()["transactions"]) == 2

        again = await client.post(f"/api/v1/agent/jobs/{job_id}/approve", headers=AGENT_HEADERS)
        assert again.status_code == 404
        assert again.json()["error"] == "PRECONDITION_FAILED"

    @pytest.mark.asyncio
    async def test_cancel_submitted_is_conflict(
        self, client: httpx.AsyncClient, verified_worker: WorkerIdentity
    ) -> None:
        body = make_job_request().model_dump(mode="json")
        job_id = (
            await client.post("/api/v1/agent/jobs", json=body, headers=AGENT_HEADERS)
        ).json()["id"]
        worker_headers = _worker_headers(verified_worker)
        await client.post(f"/api/v1/jobs/{job_id}/accept", headers=worker_headers)
        await client.post(f"/api/v1/jobs/{job_id}/start", headers=worker_headers)
        await client.post(
            f"/api/v1/jobs/{job_id}/upload",
            files={"file": ("a.jpg", b"x", "image/jpeg")},
            headers=worker_headers,
        )
        await client.post(f"/api/v1/jobs/{job_id}/complete", headers=worker_headers)

        response = await client.post(f"/api/v1/agent/jobs/{job_id}/cancel", headers=AGENT_HEADERS)

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_status_endpoint(self, client: httpx.AsyncClient) -> None:
        body = make_job_request().model_dump(mode="json")
        job_id = (
            await client.post("/api/v1/agent/jobs", json=body, headers=AGENT_HEADERS)
        ).json()["id"]

        response = await client.get(f"/api/v1/agent/jobs/{job_id}/status", headers=AGENT_HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "available"
        assert sorted(response.json()["allowed_events"]) == ["accept", "cancel"]

    @pytest.mark.asyncio
    async def test_invalid_body_is_rejected(self, client: httpx.AsyncClient) -> None:
        body = make_job_request().model_dump(mode="json")
        body["payment_amount"] = "-3.00"

        response = await client.post("/api/v1/agent/jobs", json=body, headers=AGENT_HEADERS)

        assert response.status_code == 422
