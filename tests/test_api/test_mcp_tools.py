"""Tests for the MCP tools, called directly with the test database session."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from conftest import AGENT_KEY
from keywork.mcp_server import tools

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.infrastructure.ledger import SimulatedLedgerClient
    from keywork.infrastructure.storage import InMemoryObjectStore


@pytest.fixture(autouse=True)
def _wired(
    monkeypatch: pytest.MonkeyPatch,
    session: AsyncSession,
    ledger: SimulatedLedgerClient,
    storage: InMemoryObjectStore,
) -> None:
    @asynccontextmanager
    async def _borrow():
        yield session

    monkeypatch.setattr(tools, "get_session_factory", lambda: _borrow)
    monkeypatch.setattr(tools, "_runtime", None)
    tools.configure(ledger, storage, None)


def _expires(hours: int = 2) -> str:
    return (datetime.now(UTC) + timedelta(hours=hours)).isoformat()


async def _post(**overrides) -> dict:
    args = {
        "api_key": AGENT_KEY,
        "title": "Check if the cafe is open",
        "description": "Photograph the front door and any posted notice.",
        "latitude": 51.5072,
        "longitude": -0.1276,
        "payment_amount": 8.5,
        "expires_at": _expires(),
    }
    args.update(overrides)
    return await tools.create_job(**args)


class TestCreateJobTool:
    @pytest.mark.asyncio
    async def test_posts_job(self, ledger: SimulatedLedgerClient) -> None:
        result = await _post()

        assert "error" not in result
        assert result["status"] == "available"
        assert result["payment_amount"] == "8.50"
        assert ledger.holds[result["escrow_hold_id"]].state == "held"

    @pytest.mark.asyncio
    async def test_bad_key_is_reported_as_data(self) -> None:
        result = await _post(api_key="not-a-keeper-key")

        assert result["error"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_invalid_input_is_reported_as_data(self) -> None:
        result = await _post(category="skydiving")

        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_past_deadline(self) -> None:
        result = await _post(expires_at=_expires(hours=-1))

        assert result["error"] == "VALIDATION_ERROR"
        assert "expires_at" in result["message"]


class TestJobTools:
    @pytest.mark.asyncio
    async def test_status_list_and_cancel(self, ledger: SimulatedLedgerClient) -> None:
        job_id = (await _post())["job_id"]

        status = await tools.get_job_status(AGENT_KEY, job_id)
        assert status["job_id"] == job_id
        assert "accept" in status["allowed_events"]

        listed = await tools.list_my_jobs(AGENT_KEY, status="available")
        assert [j["job_id"] for j in listed["jobs"]] == [job_id]

        cancelled = await tools.cancel_job(AGENT_KEY, job_id, reason="Plans changed")
        assert cancelled["status"] == "cancelled"
        assert cancelled["refund_percent"] == 100
        assert cancelled["compensation"] is None

    @pytest.mark.asyncio
    async def test_approve_unsubmitted_job(self) -> None:
        job_id = (await _post())["job_id"]

        result = await tools.approve_job(AGENT_KEY, job_id)

        assert result["error"] == "PRECONDITION_FAILED"

    @pytest.mark.asyncio
    async def test_message_without_worker(self) -> None:
        job_id = (await _post())["job_id"]

        result = await tools.message_worker(AGENT_KEY, job_id, "Hello?")

        assert result["error"] == "VALIDATION_ERROR"
