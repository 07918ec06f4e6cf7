"""Tests for deliverable storage backends and signed agent webhooks."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import TYPE_CHECKING

import httpx
import pytest

from keywork.domain.exceptions import NotFoundError
from keywork.infrastructure.storage import (
    InMemoryObjectStore,
    LocalObjectStore,
    deliverable_key,
)
from keywork.infrastructure.webhooks import WebhookDispatcher, sign_payload

if TYPE_CHECKING:
    from pathlib import Path


class TestDeliverableKey:
    def test_keeps_lowercased_suffix(self) -> None:
        assert deliverable_key("j1", "d1", "Photo.JPG") == "jobs/j1/d1.jpg"

    def test_without_filename(self) -> None:
        assert deliverable_key("j1", "d1", None) == "jobs/j1/d1"


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_put_get_delete(self) -> None:
        store = InMemoryObjectStore()
        await store.put("jobs/a/b.jpg", b"data", "image/jpeg")

        assert await store.get("jobs/a/b.jpg") == b"data"

        await store.delete("jobs/a/b.jpg")
        with pytest.raises(NotFoundError):
            await store.get("jobs/a/b.jpg")


class TestLocalStore:
    @pytest.mark.asyncio
    async def test_writes_under_root(self, tmp_path: Path) -> None:
        store = LocalObjectStore(tmp_path)
        await store.put("jobs/a/b.jpg", b"data")

        assert (tmp_path / "jobs" / "a" / "b.jpg").read_bytes() == b"data"
        assert await store.get("jobs/a/b.jpg") == b"data"

        await store.delete("jobs/a/b.jpg")
        await store.delete("jobs/a/b.jpg")
        assert not (tmp_path / "jobs" / "a" / "b.jpg").exists()

    @pytest.mark.asyncio
    async def test_missing_object(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            await LocalObjectStore(tmp_path).get("jobs/none")

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, tmp_path: Path) -> None:
        store = LocalObjectStore(tmp_path / "store")

        with pytest.raises(ValueError, match="escapes"):
            await store.put("../outside.txt", b"x")


class TestWebhooks:
    def test_signature_is_hmac_of_body(self) -> None:
        body = b'{"event": "job.created"}'
        expected = hmac.new(b"agent_1", body, hashlib.sha256).hexdigest()

        assert sign_payload("agent_1", body) == f"sha256={expected}"

    @pytest.mark.asyncio
    async def test_delivers_signed_event(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        dispatcher = WebhookDispatcher(transport=httpx.MockTransport(handler))
        delivered = await dispatcher.deliver(
            "https://agent.test/hooks", "agent_1", "job.completed", "job-1", {"total": "17.00"}
        )
        await dispatcher.aclose()

        assert delivered is True
        request = seen[0]
        assert request.headers["X-KeyWork-Event"] == "job.completed"
        assert request.headers["X-KeyWork-Job-Id"] == "job-1"
        assert request.headers["X-KeyWork-Signature"] == sign_payload("agent_1", request.content)
        body = json.loads(request.content)
        assert body["data"] == {"total": "17.00"}
        assert body["agent_id"] == "agent_1"

    @pytest.mark.asyncio
    async def test_rejected_delivery_returns_false(self) -> None:
        dispatcher = WebhookDispatcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        assert await dispatcher.deliver("https://agent.test/hooks", "a", "job.created", "j") is False
