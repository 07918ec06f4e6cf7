"""Agent webhooks.

Job lifecycle events are POSTed to the agent's registered callback_url:

    POST <callback_url>
    X-KeyWork-Event:     job.completed
    X-KeyWork-Job-Id:    <job id>
    X-KeyWork-Signature: sha256=<hex hmac of the body, keyed by agent id>

    {"event": ..., "job_id": ..., "agent_id": ..., "timestamp": ..., "data": {...}}

Delivery is best effort: one attempt, failures are logged and dropped.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import UTC, datetime
from typing import Any

import httpx

from keywork.logging_config import get_logger

logger = get_logger(__name__)


def sign_payload(agent_id: str, body: bytes) -> str:
    digest = hmac.new(agent_id.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def build_payload(
    event: str, job_id: str, agent_id: str, data: dict[str, Any] | None = None
) -> bytes:
    return json.dumps(
        {
            "event": event,
            "job_id": job_id,
            "agent_id": agent_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": data or {},
        },
        default=str,
    ).encode()


class WebhookDispatcher:
    """Signs and delivers webhook payloads."""

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def deliver(
        self,
        callback_url: str,
        agent_id: str,
        event: str,
        job_id: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        body = build_payload(event, job_id, agent_id, data)
        headers = {
            "Content-Type": "application/json",
            "X-KeyWork-Event": event,
            "X-KeyWork-Job-Id": job_id,
            "X-KeyWork-Signature": sign_payload(agent_id, body),
        }
        try:
            response = await self._client.post(callback_url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "webhook.failed", webhook_event=event, agent_id=agent_id, error=str(exc)
            )
            return False

        if response.is_error:
            logger.warning(
                "webhook.rejected",
                webhook_event=event,
                agent_id=agent_id,
                status_code=response.status_code,
            )
            return False

        logger.debug("webhook.delivered", webhook_event=event, job_id=job_id)
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
