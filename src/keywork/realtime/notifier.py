"""Notifier: the service-facing side of real-time delivery.

Services call the notifier after a state change; each call schedules a
background task and returns immediately, so a slow socket or an agent's
unreachable webhook endpoint never delays or fails the operation that
triggered it.

Routing:
    new jobs       -> global room (tier-filtered)
    job updates    -> global room and the job's own room
    new messages   -> the recipient, in the global room and the job's room
    webhooks       -> the agent's callback_url
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from keywork.logging_config import get_logger
from keywork.realtime.room import GLOBAL_TOPIC

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from keywork.domain.enums import TrustLevel, WebhookEvent
    from keywork.infrastructure.webhooks import WebhookDispatcher
    from keywork.realtime.room import RoomRegistry

logger = get_logger(__name__)


class Notifier:
    def __init__(
        self,
        rooms: RoomRegistry,
        webhooks: WebhookDispatcher | None = None,
    ) -> None:
        self.rooms = rooms
        self._webhooks = webhooks
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        task = asyncio.create_task(coro, name=f"notify-{label}")
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "notifier.delivery_failed",
                task=task.get_name(),
                error=str(task.exception()),
            )

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # --- Room deliveries ---

    def job_created(self, job: dict[str, Any], min_trust: TrustLevel | str) -> None:
        room = self.rooms.existing(GLOBAL_TOPIC)
        if room is not None:
            self._spawn(room.notify_new_job(job, min_trust=min_trust), "new_job")

    def job_updated(self, job_id: str, status: str, worker_id: str | None = None) -> None:
        for topic in (GLOBAL_TOPIC, job_id):
            room = self.rooms.existing(topic)
            if room is not None:
                self._spawn(room.notify_job_update(job_id, status, worker_id), "job_update")

    def message_posted(
        self, message: dict[str, Any], recipient_id: str, job_id: str
    ) -> None:
        for topic in (GLOBAL_TOPIC, job_id):
            room = self.rooms.existing(topic)
            if room is not None:
                self._spawn(room.notify_new_message(message, recipient_id), "new_message")

    # --- Agent webhooks ---

    def webhook(
        self,
        callback_url: str | None,
        agent_id: str,
        event: WebhookEvent,
        job_id: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        if not callback_url or self._webhooks is None:
            return
        self._spawn(
            self._webhooks.deliver(callback_url, agent_id, event.value, job_id, data),
            event.value,
        )
