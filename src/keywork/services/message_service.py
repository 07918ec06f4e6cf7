"""Per-job conversations between an agent and the assigned worker.

Messages are appended inside the caller's transaction; delivery to the
recipient's live sessions (worker) or callback URL (agent) is scheduled
through the notifier and never holds up the write.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from keywork.domain.enums import MessageKind, SenderRole, WebhookEvent
from keywork.domain.exceptions import NotFoundError, ValidationError
from keywork.domain.identity import AgentIdentity
from keywork.infrastructure.database.orm_models import Message
from keywork.infrastructure.database.repositories import (
    AgentRepository,
    JobRepository,
    MessageRepository,
)
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from keywork.domain.identity import WorkerIdentity
    from keywork.infrastructure.database.orm_models import Job
    from keywork.realtime.notifier import Notifier

    Actor = AgentIdentity | WorkerIdentity

logger = get_logger(__name__)

MAX_PAGE = 100


def message_payload(message: Message) -> dict[str, Any]:
    """Wire view of a message for room and webhook delivery."""
    return {
        "id": str(message.id),
        "job_id": str(message.job_id),
        "agent_id": message.agent_id,
        "worker_id": message.worker_id,
        "sender_role": message.sender_role,
        "kind": message.kind,
        "body": message.body,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


class MessageService:
    def __init__(self, session: AsyncSession, notifier: Notifier | None = None) -> None:
        self._notifier = notifier
        self._job_repo = JobRepository(session)
        self._message_repo = MessageRepository(session)
        self._agent_repo = AgentRepository(session)

    async def send(
        self,
        actor: Actor,
        job_id: uuid.UUID,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
    ) -> Message:
        body = (body or "").strip()
        if not body:
            raise ValidationError("Message body cannot be empty")

        if isinstance(actor, AgentIdentity):
            job = await self._job_repo.get_for_agent(job_id, actor.id)
            if job is None:
                raise NotFoundError("Job", str(job_id))
            if job.worker_id is None:
                raise ValidationError("Job has no assigned worker to message")
            role = SenderRole.AGENT
        else:
            job = await self._job_repo.get_by_id(job_id)
            if job is None or job.worker_id != actor.id:
                raise NotFoundError("Job", str(job_id))
            role = SenderRole.WORKER

        message = await self._message_repo.create(
            Message(
                job_id=job.id,
                agent_id=job.agent_id,
                worker_id=job.worker_id,
                sender_role=role.value,
                body=body,
                kind=MessageKind(kind).value,
            )
        )
        logger.info(
            "message.sent",
            job_id=str(job.id),
            message_id=str(message.id),
            sender_role=role.value,
        )
        await self._deliver(job, message, role)
        return message

    async def list_messages(
        self,
        actor: Actor,
        job_id: uuid.UUID,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """The newest ``limit`` messages older than ``before``, in order sent."""
        job, worker_scope = await self._thread_or_raise(actor, job_id)
        return await self._message_repo.list_for_job(
            job.id,
            worker_id=worker_scope,
            before=before,
            limit=max(1, min(limit, MAX_PAGE)),
        )

    async def mark_read(self, actor: Actor, job_id: uuid.UUID) -> int:
        """Mark the counter-party's unread messages as read."""
        job, worker_scope = await self._thread_or_raise(actor, job_id)
        reader = SenderRole.AGENT if isinstance(actor, AgentIdentity) else SenderRole.WORKER
        count = await self._message_repo.mark_read(job.id, reader, worker_id=worker_scope)
        if count:
            logger.debug("message.marked_read", job_id=str(job.id), count=count)
        return count

    async def conversations(self, worker: WorkerIdentity) -> list[dict[str, Any]]:
        return await self._message_repo.conversations_for_worker(worker.id)

    async def unread_count(self, worker: WorkerIdentity) -> int:
        return await self._message_repo.unread_count_for_worker(worker.id)

    async def _thread_or_raise(
        self, actor: Actor, job_id: uuid.UUID
    ) -> tuple[Job, str | None]:
        """Resolve the job and the worker scope the actor may read.

        Agents see every message on their job. A worker sees its own
        conversation, which outlives an unassignment.
        """
        if isinstance(actor, AgentIdentity):
            job = await self._job_repo.get_for_agent(job_id, actor.id)
            if job is None:
                raise NotFoundError("Job", str(job_id))
            return job, None

        job = await self._job_repo.get_by_id(job_id)
        if job is None:
            raise NotFoundError("Job", str(job_id))
        if job.worker_id != actor.id:
            history = await self._message_repo.list_for_job(job.id, worker_id=actor.id, limit=1)
            if not history:
                raise NotFoundError("Job", str(job_id))
        return job, actor.id

    async def _deliver(self, job: Job, message: Message, role: SenderRole) -> None:
        if self._notifier is None:
            return
        payload = message_payload(message)
        if role == SenderRole.AGENT:
            self._notifier.message_posted(payload, job.worker_id, str(job.id))
            return
        agent = await self._agent_repo.get_by_id(job.agent_id)
        if agent is not None:
            self._notifier.webhook(
                agent.callback_url, agent.id, WebhookEvent.JOB_MESSAGE, str(job.id), payload
            )
