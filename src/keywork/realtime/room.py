"""WebSocket rooms for real-time job and message updates.

A JobsRoom holds the live sessions of one topic: ``"global"`` for the
marketplace-wide feed, or a job id for a per-job channel. Sessions are
kept in a registry guarded by an asyncio.Lock; every fan-out iterates a
snapshot taken under the lock, so a slow socket never blocks registration.

Protocol (JSON text frames):

    client -> server   {"type": "ping"}
                       {"type": "subscribe_job", "jobId": "..."}
                       {"type": "unsubscribe_job", "jobId": "..."}
    server -> client   connected, pong, subscribed, unsubscribed, error,
                       ping, new_job, job_update, new_message

A background sweep pings every session each interval and closes the ones
that have not pinged within the staleness window. The sweep runs only
while the room has sessions.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from keywork.domain.enums import TrustLevel
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import WebSocket

logger = get_logger(__name__)

GLOBAL_TOPIC = "global"
SESSION_TIMEOUT_CODE = 1000
SESSION_TIMEOUT_REASON = "Session timeout"


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Session:
    session_id: str
    websocket: WebSocket
    user_id: str
    trust_level: TrustLevel
    last_seen: float
    subscriptions: set[str] = field(default_factory=set)


class JobsRoom:
    """Live sessions for one topic."""

    def __init__(
        self,
        topic: str = GLOBAL_TOPIC,
        ping_interval_seconds: float = 30.0,
        stale_after_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.topic = topic
        self._ping_interval = ping_interval_seconds
        self._stale_after = stale_after_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

    # --- Registry ---

    @property
    def is_empty(self) -> bool:
        return not self._sessions

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)

    async def register(
        self,
        websocket: WebSocket,
        user_id: str,
        trust_level: TrustLevel | str = TrustLevel.BASIC,
    ) -> str:
        """Add an accepted socket to the room and greet it."""
        session = await self._admit(websocket, user_id, trust_level)
        await self._greet(session)
        return session.session_id

    async def _admit(
        self, websocket: WebSocket, user_id: str, trust_level: TrustLevel | str
    ) -> Session:
        session = Session(
            session_id=str(uuid.uuid4()),
            websocket=websocket,
            user_id=user_id,
            trust_level=TrustLevel(trust_level),
            last_seen=self._clock(),
        )
        async with self._lock:
            self._sessions[session.session_id] = session
            self._ensure_sweeper()

        logger.info(
            "room.session_registered",
            topic=self.topic,
            session_id=session.session_id,
            user_id=user_id,
        )
        return session

    async def _greet(self, session: Session) -> None:
        await self._send(
            session,
            {
                "type": "connected",
                "message": "Connected to KeyWork real-time updates",
                "sessionId": session.session_id,
            },
        )

    async def deregister(self, session_id: str) -> bool:
        """Drop a session. Returns False if it was already gone."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if not self._sessions:
                self._stop_sweeper()
        if session is not None:
            logger.info("room.session_closed", topic=self.topic, session_id=session_id)
        return session is not None

    async def _snapshot(self) -> list[Session]:
        async with self._lock:
            return list(self._sessions.values())

    # --- Inbound frames ---

    async def handle_frame(self, session_id: str, raw: str) -> None:
        """Process one client frame. Bad frames get an error reply, never a close."""
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return

        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            data = None
        if not isinstance(data, dict) or not data.get("type"):
            await self._send(session, {"type": "error", "message": "Invalid message format"})
            return

        kind = data["type"]
        if kind == "ping":
            session.last_seen = self._clock()
            await self._send(session, {"type": "pong", "timestamp": _timestamp_ms()})
        elif kind in ("subscribe_job", "unsubscribe_job"):
            job_id = data.get("jobId")
            if not job_id:
                await self._send(session, {"type": "error", "message": "jobId is required"})
                return
            if kind == "subscribe_job":
                session.subscriptions.add(str(job_id))
                reply, verb = "subscribed", "Subscribed to"
            else:
                session.subscriptions.discard(str(job_id))
                reply, verb = "unsubscribed", "Unsubscribed from"
            await self._send(
                session,
                {
                    "type": reply,
                    "jobId": job_id,
                    "message": f"{verb} updates for job {job_id}",
                },
            )
        else:
            await self._send(
                session, {"type": "error", "message": f"Unknown message type: {kind}"}
            )

    # --- Fan-out ---

    async def broadcast(
        self,
        message: dict[str, Any],
        exclude_user_id: str | None = None,
        min_trust: TrustLevel | str | None = None,
    ) -> int:
        """Send to every session, optionally skipping one user or low tiers.

        Returns the number of sessions the frame was delivered to.
        """
        delivered = 0
        for session in await self._snapshot():
            if exclude_user_id is not None and session.user_id == exclude_user_id:
                continue
            if min_trust is not None and not session.trust_level.satisfies(min_trust):
                continue
            if await self._send(session, message):
                delivered += 1
        return delivered

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> int:
        delivered = 0
        for session in await self._snapshot():
            if session.user_id == user_id and await self._send(session, message):
                delivered += 1
        return delivered

    async def notify_new_job(
        self, job: dict[str, Any], min_trust: TrustLevel | str | None = None
    ) -> int:
        return await self.broadcast(
            {"type": "new_job", "data": job, "timestamp": _timestamp_ms()},
            min_trust=min_trust,
        )

    async def notify_job_update(
        self, job_id: str, status: str, worker_id: str | None = None
    ) -> int:
        """Tell the assigned worker (or everyone) and any job subscribers."""
        message = {
            "type": "job_update",
            "data": {"jobId": job_id, "status": status},
            "timestamp": _timestamp_ms(),
        }
        delivered = 0
        for session in await self._snapshot():
            if worker_id is None:
                wanted = True
            else:
                wanted = session.user_id == worker_id or job_id in session.subscriptions
            if wanted and await self._send(session, message):
                delivered += 1
        return delivered

    async def notify_new_message(self, message: dict[str, Any], recipient_id: str) -> int:
        return await self.send_to_user(
            recipient_id,
            {"type": "new_message", "data": message, "timestamp": _timestamp_ms()},
        )

    async def _send(self, session: Session, message: dict[str, Any]) -> bool:
        try:
            await session.websocket.send_text(json.dumps(message, default=str))
        except Exception as exc:
            logger.warning(
                "room.send_failed",
                topic=self.topic,
                session_id=session.session_id,
                error=str(exc),
            )
            await self.deregister(session.session_id)
            return False
        return True

    # --- Liveness sweep ---

    async def sweep(self) -> int:
        """Close stale sessions and ping the rest. Returns the number evicted."""
        now = self._clock()
        evicted = 0
        for session in await self._snapshot():
            if now - session.last_seen > self._stale_after:
                try:
                    await session.websocket.close(
                        code=SESSION_TIMEOUT_CODE, reason=SESSION_TIMEOUT_REASON
                    )
                except Exception as exc:
                    logger.debug(
                        "room.close_failed", session_id=session.session_id, error=str(exc)
                    )
                await self.deregister(session.session_id)
                logger.info(
                    "room.session_evicted",
                    topic=self.topic,
                    session_id=session.session_id,
                    idle_seconds=round(now - session.last_seen, 1),
                )
                evicted += 1
            else:
                await self._send(session, {"type": "ping", "timestamp": _timestamp_ms()})
        return evicted

    def _ensure_sweeper(self) -> None:
        if not self.sweeper_running:
            self._sweeper = asyncio.create_task(
                self._run_sweeper(), name=f"room-sweep-{self.topic}"
            )

    def _stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _run_sweeper(self) -> None:
        me = asyncio.current_task()
        while self._sweeper is me:
            await asyncio.sleep(self._ping_interval)
            if self._sweeper is not me:
                break
            await self.sweep()

    async def close(self) -> None:
        """Stop the sweep and close every session (application shutdown)."""
        for session in await self._snapshot():
            try:
                await session.websocket.close(code=1001, reason="Server shutting down")
            except Exception as exc:
                logger.debug(
                    "room.close_failed", session_id=session.session_id, error=str(exc)
                )
            await self.deregister(session.session_id)
        async with self._lock:
            self._stop_sweeper()


class RoomRegistry:
    """Process-wide map of topic -> JobsRoom.

    Rooms are created on first use and dropped once their last session leaves.
    Sockets enter and leave through ``join`` and ``leave``, which share one
    lock: a room is only dropped while no join can be admitting into it, so
    every live session sits in a room the notifier can find.
    """

    def __init__(
        self,
        ping_interval_seconds: float = 30.0,
        stale_after_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ping_interval = ping_interval_seconds
        self._stale_after = stale_after_seconds
        self._clock = clock
        self._rooms: dict[str, JobsRoom] = {}
        self._lock = asyncio.Lock()

    async def join(
        self,
        topic: str,
        websocket: WebSocket,
        user_id: str,
        trust_level: TrustLevel | str = TrustLevel.BASIC,
    ) -> tuple[JobsRoom, str]:
        """Register a socket in the topic's room. Returns the room and session id."""
        async with self._lock:
            room = self.room(topic)
            session = await room._admit(websocket, user_id, trust_level)
        await room._greet(session)
        return room, session.session_id

    async def leave(self, topic: str, session_id: str) -> None:
        """Deregister a session and drop its room if that emptied it."""
        async with self._lock:
            room = self._rooms.get(topic)
            if room is None:
                return
            await room.deregister(session_id)
            if room.is_empty:
                del self._rooms[topic]
                logger.debug("room.discarded", topic=topic)

    def room(self, topic: str = GLOBAL_TOPIC) -> JobsRoom:
        room = self._rooms.get(topic)
        if room is None:
            room = JobsRoom(
                topic,
                ping_interval_seconds=self._ping_interval,
                stale_after_seconds=self._stale_after,
                clock=self._clock,
            )
            self._rooms[topic] = room
        return room

    def existing(self, topic: str) -> JobsRoom | None:
        return self._rooms.get(topic)

    @property
    def topics(self) -> list[str]:
        return list(self._rooms)

    async def close(self) -> None:
        for room in list(self._rooms.values()):
            await room.close()
        self._rooms.clear()
