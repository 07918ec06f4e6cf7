"""Tests for WebSocket rooms and the notifier, using in-memory sockets."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from keywork.domain.enums import TrustLevel
from keywork.realtime import GLOBAL_TOPIC, JobsRoom, Notifier, RoomRegistry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeSocket:
    """Records frames sent to it; can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail
        self.close = AsyncMock()

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(json.loads(text))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def room(clock: FakeClock) -> JobsRoom:
    return JobsRoom(ping_interval_seconds=3600, stale_after_seconds=60, clock=clock)


class TestSessions:
    @pytest.mark.asyncio
    async def test_register_greets_and_starts_sweeper(self, room: JobsRoom) -> None:
        socket = FakeSocket()

        session_id = await room.register(socket, "usr_1")

        assert socket.frames[0]["type"] == "connected"
        assert socket.frames[0]["sessionId"] == session_id
        assert room.sweeper_running
        await room.close()

    @pytest.mark.asyncio
    async def test_sweeper_stops_when_room_empties(self, room: JobsRoom) -> None:
        session_id = await room.register(FakeSocket(), "usr_1")

        assert await room.deregister(session_id) is True
        await asyncio.sleep(0)

        assert room.is_empty
        assert not room.sweeper_running
        assert await room.deregister(session_id) is False

    @pytest.mark.asyncio
    async def test_failed_send_drops_session(self, room: JobsRoom) -> None:
        await room.register(FakeSocket(fail=True), "usr_1")

        assert room.is_empty
        await room.close()


class TestFrames:
    @pytest.mark.asyncio
    async def test_ping_refreshes_liveness(self, room: JobsRoom, clock: FakeClock) -> None:
        socket = FakeSocket()
        session_id = await room.register(socket, "usr_1")

        clock.now += 50
        await room.handle_frame(session_id, json.dumps({"type": "ping"}))
        clock.now += 50

        assert socket.types()[-1] == "pong"
        assert await room.sweep() == 0
        socket.close.assert_not_awaited()
        await room.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", json.dumps({"jobId": "x"})])
    async def test_invalid_frame_gets_error(self, room: JobsRoom, raw: str) -> None:
        socket = FakeSocket()
        session_id = await room.register(socket, "usr_1")

        await room.handle_frame(session_id, raw)

        assert socket.frames[-1] == {"type": "error", "message": "Invalid message format"}
        assert not room.is_empty
        await room.close()

    @pytest.mark.asyncio
    async def test_unknown_type(self, room: JobsRoom) -> None:
        socket = FakeSocket()
        session_id = await room.register(socket, "usr_1")

        await room.handle_frame(session_id, json.dumps({"type": "dance"}))

        assert socket.frames[-1]["message"] == "Unknown message type: dance"
        await room.close()

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, room: JobsRoom) -> None:
        socket = FakeSocket()
        session_id = await room.register(socket, "usr_1")

        await room.handle_frame(session_id, json.dumps({"type": "subscribe_job", "jobId": "j1"}))
        assert await room.notify_job_update("j1", "submitted", worker_id="usr_other") == 1

        await room.handle_frame(
            session_id, json.dumps({"type": "unsubscribe_job", "jobId": "j1"})
        )
        assert await room.notify_job_update("j1", "completed", worker_id="usr_other") == 0

        assert socket.types() == ["connected", "subscribed", "job_update", "unsubscribed"]
        await room.close()


class TestSweep:
    @pytest.mark.asyncio
    async def test_stale_session_is_closed(self, room: JobsRoom, clock: FakeClock) -> None:
        stale = FakeSocket()
        fresh = FakeSocket()
        await room.register(stale, "usr_stale")
        clock.now += 45
        await room.register(fresh, "usr_fresh")
        clock.now += 30

        assert await room.sweep() == 1

        stale.close.assert_awaited_once_with(code=1000, reason="Session timeout")
        assert fresh.types()[-1] == "ping"

        frames_before = len(stale.frames)
        assert await room.broadcast({"type": "new_job"}) == 1
        assert len(stale.frames) == frames_before
        await room.close()


class TestFanOut:
    @pytest.mark.asyncio
    async def test_new_job_filtered_by_tier(self, room: JobsRoom) -> None:
        basic = FakeSocket()
        gold = FakeSocket()
        await room.register(basic, "usr_basic", TrustLevel.BASIC)
        await room.register(gold, "usr_gold", TrustLevel.KYC_GOLD)

        delivered = await room.notify_new_job({"id": "j1"}, min_trust=TrustLevel.VERIFIED)

        assert delivered == 1
        assert "new_job" not in basic.types()
        assert gold.frames[-1]["data"] == {"id": "j1"}
        await room.close()

    @pytest.mark.asyncio
    async def test_job_update_without_worker_reaches_everyone(self, room: JobsRoom) -> None:
        await room.register(FakeSocket(), "usr_1")
        await room.register(FakeSocket(), "usr_2")

        assert await room.notify_job_update("j1", "assigned") == 2
        await room.close()

    @pytest.mark.asyncio
    async def test_message_reaches_only_recipient(self, room: JobsRoom) -> None:
        recipient = FakeSocket()
        bystander = FakeSocket()
        await room.register(recipient, "usr_1")
        await room.register(bystander, "usr_2")

        assert await room.notify_new_message({"body": "hi"}, "usr_1") == 1
        assert recipient.frames[-1]["type"] == "new_message"
        assert "new_message" not in bystander.types()
        await room.close()


class TestRegistryAndNotifier:
    @pytest.mark.asyncio
    async def test_room_dropped_on_last_leave(self) -> None:
        registry = RoomRegistry(ping_interval_seconds=3600)
        room, first = await registry.join("job-1", FakeSocket(), "usr_1")
        _, second = await registry.join("job-1", FakeSocket(), "usr_2")

        await registry.leave("job-1", first)
        assert registry.topics == ["job-1"]
        assert room.sweeper_running

        await registry.leave("job-1", second)
        assert registry.topics == []
        assert not room.sweeper_running

        await registry.leave("job-1", second)
        await registry.close()

    @pytest.mark.asyncio
    async def test_join_racing_last_leave_lands_in_live_room(self) -> None:
        registry = RoomRegistry(ping_interval_seconds=3600)
        notifier = Notifier(registry)
        newcomer = FakeSocket()
        room, departing_id = await registry.join("job-1", FakeSocket(), "usr_1")

        # The leave blocks inside the room while the join queues behind it.
        async with room._lock:
            leaving = asyncio.create_task(registry.leave("job-1", departing_id))
            joining = asyncio.create_task(registry.join("job-1", newcomer, "usr_2"))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
        await leaving
        live_room, _ = await joining

        assert live_room is not room
        assert registry.existing("job-1") is live_room

        notifier.job_updated("job-1", "assigned")
        await notifier.drain()

        assert newcomer.types() == ["connected", "job_update"]
        await registry.close()

    @pytest.mark.asyncio
    async def test_notifier_routes_to_global_and_job_rooms(self) -> None:
        registry = RoomRegistry(ping_interval_seconds=3600)
        notifier = Notifier(registry)
        global_socket = FakeSocket()
        job_socket = FakeSocket()
        await registry.join(GLOBAL_TOPIC, global_socket, "usr_1")
        await registry.join("job-1", job_socket, "usr_1")

        notifier.job_updated("job-1", "in_progress", worker_id="usr_1")
        notifier.message_posted({"body": "hello"}, "usr_1", "job-1")
        await notifier.drain()

        for socket in (global_socket, job_socket):
            assert sorted(socket.types()[1:]) == ["job_update", "new_message"]
        assert notifier.pending == 0
        await registry.close()

    @pytest.mark.asyncio
    async def test_notifier_without_rooms_schedules_nothing(self) -> None:
        notifier = Notifier(RoomRegistry())

        notifier.job_created({"id": "j1"}, min_trust="basic")
        notifier.job_updated("j1", "assigned")

        assert notifier.pending == 0
