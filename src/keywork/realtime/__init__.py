"""Real-time fan-out: WebSocket rooms and the notifier."""

from keywork.realtime.notifier import Notifier
from keywork.realtime.room import GLOBAL_TOPIC, JobsRoom, RoomRegistry

__all__ = ["GLOBAL_TOPIC", "JobsRoom", "Notifier", "RoomRegistry"]
