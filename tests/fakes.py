from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.config import PoolConfig, PriorityQueueConfig, SurgeConfig
from core.models import Message, NewMessage

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(message_id: int, content: Optional[str] = None, created_at: Optional[datetime] = None) -> Message:
    return Message(
        id=str(message_id),
        content=content if content is not None else f"Message {message_id}",
        created_at=created_at or BASE_TIME + timedelta(minutes=message_id),
    )


def make_config(**overrides) -> PoolConfig:
    values = dict(
        working_set_size=20,
        cluster_size=5,
        cluster_duration=1.0,
        polling_interval=60.0,
        store_timeout=2.0,
        priority_queue=PriorityQueueConfig(max_size=50, memory_adaptive=False),
        surge=SurgeConfig(threshold=30),
    )
    values.update(overrides)
    return PoolConfig(**values)


class FakeMessageStore:
    """In-memory store honoring the visibility filter and cursor contract."""

    def __init__(self, count: int = 0) -> None:
        self.rows: dict[int, Message] = {}
        self.hidden: set[int] = set()
        self.connected = True
        self.fail_max_id = False
        self.fail_new = False
        self.fail_history = False
        self.fail_insert = False
        for message_id in range(1, count + 1):
            self.rows[message_id] = make_message(message_id)

    def add(self, content: Optional[str] = None, created_at: Optional[datetime] = None) -> Message:
        message_id = max(self.rows, default=0) + 1
        message = make_message(message_id, content, created_at)
        self.rows[message_id] = message
        return message

    def hide(self, message_id: int) -> None:
        self.hidden.add(message_id)

    def _visible(self) -> list[Message]:
        return [self.rows[key] for key in sorted(self.rows) if key not in self.hidden]

    def get_max_message_id(self) -> int:
        if self.fail_max_id:
            raise RuntimeError("store unavailable")
        return max((message.int_id for message in self._visible()), default=0)

    def fetch_batch_with_cursor(self, cursor, count, order="DESC", upper_bound=None):
        if self.fail_history:
            raise RuntimeError("history query failed")
        visible = self._visible()
        if upper_bound is not None:
            visible = [message for message in visible if message.int_id <= upper_bound]
        if order == "DESC":
            selected = [message for message in reversed(visible) if message.int_id <= cursor]
        else:
            selected = [message for message in visible if message.int_id >= cursor]
        return selected[:count]

    def fetch_new_messages_above_watermark(self, watermark, limit=None):
        if self.fail_new:
            raise RuntimeError("new message query failed")
        fresh = [message for message in self._visible() if message.int_id > watermark]
        return fresh if limit is None else fresh[:limit]

    def insert_message(self, message: NewMessage) -> Optional[Message]:
        if self.fail_insert:
            raise RuntimeError("insert failed")
        return self.add(message.content, message.created_at)

    def count_messages(self) -> int:
        return len(self._visible())

    def test_connection(self) -> bool:
        return self.connected


class FixedMemoryProbe:
    def __init__(self, usage: float) -> None:
        self.usage = usage

    def __call__(self) -> float:
        return self.usage
