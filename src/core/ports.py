"""Ports (interfaces) used by the traversal engine.

Ports define the minimal contracts for the message store, the rendering
consumer, and the memory probe so that the core can be reused with different
backends and hosts.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from core.models import Message, NewMessage, WorkingSetChange


class MessageStorePort(Protocol):
    """Store operations required by the pool manager and logic service.

    Every fetch returns only approved, non-deleted messages.
    """

    def get_max_message_id(self) -> int:
        """Return the highest visible id, or 0 for an empty store."""
        ...

    def fetch_batch_with_cursor(
        self,
        cursor: int,
        count: int,
        order: str = "DESC",
        upper_bound: Optional[int] = None,
    ) -> list[Message]:
        ...

    def fetch_new_messages_above_watermark(
        self, watermark: int, limit: Optional[int] = None
    ) -> list[Message]:
        ...

    def insert_message(self, message: NewMessage) -> Optional[Message]:
        ...

    def count_messages(self) -> int:
        ...

    def test_connection(self) -> bool:
        ...


# Single-slot consumer of working set membership changes.
WorkingSetListener = Callable[[WorkingSetChange], None]

# Returns an estimate of memory utilization in percent (0-100).
MemoryProbe = Callable[[], float]
