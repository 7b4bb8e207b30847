"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any database or rendering types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Submissions longer than this are rejected before they reach the store.
MAX_MESSAGE_LENGTH = 280

REASON_INITIALIZATION = "initialization"
REASON_CLUSTER_CYCLE = "cluster_cycle"
REASON_REPLENISHMENT = "replenishment"


@dataclass(frozen=True)
class Message:
    """A visible message as served by the store.

    Ids are the string form of a strictly increasing integer and are the
    ordering key for both pool cursors.
    """

    id: str
    content: str
    created_at: datetime
    approved: bool = True
    deleted_at: Optional[datetime] = None

    @property
    def int_id(self) -> int:
        return int(self.id)


@dataclass(frozen=True)
class NewMessage:
    """Insert payload for the submission path; the store assigns the id."""

    content: str
    created_at: datetime
    approved: bool = True
    deleted_at: Optional[datetime] = None


@dataclass(frozen=True)
class RelatedMessage:
    message: Message
    similarity: float


@dataclass(frozen=True)
class Cluster:
    """One traversal step: a focus, its related messages, and the next focus.

    Clusters are never persisted; the rendering layer consumes them right away
    and treats ``duration`` (seconds) as advisory.
    """

    focus: Message
    related: tuple[RelatedMessage, ...]
    next: Optional[Message]
    duration: float
    timestamp: datetime
    sequence_number: int

    @property
    def focus_id(self) -> str:
        return self.focus.id

    @property
    def next_id(self) -> Optional[str]:
        return self.next.id if self.next else None


@dataclass(frozen=True)
class Batch:
    """Messages answered by the pool; ``priority_ids`` came from the fast path."""

    messages: list[Message] = field(default_factory=list)
    priority_ids: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class WorkingSetChange:
    """Membership delta the rendering layer applies to stay in lockstep."""

    removed: list[str]
    added: list[Message]
    reason: str


@dataclass(frozen=True)
class PoolStats:
    historical_cursor: Optional[int]
    new_message_watermark: int
    priority_queue_size: int
    surge_mode: bool
    queue_wait_time: float
    memory_usage: float
    memory_pressure: str


@dataclass(frozen=True)
class ServiceStats:
    initialized: bool
    total_clusters_shown: int
    current_focus: Optional[str]
    previous_focus: Optional[str]
    working_set_size: int
    priority_message_count: int
    pool: PoolStats
