"""Dual-cursor message pool.

The pool answers "give me N messages" with a three-stage waterfall:

1) Drain the in-memory priority queue (fresh submissions, oldest first)
2) Query the store for anything above the new-message watermark
3) Fill the rest from a historical cursor walking backwards by id

The historical cursor recycles to the newest id when it walks past the
oldest message, so traversal never ends. Stages 1 and 2 are tagged as
priority so the coordinator can promote them.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import deque
from typing import Iterable, Optional

from core.config import PoolConfig
from core.errors import PoolInitializationError
from core.memory_pressure import NORMAL, adaptive_queue_size, classify_memory_pressure
from core.models import Batch, Message, PoolStats
from core.ports import MemoryProbe, MessageStorePort
from core.store_calls import call_store

LOGGER = logging.getLogger(__name__)


class MessagePoolManager:
    """Owns the historical cursor, the watermark, and the priority queue."""

    def __init__(
        self,
        store: MessageStorePort,
        config: PoolConfig,
        memory_probe: Optional[MemoryProbe] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._memory_probe = memory_probe

        # None means exhausted (or empty store): recycle to the max id first.
        self._historical_cursor: Optional[int] = None
        self._watermark = 0
        self._queue: deque[Message] = deque()
        self._surge_mode = False

        # Guards the queue and watermark; store calls await in worker threads,
        # so the poll tick could otherwise interleave with a batch request.
        self._lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def historical_cursor(self) -> Optional[int]:
        return self._historical_cursor

    @property
    def new_message_watermark(self) -> int:
        return self._watermark

    @property
    def priority_queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def initialize(self) -> None:
        """Establish both cursors at the newest id and start polling.

        A store failure here is fatal: without cursors there is no traversal.
        """

        try:
            max_id = await self._call(self._store.get_max_message_id)
        except Exception as exc:
            LOGGER.exception("Pool initialization failed")
            raise PoolInitializationError(f"Failed to initialize pool manager: {exc}") from exc

        if max_id <= 0:
            LOGGER.info("Message store is empty; waiting for the first submissions")
            self._historical_cursor = None
            self._watermark = 0
        else:
            self._historical_cursor = max_id
            self._watermark = max_id
            LOGGER.info("Cursors initialized at id %s", max_id)

        self.start()

    def start(self) -> None:
        """Start the polling task on the running loop (no-op when already running)."""

        if self.is_polling:
            return
        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(self._poll_loop(), name="message-pool-poll")
        LOGGER.info("Polling for new messages every %ss", self._config.polling_interval)

    def stop(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        self._poll_task = None
        LOGGER.info("Polling stopped")

    async def get_next_batch(self, count: int) -> Batch:
        """Return up to ``count`` messages, priority entries first."""

        if count <= 0:
            return Batch()

        messages: list[Message] = []
        priority_ids: set[str] = set()

        async with self._lock:
            while self._queue and len(messages) < count:
                message = self._queue.popleft()
                messages.append(message)
                priority_ids.add(message.id)

            if len(messages) < count:
                for message in await self._fetch_above_watermark(count - len(messages)):
                    if message.id in priority_ids:
                        continue
                    messages.append(message)
                    priority_ids.add(message.id)

            self._update_surge_mode()

        if len(messages) < count:
            seen = {message.id for message in messages}
            historical = await self._fetch_historical_batch(count - len(messages))
            messages.extend(message for message in historical if message.id not in seen)

        LOGGER.debug(
            "Batch of %s requested: %s returned (%s priority, queue %s)",
            count,
            len(messages),
            len(priority_ids),
            len(self._queue),
        )
        return Batch(messages=messages, priority_ids=priority_ids)

    async def add_new_message(self, message: Message) -> None:
        """Queue a directly submitted message ahead of the historical backlog."""

        async with self._lock:
            self._enqueue(message)
        LOGGER.info("Message %s queued for priority display (queue %s)", message.id, len(self._queue))

    async def requeue_priority(self, messages: Iterable[Message]) -> None:
        """Return drained-but-unused priority messages to the head of the queue."""

        async with self._lock:
            queued = {message.id for message in self._queue}
            returning = [message for message in messages if message.id not in queued]
            self._queue.extendleft(reversed(returning))
            self._enforce_queue_cap()
            self._update_surge_mode()

    def return_unused_history(self, messages: Iterable[Message]) -> None:
        """Rewind the historical cursor so unused history is served again.

        History comes back newest first and the caller keeps a prefix of it,
        so rewinding to the highest unused id loses nothing.
        """

        ids = [message.int_id for message in messages]
        if not ids:
            return
        cursor = max(ids)
        if self._historical_cursor is None or cursor > self._historical_cursor:
            self._historical_cursor = cursor
            LOGGER.debug("Historical cursor rewound to %s for %s unused messages", cursor, len(ids))

    async def check_for_new_messages(self) -> int:
        """Poll tick: move rows above the watermark into the priority queue.

        Failures are logged and treated as "nothing new"; the timer keeps going.
        """

        async with self._lock:
            try:
                fresh = await self._call(
                    self._store.fetch_new_messages_above_watermark, self._watermark
                )
            except Exception:
                LOGGER.exception("New message polling failed")
                return 0
            for message in fresh:
                self._enqueue(message)

        if fresh:
            LOGGER.info("Polling found %s new messages", len(fresh))
        return len(fresh)

    def is_surge_mode(self) -> bool:
        return self._surge_mode

    def get_cluster_config(self) -> tuple[int, float]:
        return self._config.cluster_size, self._config.cluster_duration

    def estimate_queue_wait_time(self) -> float:
        """Seconds until the newest queued message is likely on screen.

        Each cycle frees roughly ``cluster_size - 1`` working-set slots, and
        the queue drains into those slots first.
        """

        queue_size = len(self._queue)
        if queue_size == 0:
            return 0.0
        slots_per_cycle = max(1, self._config.cluster_size - 1)
        cycles_needed = math.ceil(queue_size / slots_per_cycle)
        return cycles_needed * self._config.cluster_duration

    def get_stats(self) -> PoolStats:
        usage = self._read_memory_usage()
        return PoolStats(
            historical_cursor=self._historical_cursor,
            new_message_watermark=self._watermark,
            priority_queue_size=len(self._queue),
            surge_mode=self._surge_mode,
            queue_wait_time=self.estimate_queue_wait_time(),
            memory_usage=usage,
            memory_pressure=classify_memory_pressure(usage, self._config.memory),
        )

    def cleanup(self) -> None:
        """Stop polling and drop queued messages. Safe to call repeatedly."""

        self.stop()
        self._queue.clear()
        self._surge_mode = False

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.polling_interval)
            await self.check_for_new_messages()

    async def _call(self, func, *args):
        return await call_store(func, *args, timeout=self._config.store_timeout)

    async def _fetch_above_watermark(self, limit: int) -> list[Message]:
        # Caller holds the lock. Ascending order means a limited fetch never
        # skips ids when the watermark advances to the max id seen.
        try:
            fresh = await self._call(
                self._store.fetch_new_messages_above_watermark, self._watermark, limit
            )
        except Exception:
            LOGGER.exception("New message check failed; falling back to history")
            return []

        if fresh:
            self._watermark = max(self._watermark, max(message.int_id for message in fresh))
        return fresh

    async def _fetch_historical_batch(self, count: int) -> list[Message]:
        if self._historical_cursor is None and not await self._recycle_cursor():
            return []

        messages = await self._fetch_below_cursor(count)
        if messages is None:
            return []
        if not messages:
            LOGGER.info("Historical cursor exhausted at %s, recycling", self._historical_cursor)
            if not await self._recycle_cursor():
                return []
            messages = await self._fetch_below_cursor(count)
            if not messages:
                return []

        self._historical_cursor = min(message.int_id for message in messages) - 1
        return messages

    async def _fetch_below_cursor(self, count: int) -> Optional[list[Message]]:
        """Fetch at the cursor; None signals a store failure, not exhaustion."""

        try:
            return await self._call(
                self._store.fetch_batch_with_cursor,
                self._historical_cursor,
                count,
                "DESC",
                self._watermark,
            )
        except Exception:
            LOGGER.exception("Historical fetch failed at cursor %s", self._historical_cursor)
            return None

    async def _recycle_cursor(self) -> bool:
        try:
            max_id = await self._call(self._store.get_max_message_id)
        except Exception:
            LOGGER.exception("Could not read max id while recycling the historical cursor")
            return False

        # Ids above the watermark belong to the new-message path.
        cursor = min(max_id, self._watermark)
        if cursor <= 0:
            self._historical_cursor = None
            return False
        self._historical_cursor = cursor
        LOGGER.info("Historical cursor recycled to %s", cursor)
        return True

    def _enqueue(self, message: Message) -> None:
        # Caller holds the lock.
        if any(queued.id == message.id for queued in self._queue):
            return
        self._queue.append(message)
        if message.int_id > self._watermark:
            self._watermark = message.int_id
        self._enforce_queue_cap()
        self._update_surge_mode()

    def _enforce_queue_cap(self) -> None:
        max_size = self._max_queue_size()
        overflow = len(self._queue) - max_size
        if overflow <= 0:
            return
        for _ in range(overflow):
            self._queue.popleft()
        LOGGER.warning("Priority queue overflow: dropped %s oldest messages (cap %s)", overflow, max_size)

    def _max_queue_size(self) -> int:
        base_size = self._config.priority_queue.max_size
        if not self._config.priority_queue.memory_adaptive or self._memory_probe is None:
            return base_size
        level = classify_memory_pressure(self._read_memory_usage(), self._config.memory)
        return adaptive_queue_size(base_size, level)

    def _read_memory_usage(self) -> float:
        if self._memory_probe is None:
            return 0.0
        try:
            return float(self._memory_probe())
        except Exception:
            LOGGER.exception("Memory probe failed; assuming %s pressure", NORMAL)
            return 0.0

    def _update_surge_mode(self) -> None:
        should_surge = len(self._queue) >= self._config.surge.threshold
        if should_surge and not self._surge_mode:
            LOGGER.warning("Surge mode activated (queue %s)", len(self._queue))
        elif not should_surge and self._surge_mode:
            LOGGER.info("Surge mode deactivated (queue %s)", len(self._queue))
        self._surge_mode = should_surge
