"""Traversal coordinator.

This module is rendering-agnostic. It owns the working set (the bounded pool
of messages eligible for display) and drives one cycle per ``get_next_cluster``
call:

1) Pick the focus (the previous cycle's "next", or any working-set message)
2) Select related messages and the next focus
3) Validate the cluster; invalid clusters are never emitted
4) Consume priority for every featured message
5) Evict the outgoing messages (the focus stays one more cycle)
6) Replenish from the pool up to the target size
7) Emit the membership delta and advance continuity state

Callers must serialize cycles; only the pool's polling task runs alongside.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from core.cluster_selector import ClusterSelector
from core.config import PoolConfig
from core.errors import ClusterValidationError, StoreUnavailableError
from core.models import (
    REASON_CLUSTER_CYCLE,
    REASON_INITIALIZATION,
    REASON_REPLENISHMENT,
    Cluster,
    Message,
    NewMessage,
    ServiceStats,
    WorkingSetChange,
)
from core.pool_manager import MessagePoolManager
from core.ports import MemoryProbe, MessageStorePort, WorkingSetListener
from core.store_calls import call_store
from core.validation import normalize_message_content, validate_message_content

LOGGER = logging.getLogger(__name__)


class MessageLogicService:
    """Primary API for the rendering layer and the submission boundary."""

    def __init__(
        self,
        store: MessageStorePort,
        config: PoolConfig,
        memory_probe: Optional[MemoryProbe] = None,
        pool_manager: Optional[MessagePoolManager] = None,
        cluster_selector: Optional[ClusterSelector] = None,
    ) -> None:
        self._store = store
        self._config = config
        self._pool = pool_manager or MessagePoolManager(store, config, memory_probe)
        self._selector = cluster_selector or ClusterSelector(config)

        # Insertion-ordered; the first entry is the arbitrary focus pick.
        self._working_set: dict[str, Message] = {}
        self._priority_ids: set[str] = set()

        self._next_focus: Optional[Message] = None
        self._previous_focus_id: Optional[str] = None
        self._clusters_shown = 0
        self._initialized = False
        self._listener: Optional[WorkingSetListener] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Connect, establish pool cursors, and load the initial working set."""

        if self._initialized:
            LOGGER.warning("Message logic service already initialized")
            return

        try:
            connected = await call_store(self._store.test_connection, timeout=self._config.store_timeout)
        except Exception as exc:
            raise StoreUnavailableError(f"Message store connection failed: {exc}") from exc
        if not connected:
            raise StoreUnavailableError("Message store connection failed")

        await self._pool.initialize()
        try:
            batch = await self._pool.get_next_batch(self._config.working_set_size)
        except Exception:
            self._pool.cleanup()
            raise

        for message in batch.messages:
            self._working_set.setdefault(message.id, message)
        self._priority_ids = {mid for mid in batch.priority_ids if mid in self._working_set}
        self._initialized = True

        LOGGER.info(
            "Working set loaded: %s messages (%s priority)",
            len(self._working_set),
            len(self._priority_ids),
        )
        self._emit(
            WorkingSetChange(
                removed=[],
                added=list(self._working_set.values()),
                reason=REASON_INITIALIZATION,
            )
        )

    async def get_next_cluster(self) -> Optional[Cluster]:
        """Advance the traversal one step; None means there is nothing to show."""

        self._require_initialized()

        if not self._working_set:
            # Covers a store that was empty at startup and has since filled up.
            added = await self._replenish()
            if added:
                self._emit(WorkingSetChange(removed=[], added=added, reason=REASON_REPLENISHMENT))
            if not self._working_set:
                LOGGER.info("Working set is empty; no cluster to show")
                return None

        focus = self._choose_focus()
        candidates = list(self._working_set.values())
        related = self._selector.select_related_messages(
            focus, candidates, self._previous_focus_id, self._priority_ids
        )
        next_message = self._selector.select_next_message(
            focus, related, candidates, self._previous_focus_id, self._priority_ids
        )

        if not self._selector.validate_cluster(focus, related):
            raise ClusterValidationError(f"Cluster for focus {focus.id} failed validation")

        cluster = Cluster(
            focus=focus,
            related=tuple(related),
            next=next_message,
            duration=self._config.cluster_duration,
            timestamp=datetime.now(timezone.utc),
            sequence_number=self._clusters_shown + 1,
        )

        # Priority is a one-time bonus: featuring a message in any role spends it.
        related_ids = [item.message.id for item in related]
        self._priority_ids.difference_update([focus.id, *related_ids])

        if next_message is not None:
            # The focus stays one more cycle so it can reappear as the
            # continuity entry of the next cluster.
            outgoing = [mid for mid in related_ids if mid != next_message.id]
        else:
            LOGGER.warning("Degenerate cluster at focus %s; evicting it for a fresh start", focus.id)
            outgoing = [focus.id, *related_ids]
            self._previous_focus_id = None
            self._next_focus = None

        for mid in outgoing:
            self._working_set.pop(mid, None)

        added = await self._replenish()
        self._check_tolerance()
        self._emit(WorkingSetChange(removed=outgoing, added=added, reason=REASON_CLUSTER_CYCLE))

        if next_message is not None:
            self._previous_focus_id = focus.id
            self._next_focus = next_message
        self._clusters_shown += 1

        LOGGER.debug(
            "Cluster %s: focus %s, %s related, next %s (-%s +%s)",
            cluster.sequence_number,
            focus.id,
            len(related),
            cluster.next_id,
            len(outgoing),
            len(added),
        )
        return cluster

    async def add_new_message(self, content: str) -> Optional[Message]:
        """Insert a submission and put it on the fast path.

        Returns None when the content is invalid or the store rejects the
        insert; the submission boundary turns that into a retry prompt.
        """

        self._require_initialized()

        error = validate_message_content(content)
        if error:
            LOGGER.warning("Submission rejected: %s", error)
            return None

        payload = NewMessage(
            content=normalize_message_content(content),
            created_at=datetime.now(timezone.utc),
            approved=True,
        )
        try:
            # No outer timeout: a cancelled wait would not stop the worker
            # thread from committing, so the store's own busy timeout bounds it.
            inserted = await call_store(self._store.insert_message, payload, timeout=None)
        except Exception:
            LOGGER.exception("Message insert failed")
            return None
        if inserted is None:
            LOGGER.error("Message insert returned no record")
            return None

        await self._pool.add_new_message(inserted)
        LOGGER.info("Message %s submitted", inserted.id)
        return inserted

    def on_working_set_change(self, callback: Optional[WorkingSetListener]) -> None:
        """Register the single membership consumer, replacing any previous one."""

        if self._listener is not None and callback is not None:
            LOGGER.info("Replacing working set change callback")
        self._listener = callback

    def get_working_set(self) -> list[Message]:
        return list(self._working_set.values())

    def get_working_set_size(self) -> int:
        return len(self._working_set)

    def get_priority_message_count(self) -> int:
        return len(self._priority_ids)

    def get_priority_ids(self) -> set[str]:
        return set(self._priority_ids)

    def is_surge_mode(self) -> bool:
        return self._pool.is_surge_mode()

    def get_cluster_config(self) -> tuple[int, float]:
        return self._pool.get_cluster_config()

    def get_cluster_stats(self, cluster: Cluster) -> dict:
        """Similarity spread and diversity of an emitted cluster."""

        return self._selector.get_cluster_stats(cluster.focus, cluster.related)

    async def get_total_message_count(self) -> int:
        self._require_initialized()
        return await call_store(self._store.count_messages, timeout=self._config.store_timeout)

    def get_stats(self) -> ServiceStats:
        return ServiceStats(
            initialized=self._initialized,
            total_clusters_shown=self._clusters_shown,
            current_focus=self._next_focus.id if self._next_focus else None,
            previous_focus=self._previous_focus_id,
            working_set_size=len(self._working_set),
            priority_message_count=len(self._priority_ids),
            pool=self._pool.get_stats(),
        )

    def reset_traversal(self) -> None:
        """Forget continuity state; the working set and pool cursors are kept."""

        self._next_focus = None
        self._previous_focus_id = None
        self._clusters_shown = 0
        LOGGER.info("Traversal reset")

    def cleanup(self) -> None:
        """Stop polling and release all state. Safe to call repeatedly."""

        self._pool.cleanup()
        self._working_set.clear()
        self._priority_ids.clear()
        self._listener = None
        self._next_focus = None
        self._previous_focus_id = None
        self._clusters_shown = 0
        self._initialized = False
        LOGGER.info("Message logic service cleaned up")

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Service not initialized. Call initialize() first.")

    def _choose_focus(self) -> Message:
        if self._next_focus is not None:
            focus = self._working_set.get(self._next_focus.id)
            if focus is not None:
                return focus
            LOGGER.warning("Promoted focus %s left the working set; picking a fresh one", self._next_focus.id)
            self._next_focus = None
            self._previous_focus_id = None
        return next(iter(self._working_set.values()))

    async def _replenish(self) -> list[Message]:
        """Top the working set back up to target, tolerating duplicates.

        Requests are padded by ``replenish_buffer`` to absorb duplicate
        filtering, and the attempt count is capped because a small or drained
        store can keep answering with messages we already hold.
        """

        deficit = self._config.working_set_size - len(self._working_set)
        if deficit <= 0:
            return []

        added: list[Message] = []
        surplus_priority: list[Message] = []
        surplus_history: list[Message] = []
        attempts = 0
        while len(added) < deficit and attempts < self._config.replenish_max_attempts:
            attempts += 1
            request = math.ceil((deficit - len(added)) * self._config.replenish_buffer)
            batch = await self._pool.get_next_batch(request)
            if not batch.messages:
                LOGGER.warning("Pool exhausted; stopping replenishment after %s attempts", attempts)
                break

            for message in batch.messages:
                if message.id in self._working_set:
                    continue
                if len(added) < deficit:
                    self._working_set[message.id] = message
                    added.append(message)
                    if message.id in batch.priority_ids:
                        self._priority_ids.add(message.id)
                elif message.id in batch.priority_ids:
                    surplus_priority.append(message)
                else:
                    surplus_history.append(message)

        # Over-fetched messages go back to the pool so no id is skipped.
        if surplus_priority:
            await self._pool.requeue_priority(surplus_priority)
        self._pool.return_unused_history(surplus_history)

        LOGGER.debug("Replenished %s of %s missing messages", len(added), deficit)
        return added

    def _check_tolerance(self) -> None:
        target = self._config.working_set_size
        tolerance = self._config.working_set_tolerance
        low = math.floor(target * (1 - tolerance))
        high = math.ceil(target * (1 + tolerance))
        size = len(self._working_set)
        if size < low or size > high:
            LOGGER.warning(
                "Working set outside acceptable range: %s (target %s, range %s-%s)",
                size,
                target,
                low,
                high,
            )

    def _emit(self, change: WorkingSetChange) -> None:
        if self._listener is None:
            return
        try:
            self._listener(change)
        except Exception:
            LOGGER.exception("Working set change callback failed")
