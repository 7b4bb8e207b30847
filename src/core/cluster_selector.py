"""Cluster selection (core domain).

Stateless: every method is a pure function of its inputs plus the static
config, so the selector is safe to call from any context.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional, Sequence

from core.config import PoolConfig
from core.models import Message, RelatedMessage
from core.similarity import sort_by_similarity

LOGGER = logging.getLogger(__name__)

# Temporal spread at which a cluster counts as fully diverse.
_DIVERSITY_TIME_SPAN = 30 * 24 * 60 * 60.0
# Length standard deviation (characters) at which a cluster counts as fully diverse.
_DIVERSITY_LENGTH_STDDEV = 100.0


class ClusterSelector:
    """Picks the related set and the next focus for one traversal step."""

    def __init__(self, config: PoolConfig) -> None:
        self._config = config

    def select_related_messages(
        self,
        focus: Message,
        candidates: Sequence[Message],
        previous_focus_id: Optional[str] = None,
        priority_ids: Optional[set[str]] = None,
    ) -> List[RelatedMessage]:
        """Return up to ``cluster_size - 1`` messages related to the focus.

        The previous focus, when present among the candidates, always takes
        the first slot with similarity 1.0 so the hand-off between clusters
        stays visible. Remaining slots go to the most similar candidates,
        with up to half of them held for priority messages. The result is
        ordered by similarity after the previous focus.
        """

        available = [message for message in candidates if message.id != focus.id]
        slots = self._config.cluster_size - 1

        previous_focus: Optional[Message] = None
        if previous_focus_id is not None and previous_focus_id != focus.id:
            previous_focus = next(
                (message for message in available if message.id == previous_focus_id), None
            )
            if previous_focus is None:
                LOGGER.warning("Previous focus %s not found among candidates", previous_focus_id)
            else:
                available = [message for message in available if message.id != previous_focus_id]

        related: List[RelatedMessage] = []
        if previous_focus is not None:
            related.append(RelatedMessage(message=previous_focus, similarity=1.0))

        seen = {focus.id} | {item.message.id for item in related}
        unique: List[Message] = []
        for message in available:
            if message.id in seen:
                continue
            seen.add(message.id)
            unique.append(message)

        priority_ids = priority_ids or set()
        scored = sort_by_similarity(focus, unique, self._config.similarity)
        open_slots = max(0, slots - len(related))

        # Priority candidates take up to half of the open slots, at least one,
        # regardless of how similar they are to the focus.
        priority_slots = min(open_slots, max(1, math.ceil(open_slots / 2)))
        promoted = [item for item in scored if item.message.id in priority_ids][:priority_slots]
        promoted_ids = {item.message.id for item in promoted}
        rest = [item for item in scored if item.message.id not in promoted_ids]
        chosen = promoted + rest[: open_slots - len(promoted)]
        chosen.sort(key=lambda item: item.similarity, reverse=True)
        related.extend(chosen)

        LOGGER.debug(
            "Focus %s: %s related (%s priority) from %s candidates%s",
            focus.id,
            len(related),
            sum(1 for item in related if item.message.id in priority_ids),
            len(candidates),
            " (previous focus kept)" if previous_focus else "",
        )
        return related

    def select_next_message(
        self,
        focus: Message,
        related: Sequence[RelatedMessage],
        working_set: Iterable[Message],
        previous_focus_id: Optional[str] = None,
        priority_ids: Optional[set[str]] = None,
    ) -> Optional[Message]:
        """Choose the message that becomes focus in the following cycle.

        Order of preference:
        - a priority message from ``related`` (fresh submissions surface fast)
        - the most similar entry in ``related``
        - a priority message anywhere in the working set
        - any other message in the working set

        The previous focus is skipped unless it is the only option, otherwise
        two messages would hand the focus back and forth forever. Returns None
        only when the working set holds nothing but the focus.
        """

        priority_ids = priority_ids or set()

        def eligible(message: Message) -> bool:
            return message.id != focus.id and message.id != previous_focus_id

        related_messages = [item.message for item in related if eligible(item.message)]
        for message in related_messages:
            if message.id in priority_ids:
                return message
        if related_messages:
            return max(
                (item for item in related if eligible(item.message)),
                key=lambda item: item.similarity,
            ).message

        pool = [message for message in working_set if message.id != focus.id]
        for message in pool:
            if message.id in priority_ids and message.id != previous_focus_id:
                return message
        for message in pool:
            if message.id != previous_focus_id:
                return message
        if pool:
            return pool[0]

        LOGGER.warning("No next message available after focus %s", focus.id)
        return None

    def validate_cluster(self, focus: Optional[Message], related: Sequence[RelatedMessage]) -> bool:
        """Reject clusters without a focus, with duplicates, or with focus in related."""

        if focus is None:
            LOGGER.error("Cluster validation failed: no focus")
            return False

        related_ids = [item.message.id for item in related]
        if len(set(related_ids)) != len(related_ids):
            LOGGER.error("Cluster validation failed: duplicate related messages")
            return False

        if focus.id in related_ids:
            LOGGER.error("Cluster validation failed: focus %s in related", focus.id)
            return False

        return True

    def calculate_cluster_diversity(self, messages: Sequence[Message]) -> float:
        """Return 0..1 diversity from temporal spread and length variation."""

        if len(messages) < 2:
            return 0.0

        timestamps = [message.created_at.timestamp() for message in messages]
        temporal = min(1.0, (max(timestamps) - min(timestamps)) / _DIVERSITY_TIME_SPAN)

        lengths = [len(message.content) for message in messages]
        mean = sum(lengths) / len(lengths)
        stddev = math.sqrt(sum((length - mean) ** 2 for length in lengths) / len(lengths))
        length = min(1.0, stddev / _DIVERSITY_LENGTH_STDDEV)

        return (temporal + length) / 2

    def get_cluster_stats(self, focus: Message, related: Sequence[RelatedMessage]) -> dict:
        similarities = [item.similarity for item in related]
        messages = [focus, *(item.message for item in related)]
        return {
            "total_messages": len(messages),
            "avg_similarity": sum(similarities) / len(similarities) if similarities else 0.0,
            "min_similarity": min(similarities) if similarities else 0.0,
            "max_similarity": max(similarities) if similarities else 0.0,
            "diversity": self.calculate_cluster_diversity(messages),
        }
