"""Pairwise message similarity (core domain).

The score blends temporal proximity with content-length similarity. Both
features are symmetric and reach 1.0 for identical inputs, so the weighted
blend is symmetric and peaks for messages with the same timestamp and length.
"""

from __future__ import annotations

import math
from typing import Iterable, List

from core.config import SimilarityConfig
from core.models import Message, RelatedMessage


def temporal_similarity(a: Message, b: Message, decay_seconds: float) -> float:
    gap = abs((a.created_at - b.created_at).total_seconds())
    return math.exp(-gap / decay_seconds)


def length_similarity(a: Message, b: Message) -> float:
    len_a = len(a.content)
    len_b = len(b.content)
    longest = max(len_a, len_b)
    if longest == 0:
        return 1.0
    return 1.0 - abs(len_a - len_b) / longest


def calculate_similarity(a: Message, b: Message, config: SimilarityConfig) -> float:
    """Return a 0..1 relatedness score for two messages."""

    total_weight = config.temporal_weight + config.length_weight
    score = (
        config.temporal_weight * temporal_similarity(a, b, config.temporal_decay)
        + config.length_weight * length_similarity(a, b)
    ) / total_weight
    return min(1.0, max(0.0, score))


def sort_by_similarity(
    focus: Message, candidates: Iterable[Message], config: SimilarityConfig
) -> List[RelatedMessage]:
    """Score candidates against the focus, most similar first.

    Ties keep the candidate order, which keeps selection deterministic.
    """

    scored = [
        RelatedMessage(message=candidate, similarity=calculate_similarity(focus, candidate, config))
        for candidate in candidates
    ]
    scored.sort(key=lambda item: item.similarity, reverse=True)
    return scored
