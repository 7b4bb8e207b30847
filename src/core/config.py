"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PriorityQueueConfig:
    """Priority queue sizing for freshly submitted messages."""

    max_size: int = 200
    memory_adaptive: bool = True

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("priority_queue.max_size must be at least 1")


@dataclass(frozen=True)
class MemoryPressureConfig:
    """Heap utilization thresholds (percent) for adaptive queue sizing."""

    moderate: float = 65.0
    high: float = 75.0
    critical: float = 85.0

    def __post_init__(self) -> None:
        if not 0 <= self.moderate <= self.high <= self.critical <= 100:
            raise ValueError("memory thresholds must satisfy 0 <= moderate <= high <= critical <= 100")


@dataclass(frozen=True)
class SurgeConfig:
    """Queue length at which the pool reports surge mode."""

    threshold: int = 50


@dataclass(frozen=True)
class SimilarityConfig:
    """Weights for pairwise message similarity.

    Temporal proximity dominates (70/30 by default); the temporal score decays
    exponentially with the gap between creation times.
    """

    temporal_weight: float = 0.7
    length_weight: float = 0.3
    temporal_decay: float = 7 * 24 * 60 * 60.0

    def __post_init__(self) -> None:
        if self.temporal_weight < 0 or self.length_weight < 0:
            raise ValueError("similarity weights must not be negative")
        if self.temporal_weight + self.length_weight <= 0:
            raise ValueError("similarity weights must sum to a positive number")
        if self.temporal_decay <= 0:
            raise ValueError("similarity.temporal_decay must be positive")


@dataclass(frozen=True)
class PoolConfig:
    """Traversal settings shared by the pool manager, selector, and service.

    Durations and intervals are in seconds.
    """

    working_set_size: int = 300
    cluster_size: int = 20
    cluster_duration: float = 20.0
    polling_interval: float = 5.0
    store_timeout: float = 5.0
    replenish_buffer: float = 1.2
    replenish_max_attempts: int = 5
    working_set_tolerance: float = 0.1
    priority_queue: PriorityQueueConfig = field(default_factory=PriorityQueueConfig)
    memory: MemoryPressureConfig = field(default_factory=MemoryPressureConfig)
    surge: SurgeConfig = field(default_factory=SurgeConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)

    def __post_init__(self) -> None:
        if self.working_set_size < 1:
            raise ValueError("working_set_size must be at least 1")
        if self.cluster_size < 2:
            raise ValueError("cluster_size must be at least 2 (focus plus one related)")
        if self.cluster_duration <= 0 or self.polling_interval <= 0 or self.store_timeout <= 0:
            raise ValueError("cluster_duration, polling_interval and store_timeout must be positive")
        if self.replenish_buffer < 1:
            raise ValueError("replenish_buffer must be >= 1")
        if self.replenish_max_attempts < 1:
            raise ValueError("replenish_max_attempts must be at least 1")
        if not 0 <= self.working_set_tolerance < 1:
            raise ValueError("working_set_tolerance must be in [0, 1)")
