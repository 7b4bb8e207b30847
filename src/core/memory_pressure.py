"""Memory pressure classification for adaptive queue sizing."""

from __future__ import annotations

from core.config import MemoryPressureConfig

NORMAL = "normal"
MODERATE = "moderate"
HIGH = "high"
CRITICAL = "critical"

_QUEUE_FACTORS = {
    NORMAL: 1.0,
    MODERATE: 0.75,
    HIGH: 0.5,
    CRITICAL: 0.25,
}


def classify_memory_pressure(usage: float, thresholds: MemoryPressureConfig) -> str:
    """Map a utilization percentage onto a coarse pressure level."""

    if usage > thresholds.critical:
        return CRITICAL
    if usage > thresholds.high:
        return HIGH
    if usage > thresholds.moderate:
        return MODERATE
    return NORMAL


def adaptive_queue_size(base_size: int, level: str) -> int:
    """Shrink the queue cap under pressure, never below one entry."""

    try:
        factor = _QUEUE_FACTORS[level]
    except KeyError:
        raise ValueError(f"Unsupported memory pressure level: {level}") from None
    return max(1, int(base_size * factor))
