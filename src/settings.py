"""Static configuration for the constellation engine.

All operator-editable settings (traversal sizes, timing, queue limits,
similarity weights, logging) live in a single JSON file for quick edits
without touching Python.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Settings are loaded from config.json at the project root.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, operator-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database (CONSTELLATION_DB_PATH overrides it).
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "constellation.db"))

# Traversal shape and pacing. Durations are seconds.
# - WORKING_SET_SIZE: messages eligible for display at any time
# - CLUSTER_SIZE: focus plus related messages per cluster
# - CLUSTER_DURATION: advisory display time per cluster
# - POLLING_INTERVAL: how often the store is checked for new submissions
# - STORE_TIMEOUT: upper bound for any single store call
_pool = _CONFIG.get("pool", {})
WORKING_SET_SIZE = int(_pool.get("working_set_size", 300))
CLUSTER_SIZE = int(_pool.get("cluster_size", 20))
CLUSTER_DURATION = float(_pool.get("cluster_duration", 20.0))
POLLING_INTERVAL = float(_pool.get("polling_interval", 5.0))
STORE_TIMEOUT = float(_pool.get("store_timeout", 5.0))
REPLENISH_BUFFER = float(_pool.get("replenish_buffer", 1.2))
REPLENISH_MAX_ATTEMPTS = int(_pool.get("replenish_max_attempts", 5))
WORKING_SET_TOLERANCE = float(_pool.get("working_set_tolerance", 0.1))

# Priority queue for fresh submissions; shrinks under memory pressure when
# PRIORITY_QUEUE_MEMORY_ADAPTIVE is on.
_queue = _CONFIG.get("priority_queue", {})
PRIORITY_QUEUE_MAX_SIZE = int(_queue.get("max_size", 200))
PRIORITY_QUEUE_MEMORY_ADAPTIVE = bool(_queue.get("memory_adaptive", True))
SURGE_THRESHOLD = int(_queue.get("surge_threshold", 50))

# Memory pressure thresholds (percent). MEMORY_PROBE is "system" or "process".
_memory = _CONFIG.get("memory", {})
MEMORY_PROBE = _memory.get("probe", "system")
MEMORY_MODERATE = float(_memory.get("moderate", 65))
MEMORY_HIGH = float(_memory.get("high", 75))
MEMORY_CRITICAL = float(_memory.get("critical", 85))

# Similarity blend between creation-time proximity and content length.
_similarity = _CONFIG.get("similarity", {})
SIMILARITY_TEMPORAL_WEIGHT = float(_similarity.get("temporal_weight", 0.7))
SIMILARITY_LENGTH_WEIGHT = float(_similarity.get("length_weight", 0.3))
SIMILARITY_TEMPORAL_DECAY = float(_similarity.get("temporal_decay", 7 * 24 * 60 * 60))

# Console rendering of clusters.
_display = _CONFIG.get("display", {})
SNIPPET_CHARS = int(_display.get("snippet_chars", 80))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
