"""Host memory probe backed by psutil."""

from __future__ import annotations

import psutil


def psutil_memory_usage() -> float:
    """Return system memory utilization in percent (0-100)."""

    return float(psutil.virtual_memory().percent)


def process_memory_usage() -> float:
    """Return this process's share of physical memory in percent (0-100)."""

    return float(psutil.Process().memory_percent())
