"""Application entry point for the constellation installation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import random
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.cluster_formatting import format_cluster, format_cluster_stats, format_working_set_change
from adapters.memory_probe import process_memory_usage, psutil_memory_usage
from core.config import (
    MemoryPressureConfig,
    PoolConfig,
    PriorityQueueConfig,
    SimilarityConfig,
    SurgeConfig,
)
from core.logic_service import MessageLogicService
from core.models import NewMessage, WorkingSetChange
from core.ports import MemoryProbe
from core.validation import normalize_message_content, validate_message_content
from store import build_store

NAME = "CONSTELLATION"
FONT = "tarty-1"

_SEED_TEMPLATES = [
    "Missing my {subject} every day",
    "Still can't believe {subject} is gone",
    "The silence where {subject} used to be",
    "Grieving the loss of {subject}",
    "Some days the absence of {subject} is overwhelming",
    "Learning to live without {subject}",
    "The world feels emptier without {subject}",
    "Carrying the memory of {subject}",
]
_SEED_SUBJECTS = [
    "my dog",
    "my cat",
    "my father",
    "my mother",
    "my friend",
    "my grandmother",
    "my career",
    "my home",
    "my marriage",
    "the person I used to be",
    "my health",
    "my dreams",
]


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/constellation.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_pool_config() -> PoolConfig:
    return PoolConfig(
        working_set_size=settings.WORKING_SET_SIZE,
        cluster_size=settings.CLUSTER_SIZE,
        cluster_duration=settings.CLUSTER_DURATION,
        polling_interval=settings.POLLING_INTERVAL,
        store_timeout=settings.STORE_TIMEOUT,
        replenish_buffer=settings.REPLENISH_BUFFER,
        replenish_max_attempts=settings.REPLENISH_MAX_ATTEMPTS,
        working_set_tolerance=settings.WORKING_SET_TOLERANCE,
        priority_queue=PriorityQueueConfig(
            max_size=settings.PRIORITY_QUEUE_MAX_SIZE,
            memory_adaptive=settings.PRIORITY_QUEUE_MEMORY_ADAPTIVE,
        ),
        memory=MemoryPressureConfig(
            moderate=settings.MEMORY_MODERATE,
            high=settings.MEMORY_HIGH,
            critical=settings.MEMORY_CRITICAL,
        ),
        surge=SurgeConfig(threshold=settings.SURGE_THRESHOLD),
        similarity=SimilarityConfig(
            temporal_weight=settings.SIMILARITY_TEMPORAL_WEIGHT,
            length_weight=settings.SIMILARITY_LENGTH_WEIGHT,
            temporal_decay=settings.SIMILARITY_TEMPORAL_DECAY,
        ),
    )


def _select_memory_probe() -> MemoryProbe:
    if settings.MEMORY_PROBE == "system":
        return psutil_memory_usage
    if settings.MEMORY_PROBE == "process":
        return process_memory_usage
    raise RuntimeError("memory.probe must be 'system' or 'process'")


async def _run_installation(config: PoolConfig) -> None:
    logger = logging.getLogger(__name__)

    store = build_store()
    service = MessageLogicService(store, config, memory_probe=_select_memory_probe())

    def _on_change(change: WorkingSetChange) -> None:
        logger.info(format_working_set_change(change))

    service.on_working_set_change(_on_change)
    await service.initialize()
    cluster_size, duration = service.get_cluster_config()
    logger.info(
        "Installation running: working set %s, cluster size %s, %ss per cluster",
        config.working_set_size,
        cluster_size,
        duration,
    )

    # Explicit lifecycle: cleanup always stops the polling task.
    try:
        while True:
            cluster = await service.get_next_cluster()
            if cluster is None:
                await asyncio.sleep(config.polling_interval)
                continue
            print(format_cluster(cluster, settings.SNIPPET_CHARS), flush=True)
            print(format_cluster_stats(service.get_cluster_stats(cluster)), flush=True)
            await asyncio.sleep(cluster.duration)
    finally:
        service.cleanup()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting constellation")
    config = _build_pool_config()
    try:
        asyncio.run(_run_installation(config))
    except KeyboardInterrupt:
        logger.info("Constellation stopped")


def _submit(content: str) -> None:
    _configure_logging()

    # Content checks belong to the submission boundary; the engine re-checks.
    error = validate_message_content(content)
    if error:
        raise SystemExit(f"Submission rejected: {error}")

    store = build_store()
    inserted = store.insert_message(
        NewMessage(
            content=normalize_message_content(content),
            created_at=datetime.now(timezone.utc),
        )
    )
    if inserted is None:
        raise SystemExit("Submission failed, please try again")
    # A running installation picks the row up on its next polling tick.
    print(f"Message {inserted.id} submitted")


def _seed(count: int, days: int) -> None:
    _configure_logging()
    store = build_store()

    now = datetime.now(timezone.utc)
    timestamps = sorted(now - timedelta(seconds=random.uniform(0, days * 86400)) for _ in range(count))
    for index, created_at in enumerate(timestamps):
        template = _SEED_TEMPLATES[index % len(_SEED_TEMPLATES)]
        subject = _SEED_SUBJECTS[index % len(_SEED_SUBJECTS)]
        store.insert_message(NewMessage(content=template.format(subject=subject), created_at=created_at))

    logging.getLogger(__name__).info("Seeded %s messages over %s days", count, days)
    print(f"Seeded {count} messages")


def _stats() -> None:
    store = build_store()
    print(f"Visible messages: {store.count_messages()}")
    print(f"Newest message id: {store.get_max_message_id()}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="constellation")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the traversal loop")

    submit_parser = subparsers.add_parser("submit", help="Submit a new message")
    submit_parser.add_argument("content", help="Message text (1-280 characters)")

    seed_parser = subparsers.add_parser("seed", help="Populate the store with demo messages")
    seed_parser.add_argument("--count", type=int, default=600)
    seed_parser.add_argument("--days", type=int, default=30, help="Spread timestamps over this many days")

    subparsers.add_parser("stats", help="Show message store figures")

    args = parser.parse_args(argv)
    if args.command == "submit":
        _submit(args.content)
        return
    if args.command == "seed":
        _seed(args.count, args.days)
        return
    if args.command == "stats":
        _stats()
        return
    _run()


if __name__ == "__main__":
    main()
