from __future__ import annotations

import asyncio

import pytest

from core.config import PriorityQueueConfig, SurgeConfig
from core.errors import PoolInitializationError
from core.memory_pressure import CRITICAL, NORMAL
from core.pool_manager import MessagePoolManager
from fakes import FakeMessageStore, FixedMemoryProbe, make_config, make_message


def _ids(batch) -> list[int]:
    return [message.int_id for message in batch.messages]


def test_initialize_on_empty_store_starts_polling() -> None:
    async def scenario() -> None:
        pool = MessagePoolManager(FakeMessageStore(), make_config())
        await pool.initialize()
        try:
            assert pool.historical_cursor is None
            assert pool.new_message_watermark == 0
            assert pool.is_polling
        finally:
            pool.cleanup()

    asyncio.run(scenario())


def test_initialize_sets_both_cursors_to_max_id() -> None:
    async def scenario() -> None:
        pool = MessagePoolManager(FakeMessageStore(count=5), make_config())
        await pool.initialize()
        try:
            assert pool.historical_cursor == 5
            assert pool.new_message_watermark == 5
        finally:
            pool.cleanup()

    asyncio.run(scenario())


def test_initialize_failure_is_fatal() -> None:
    store = FakeMessageStore(count=5)
    store.fail_max_id = True
    pool = MessagePoolManager(store, make_config())

    with pytest.raises(PoolInitializationError):
        asyncio.run(pool.initialize())
    assert not pool.is_polling


def test_history_walks_backwards_and_recycles() -> None:
    async def scenario() -> list[list[int]]:
        pool = MessagePoolManager(FakeMessageStore(count=5), make_config())
        await pool.initialize()
        try:
            return [_ids(await pool.get_next_batch(3)) for _ in range(3)]
        finally:
            pool.cleanup()

    assert asyncio.run(scenario()) == [[5, 4, 3], [2, 1], [5, 4, 3]]


def test_cursor_moves_below_oldest_returned_id() -> None:
    async def scenario() -> MessagePoolManager:
        pool = MessagePoolManager(FakeMessageStore(count=10), make_config())
        await pool.initialize()
        await pool.get_next_batch(4)
        pool.cleanup()
        return pool

    assert asyncio.run(scenario()).historical_cursor == 6


def test_hidden_rows_are_skipped_by_history() -> None:
    store = FakeMessageStore(count=6)
    store.hide(5)

    async def scenario() -> list[int]:
        pool = MessagePoolManager(store, make_config())
        await pool.initialize()
        try:
            return _ids(await pool.get_next_batch(3))
        finally:
            pool.cleanup()

    assert asyncio.run(scenario()) == [6, 4, 3]


def test_priority_queue_is_drained_first_and_tagged() -> None:
    store = FakeMessageStore(count=5)

    async def scenario():
        pool = MessagePoolManager(store, make_config())
        await pool.initialize()
        try:
            await pool.add_new_message(store.add("just submitted"))
            assert pool.priority_queue_size == 1
            assert pool.new_message_watermark == 6
            return await pool.get_next_batch(3)
        finally:
            pool.cleanup()

    batch = asyncio.run(scenario())
    assert _ids(batch) == [6, 5, 4]
    assert batch.priority_ids == {"6"}


def test_new_rows_above_watermark_are_fetched_before_history() -> None:
    store = FakeMessageStore(count=5)

    async def scenario():
        pool = MessagePoolManager(store, make_config())
        await pool.initialize()
        try:
            store.add()
            store.add()
            batch = await pool.get_next_batch(4)
            assert pool.new_message_watermark == 7
            return batch
        finally:
            pool.cleanup()

    batch = asyncio.run(scenario())
    assert _ids(batch) == [6, 7, 5, 4]
    assert batch.priority_ids == {"6", "7"}


def test_new_message_failure_falls_back_to_history_below_watermark() -> None:
    store = FakeMessageStore(count=5)

    async def scenario():
        pool = MessagePoolManager(store, make_config())
        await pool.initialize()
        try:
            store.add()
            store.fail_new = True
            return await pool.get_next_batch(10)
        finally:
            pool.cleanup()

    batch = asyncio.run(scenario())
    # Row 6 sits above the watermark and must wait for the new-message path.
    assert _ids(batch) == [5, 4, 3, 2, 1]
    assert batch.priority_ids == set()


def test_history_failure_returns_partial_batch() -> None:
    store = FakeMessageStore(count=5)

    async def scenario():
        pool = MessagePoolManager(store, make_config())
        await pool.initialize()
        try:
            store.fail_history = True
            batch = await pool.get_next_batch(3)
            assert pool.historical_cursor == 5
            return batch
        finally:
            pool.cleanup()

    assert _ids(asyncio.run(scenario())) == []


def test_queue_overflow_drops_oldest() -> None:
    config = make_config(priority_queue=PriorityQueueConfig(max_size=3, memory_adaptive=False))

    async def scenario():
        pool = MessagePoolManager(FakeMessageStore(), config)
        await pool.initialize()
        try:
            for message_id in range(101, 106):
                await pool.add_new_message(make_message(message_id))
            assert pool.priority_queue_size == 3
            return await pool.get_next_batch(5)
        finally:
            pool.cleanup()

    assert _ids(asyncio.run(scenario())) == [103, 104, 105]


def test_queue_cap_shrinks_under_critical_memory_pressure() -> None:
    config = make_config(priority_queue=PriorityQueueConfig(max_size=8, memory_adaptive=True))

    async def scenario() -> MessagePoolManager:
        pool = MessagePoolManager(FakeMessageStore(), config, memory_probe=FixedMemoryProbe(90.0))
        await pool.initialize()
        for message_id in range(1, 5):
            await pool.add_new_message(make_message(message_id))
        pool.stop()
        return pool

    pool = asyncio.run(scenario())
    assert pool.priority_queue_size == 2
    stats = pool.get_stats()
    assert stats.memory_pressure == CRITICAL
    assert stats.memory_usage == 90.0


def test_failing_memory_probe_reads_as_normal() -> None:
    def broken_probe() -> float:
        raise OSError("no meminfo")

    pool = MessagePoolManager(FakeMessageStore(), make_config(), memory_probe=broken_probe)
    stats = pool.get_stats()

    assert stats.memory_usage == 0.0
    assert stats.memory_pressure == NORMAL


def test_duplicate_submission_is_queued_once() -> None:
    async def scenario() -> int:
        pool = MessagePoolManager(FakeMessageStore(), make_config())
        await pool.initialize()
        try:
            await pool.add_new_message(make_message(7))
            await pool.add_new_message(make_message(7))
            return pool.priority_queue_size
        finally:
            pool.cleanup()

    assert asyncio.run(scenario()) == 1


def test_polling_moves_new_rows_into_queue() -> None:
    store = FakeMessageStore(count=5)
    config = make_config(polling_interval=0.01)

    async def scenario() -> tuple[int, int]:
        pool = MessagePoolManager(store, config)
        await pool.initialize()
        try:
            store.add()
            await asyncio.sleep(0.2)
            return pool.priority_queue_size, pool.new_message_watermark
        finally:
            pool.cleanup()

    assert asyncio.run(scenario()) == (1, 6)


def test_polling_errors_do_not_stop_the_timer() -> None:
    store = FakeMessageStore(count=5)
    store.fail_new = True
    config = make_config(polling_interval=0.01)

    async def scenario() -> bool:
        pool = MessagePoolManager(store, config)
        await pool.initialize()
        try:
            assert await pool.check_for_new_messages() == 0
            await asyncio.sleep(0.05)
            return pool.is_polling
        finally:
            pool.cleanup()

    assert asyncio.run(scenario())


def test_start_is_idempotent_and_cleanup_is_repeatable() -> None:
    async def scenario() -> MessagePoolManager:
        pool = MessagePoolManager(FakeMessageStore(count=3), make_config())
        await pool.initialize()
        task = pool._poll_task
        pool.start()
        assert pool._poll_task is task
        await pool.add_new_message(make_message(9))
        pool.cleanup()
        pool.cleanup()
        return pool

    pool = asyncio.run(scenario())
    assert not pool.is_polling
    assert pool.priority_queue_size == 0


def test_surge_mode_follows_queue_length() -> None:
    config = make_config(surge=SurgeConfig(threshold=3))

    async def scenario() -> None:
        pool = MessagePoolManager(FakeMessageStore(), config)
        await pool.initialize()
        try:
            for message_id in range(1, 3):
                await pool.add_new_message(make_message(message_id))
            assert not pool.is_surge_mode()
            await pool.add_new_message(make_message(3))
            assert pool.is_surge_mode()
            await pool.get_next_batch(2)
            assert not pool.is_surge_mode()
        finally:
            pool.cleanup()

    asyncio.run(scenario())


def test_queue_wait_estimate() -> None:
    config = make_config(cluster_size=5, cluster_duration=10.0)

    async def scenario() -> list[float]:
        pool = MessagePoolManager(FakeMessageStore(), config)
        await pool.initialize()
        try:
            estimates = [pool.estimate_queue_wait_time()]
            for message_id in range(1, 6):
                await pool.add_new_message(make_message(message_id))
            estimates.append(pool.estimate_queue_wait_time())
            return estimates
        finally:
            pool.cleanup()

    # Five queued messages over four free slots per cycle need two cycles.
    assert asyncio.run(scenario()) == [0.0, 20.0]
    assert MessagePoolManager(FakeMessageStore(), config).get_cluster_config() == (5, 10.0)


def test_requeued_priority_goes_to_the_head() -> None:
    async def scenario():
        pool = MessagePoolManager(FakeMessageStore(), make_config())
        await pool.initialize()
        try:
            await pool.add_new_message(make_message(6))
            await pool.requeue_priority([make_message(3), make_message(4)])
            first = await pool.get_next_batch(2)
            second = await pool.get_next_batch(2)
            return first, second
        finally:
            pool.cleanup()

    first, second = asyncio.run(scenario())
    assert _ids(first) == [3, 4]
    assert first.priority_ids == {"3", "4"}
    assert _ids(second) == [6]


def test_zero_count_returns_empty_batch() -> None:
    pool = MessagePoolManager(FakeMessageStore(count=3), make_config())
    batch = asyncio.run(pool.get_next_batch(0))

    assert batch.messages == []
    assert batch.priority_ids == set()


def test_unused_history_is_served_again() -> None:
    async def scenario():
        pool = MessagePoolManager(FakeMessageStore(count=10), make_config())
        await pool.initialize()
        try:
            first = await pool.get_next_batch(5)
            pool.return_unused_history(first.messages[3:])
            second = await pool.get_next_batch(3)
            pool.return_unused_history([make_message(1)])
            return first, second, pool.historical_cursor
        finally:
            pool.cleanup()

    first, second, cursor = asyncio.run(scenario())
    assert _ids(first) == [10, 9, 8, 7, 6]
    assert _ids(second) == [7, 6, 5]
    # Ids below the cursor are still ahead of it and need no rewind.
    assert cursor == 4
