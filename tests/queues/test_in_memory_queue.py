import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from cron_scheduler.domain.trigger import Delivery, Trigger
from cron_scheduler.queues.in_memory import InMemoryTriggerQueue, SlidingWindowRateLimiter
from cron_scheduler.queues.protocol import RateLimit, backoff_delay


def make_trigger(key: str = "job_1") -> Trigger:
    return Trigger(key=key, job_id=key)


@pytest.fixture(scope="function")
def queue() -> InMemoryTriggerQueue:
    return InMemoryTriggerQueue(poll_interval=0.01, retry_backoff_ms=0)


@pytest.mark.asyncio
async def test_add_and_remove_repeatable(queue: InMemoryTriggerQueue):
    await queue.add_repeatable("job_1", make_trigger("job_1"), "*/5 * * * *")
    await queue.add_repeatable("job_2", make_trigger("job_2"), "0 9 * * *", "Europe/Berlin")

    assert {entry.key for entry in await queue.list_repeatable()} == {"job_1", "job_2"}
    assert set(queue.next_execution_times) == {"job_1", "job_2"}

    assert await queue.remove_repeatable("job_1") is True
    assert await queue.remove_repeatable("job_1") is False
    assert [entry.key for entry in await queue.list_repeatable()] == ["job_2"]

    assert await queue.clear_repeatable() == 1
    assert await queue.list_repeatable() == []
    assert queue.next_execution_times == {}


@pytest.mark.asyncio
async def test_add_repeatable_replaces_same_key(queue: InMemoryTriggerQueue):
    await queue.add_repeatable("job_1", make_trigger(), "*/5 * * * *")
    await queue.add_repeatable("job_1", make_trigger(), "0 * * * *")

    entries = await queue.list_repeatable()
    assert len(entries) == 1
    assert entries[0].cron_expression == "0 * * * *"


@pytest.mark.asyncio
async def test_tick_fires_due_triggers(queue: InMemoryTriggerQueue):
    await queue.add_repeatable("job_1", make_trigger(), "* * * * *")
    due = queue.next_execution_times["job_1"]

    assert queue.tick(due - timedelta(seconds=1)) == 0
    assert queue.tick(due) == 1
    assert queue.next_execution_times["job_1"] == due + timedelta(minutes=1)
    assert queue._ready.qsize() == 1


@pytest.mark.asyncio
async def test_start_requires_consumer(queue: InMemoryTriggerQueue):
    with pytest.raises(RuntimeError, match="No consumer registered on queue 'cron-jobs'"):
        await queue.start()


@pytest.mark.asyncio
async def test_one_shot_delivery(queue: InMemoryTriggerQueue):
    received: List[Delivery] = []

    async def handler(delivery: Delivery):
        received.append(delivery)

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.stop()

    assert len(received) == 1
    assert received[0].attempts_made == 0
    assert received[0].trigger.job_id == "job_1"


@pytest.mark.asyncio
async def test_failed_delivery_is_redelivered(queue: InMemoryTriggerQueue):
    attempts: List[int] = []

    async def handler(delivery: Delivery):
        attempts.append(delivery.attempts_made)
        if delivery.attempts_made < 2:
            raise RuntimeError("boom")

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.stop()

    assert attempts == [0, 1, 2]


@pytest.mark.asyncio
async def test_redelivery_stops_after_max_attempts():
    queue = InMemoryTriggerQueue(poll_interval=0.01, retry_backoff_ms=0, max_attempts=3)
    attempts: List[int] = []

    async def handler(delivery: Delivery):
        attempts.append(delivery.attempts_made)
        raise RuntimeError("always failing")

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.stop()

    assert attempts == [0, 1, 2]


@pytest.mark.asyncio
async def test_redelivery_waits_for_backoff():
    queue = InMemoryTriggerQueue(poll_interval=0.01, retry_backoff_ms=50)
    delivered = asyncio.Event()
    attempts: List[int] = []

    async def handler(delivery: Delivery):
        attempts.append(delivery.attempts_made)
        if delivery.attempts_made == 0:
            raise RuntimeError("boom")
        delivered.set()

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.sleep(0.02)
    assert attempts == [0]

    await asyncio.wait_for(delivered.wait(), timeout=5)
    await queue.stop()
    assert attempts == [0, 1]


@pytest.mark.asyncio
async def test_concurrency_limit(queue: InMemoryTriggerQueue):
    running = 0
    peak = 0

    async def handler(delivery: Delivery):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1

    queue.register_consumer(handler, concurrency=2)
    await queue.start()
    for i in range(6):
        await queue.add_once(f"immediate:job_{i}", make_trigger(f"job_{i}"))
    await asyncio.wait_for(queue.join(), timeout=5)
    await queue.stop()

    assert peak == 2


@pytest.mark.asyncio
async def test_stop_cancels_after_grace_period(queue: InMemoryTriggerQueue, caplog):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def handler(delivery: Delivery):
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.wait_for(started.wait(), timeout=5)

    with caplog.at_level(logging.ERROR):
        await queue.stop(grace_period=0.05)

    assert cancelled.is_set()
    assert not queue.is_running
    assert "Forced shutdown after grace period" in caplog.text


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight(queue: InMemoryTriggerQueue):
    finished = asyncio.Event()
    started = asyncio.Event()

    async def handler(delivery: Delivery):
        started.set()
        await asyncio.sleep(0.05)
        finished.set()

    queue.register_consumer(handler)
    await queue.start()
    await queue.add_once("immediate:job_1:abc", make_trigger())
    await asyncio.wait_for(started.wait(), timeout=5)
    await queue.stop(grace_period=5)

    assert finished.is_set()


@pytest.mark.asyncio
async def test_rate_limiter_window():
    limiter = SlidingWindowRateLimiter(max_calls=2, period_seconds=0.2)
    loop = asyncio.get_running_loop()

    start = loop.time()
    for _ in range(3):
        await limiter.acquire()

    assert loop.time() - start >= 0.19


def test_backoff_delay():
    assert backoff_delay(0, 2000) == 2.0
    assert backoff_delay(1, 2000) == 4.0
    assert backoff_delay(3, 2000) == 16.0
    assert backoff_delay(2, 0) == 0


def test_rate_limit_as_celery():
    assert RateLimit(100, 60).as_celery() == "100/m"
    assert RateLimit(10, 1).as_celery() == "600/m"
