import asyncio
import heapq
import itertools
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Set, Tuple

from cron_scheduler.cron import CronSchedule
from cron_scheduler.domain.trigger import Delivery, RepeatableTrigger, Trigger
from cron_scheduler.queues.protocol import DeliveryHandler, RateLimit, TriggerQueue, backoff_delay

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 11


class SlidingWindowRateLimiter:
    """
    Allows at most `max_calls` acquisitions in any rolling `period_seconds`.
    """

    def __init__(self, max_calls: int, period_seconds: float):
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self._calls: Deque[float] = deque()

    async def acquire(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            now = loop.time()
            while self._calls and now - self._calls[0] >= self.period_seconds:
                self._calls.popleft()
            if len(self._calls) < self.max_calls:
                self._calls.append(now)
                return
            await asyncio.sleep(self._calls[0] + self.period_seconds - now)


class InMemoryTriggerQueue(TriggerQueue):
    """
    In-process trigger queue with real-time scheduling using asyncio.
    WARNING: triggers live in memory and are lost on restart. The scheduler
    rebuilds repeatable triggers from the job store at startup, but pending
    one-shot and retried deliveries are dropped. Use CeleryTriggerQueue for
    multi-process deployments.
    """

    def __init__(
        self,
        name: str = "cron-jobs",
        poll_interval: float = 1.0,
        retry_backoff_ms: int = 2000,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.name = name
        self.poll_interval = poll_interval
        self.retry_backoff_ms = retry_backoff_ms
        self.max_attempts = max_attempts

        self._repeatable: Dict[str, RepeatableTrigger] = {}
        self._schedules: Dict[str, CronSchedule] = {}
        self.next_execution_times: Dict[str, datetime] = {}

        self._ready: "asyncio.Queue[Delivery]" = asyncio.Queue()
        self._delayed: List[Tuple[float, int, Delivery]] = []
        self._sequence = itertools.count()

        self._handler: Optional[DeliveryHandler] = None
        self._concurrency = 1
        self._rate_limiter: Optional[SlidingWindowRateLimiter] = None

        self.scheduler_task: Optional[asyncio.Task] = None
        self.consumer_task: Optional[asyncio.Task] = None
        self.in_flight: Set[asyncio.Task] = set()
        self.is_running: bool = False

    async def add_repeatable(self, key: str, trigger: Trigger, cron_expression: str, timezone: str = "UTC") -> None:
        schedule = CronSchedule(cron_expression, timezone)
        self._repeatable[key] = RepeatableTrigger(trigger=trigger, cron_expression=schedule.expression, timezone=timezone)
        self._schedules[key] = schedule
        self.next_execution_times[key] = schedule.next()
        logger.debug("Repeatable trigger added", extra={"queue": self.name, "key": key})

    async def remove_repeatable(self, key: str) -> bool:
        self._schedules.pop(key, None)
        self.next_execution_times.pop(key, None)
        removed = self._repeatable.pop(key, None) is not None
        if removed:
            logger.debug("Repeatable trigger removed", extra={"queue": self.name, "key": key})
        return removed

    async def list_repeatable(self) -> List[RepeatableTrigger]:
        return list(self._repeatable.values())

    async def clear_repeatable(self) -> int:
        count = len(self._repeatable)
        self._repeatable.clear()
        self._schedules.clear()
        self.next_execution_times.clear()
        return count

    async def add_once(self, key: str, trigger: Trigger) -> None:
        self._ready.put_nowait(Delivery(trigger=trigger))
        logger.debug("One-shot trigger added", extra={"queue": self.name, "key": key})

    def register_consumer(self, handler: DeliveryHandler, concurrency: int = 1, rate_limit: Optional[RateLimit] = None) -> None:
        self._handler = handler
        self._concurrency = concurrency
        self._rate_limiter = SlidingWindowRateLimiter(*rate_limit) if rate_limit else None

    def tick(self, now: Optional[datetime] = None) -> int:
        """
        Enqueue every repeatable trigger that is due at `now` and every delayed
        redelivery whose backoff has elapsed. Return the number of triggers fired.
        """
        now = now or datetime.now(timezone.utc)
        fired = 0
        for key, due in list(self.next_execution_times.items()):
            if due <= now:
                self._ready.put_nowait(Delivery(trigger=self._repeatable[key].trigger))
                self.next_execution_times[key] = self._schedules[key].next(now)
                fired += 1

        loop_now = asyncio.get_running_loop().time()
        while self._delayed and self._delayed[0][0] <= loop_now:
            _, _, delivery = heapq.heappop(self._delayed)
            self._ready.put_nowait(delivery)
        return fired

    async def join(self) -> None:
        """
        Wait until every enqueued delivery, including immediate redeliveries, was handled.
        """
        await self._ready.join()

    async def start(self):
        """
        Start firing triggers and delivering them to the registered consumer.
        """
        if self._handler is None:
            raise RuntimeError(f"No consumer registered on queue '{self.name}'")
        if not self.is_running:
            self.is_running = True
            self.scheduler_task = asyncio.create_task(self._scheduler_loop())
            self.consumer_task = asyncio.create_task(self._consumer_loop())
            logger.info("Trigger queue started", extra={"queue": self.name, "concurrency": self._concurrency})

    async def stop(self, grace_period: float = 30.0):
        """
        Stop accepting deliveries, then give in-flight ones `grace_period`
        seconds to finish before cancelling them.
        """
        if not self.is_running:
            return
        self.is_running = False
        for task in (self.scheduler_task, self.consumer_task):
            if task:
                task.cancel()
        await asyncio.gather(*(t for t in (self.scheduler_task, self.consumer_task) if t), return_exceptions=True)

        if self.in_flight:
            logger.info("Draining in-flight deliveries", extra={"queue": self.name, "count": len(self.in_flight)})
            _, pending = await asyncio.wait(set(self.in_flight), timeout=grace_period)
            if pending:
                logger.error("Forced shutdown after grace period, cancelling %d deliveries", len(pending),
                             extra={"queue": self.name, "grace_period": grace_period})
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Trigger queue stopped", extra={"queue": self.name})

    async def _scheduler_loop(self):
        """
        Main loop that collects due triggers every poll interval.
        """
        try:
            while self.is_running:
                self.tick()
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            pass

    async def _consumer_loop(self):
        semaphore = asyncio.Semaphore(self._concurrency)
        try:
            while self.is_running:
                delivery = await self._ready.get()
                await semaphore.acquire()
                if self._rate_limiter:
                    await self._rate_limiter.acquire()
                task = asyncio.create_task(self._deliver(delivery, semaphore))
                self.in_flight.add(task)
                task.add_done_callback(self.in_flight.discard)
        except asyncio.CancelledError:
            pass

    async def _deliver(self, delivery: Delivery, semaphore: asyncio.Semaphore):
        try:
            await self._handler(delivery)
        except asyncio.CancelledError:
            logger.warning("Delivery cancelled", extra={"queue": self.name, "key": delivery.trigger.key})
            raise
        except Exception as e:
            self._redeliver(delivery, e)
        finally:
            semaphore.release()
            self._ready.task_done()

    def _redeliver(self, delivery: Delivery, error: Exception):
        attempts = delivery.attempts_made + 1
        if attempts >= self.max_attempts:
            logger.error("Delivery failed permanently: %s", error,
                         extra={"queue": self.name, "key": delivery.trigger.key, "attempts": attempts})
            return
        delay = backoff_delay(delivery.attempts_made, self.retry_backoff_ms)
        retry = delivery.model_copy(update={"attempts_made": attempts})
        logger.info("Delivery failed, retrying in %.1fs: %s", delay, error,
                    extra={"queue": self.name, "key": delivery.trigger.key, "attempts": attempts})
        if delay <= 0:
            self._ready.put_nowait(retry)
        else:
            due = asyncio.get_running_loop().time() + delay
            heapq.heappush(self._delayed, (due, next(self._sequence), retry))
