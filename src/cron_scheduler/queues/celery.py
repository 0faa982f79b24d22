import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from celery import Celery
from kombu.exceptions import KombuError
from redis import Redis as SyncRedis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from cron_scheduler.cron import CronSchedule
from cron_scheduler.domain.trigger import Delivery, RepeatableTrigger, Trigger
from cron_scheduler.errors import TriggerQueueError
from cron_scheduler.queues.protocol import DeliveryHandler, RateLimit, TriggerQueue, backoff_delay

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 11


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisRateLimiter:
    """
    Sliding window limiter shared by every worker node: at most `max_calls`
    acquisitions in any rolling `period_seconds`, tracked in a Redis sorted set
    scored by the Redis server clock.
    """

    def __init__(self, client: SyncRedis, key: str, max_calls: int, period_seconds: float):
        self.client = client
        self.key = key
        self.max_calls = max_calls
        self.period_seconds = period_seconds

    def try_acquire(self) -> float:
        """
        Take a slot if one is free. Return 0 on success, otherwise the number of
        seconds until the oldest call leaves the window.
        """
        member = uuid4().hex

        def acquire(pipe) -> float:
            seconds, micros = pipe.time()
            now = seconds + micros / 1_000_000
            window_start = now - self.period_seconds
            live = pipe.zrangebyscore(self.key, f"({window_start}", "+inf", withscores=True)
            if len(live) >= self.max_calls:
                return max(live[0][1] - window_start, 0.001)
            # Writes go inside MULTI so they do not trip our own WATCH.
            pipe.multi()
            pipe.zremrangebyscore(self.key, "-inf", window_start)
            pipe.zadd(self.key, {member: now})
            pipe.expire(self.key, max(int(self.period_seconds) + 1, 1))
            return 0.0

        return self.client.transaction(acquire, self.key, value_from_callable=True)


class CeleryTriggerQueue(TriggerQueue):
    """
    Trigger queue backed by Redis and Celery.

    Repeatable triggers are kept in Redis: a hash of trigger definitions and a
    sorted set of next fire timestamps, both keyed by trigger key. A beat loop
    claims due entries with ZREM (so several beats never double fire), publishes
    them as Celery tasks and reschedules the next firing. One-shot triggers are
    published directly. Workers consume with `acks_late` and redeliver through
    `Task.retry`, carrying `attempts_made` in the task kwargs. Given a
    synchronous `limiter_client`, the consumer rate limit is enforced across
    every worker node by a `RedisRateLimiter`; throttled deliveries are
    requeued without spending an attempt. Without one it falls back to the
    Celery task rate limit, which only holds per worker instance.
    """
    app: Celery

    def __init__(
        self,
        celery_app: Celery,
        redis_client: Redis,
        name: str = "cron-jobs",
        retry_backoff_ms: int = 2000,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval: float = 1.0,
        limiter_client: Optional[SyncRedis] = None,
    ):
        self.app = celery_app
        self.redis = redis_client
        self.name = name
        self.retry_backoff_ms = retry_backoff_ms
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.limiter_client = limiter_client
        self.task_name = f"cron_scheduler.deliver.{name}"
        self.concurrency = 1

        self._definitions_key = f"cron_scheduler:{name}:repeatable"
        self._schedule_key = f"cron_scheduler:{name}:schedule"
        self._rate_key = f"cron_scheduler:{name}:rate"
        self.rate_limiter: Optional[RedisRateLimiter] = None
        self._celery_task = None
        self.beat_task: Optional[asyncio.Task] = None
        self.is_running = False

    async def add_repeatable(self, key: str, trigger: Trigger, cron_expression: str, timezone: str = "UTC") -> None:
        schedule = CronSchedule(cron_expression, timezone)
        entry = RepeatableTrigger(trigger=trigger, cron_expression=schedule.expression, timezone=timezone)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._definitions_key, key, entry.model_dump_json())
                pipe.zadd(self._schedule_key, {key: schedule.next().timestamp()})
                await pipe.execute()
        except RedisError as e:
            raise TriggerQueueError(f"Failed to add repeatable trigger '{key}': {e}") from e
        logger.debug("Repeatable trigger added", extra={"queue": self.name, "key": key})

    async def remove_repeatable(self, key: str) -> bool:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hdel(self._definitions_key, key)
                pipe.zrem(self._schedule_key, key)
                removed, _ = await pipe.execute()
        except RedisError as e:
            raise TriggerQueueError(f"Failed to remove repeatable trigger '{key}': {e}") from e
        return bool(removed)

    async def list_repeatable(self) -> List[RepeatableTrigger]:
        try:
            raw = await self.redis.hgetall(self._definitions_key)
        except RedisError as e:
            raise TriggerQueueError(f"Failed to list repeatable triggers: {e}") from e
        return [RepeatableTrigger.model_validate_json(_text(value)) for value in raw.values()]

    async def clear_repeatable(self) -> int:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hlen(self._definitions_key)
                pipe.delete(self._definitions_key, self._schedule_key)
                count, _ = await pipe.execute()
        except RedisError as e:
            raise TriggerQueueError(f"Failed to clear repeatable triggers: {e}") from e
        return int(count)

    async def add_once(self, key: str, trigger: Trigger) -> None:
        await self._publish(trigger)
        logger.debug("One-shot trigger published", extra={"queue": self.name, "key": key})

    async def _publish(self, trigger: Trigger) -> None:
        try:
            await asyncio.to_thread(
                self.app.send_task,
                self.task_name,
                args=[trigger.model_dump(mode="json")],
                queue=self.name,
            )
        except (KombuError, OSError) as e:
            raise TriggerQueueError(f"Failed to publish trigger '{trigger.key}': {e}") from e

    async def tick(self, now: Optional[datetime] = None) -> int:
        """
        Publish every repeatable trigger due at `now` and schedule its next
        firing. Return the number of triggers published.
        """
        now = now or datetime.now(timezone.utc)
        try:
            due = await self.redis.zrangebyscore(self._schedule_key, "-inf", now.timestamp(), withscores=True)
        except RedisError as e:
            raise TriggerQueueError(f"Failed to read due triggers: {e}") from e

        fired = 0
        for raw_key, score in due:
            key = _text(raw_key)
            if not await self.redis.zrem(self._schedule_key, key):
                continue
            raw = await self.redis.hget(self._definitions_key, key)
            if raw is None:
                continue
            entry = RepeatableTrigger.model_validate_json(_text(raw))
            try:
                await self._publish(entry.trigger)
            except TriggerQueueError:
                await self.redis.zadd(self._schedule_key, {key: score}, nx=True)
                raise
            next_fire = CronSchedule(entry.cron_expression, entry.timezone).next(now)
            # nx: a concurrent add_repeatable already holds the newer schedule.
            await self.redis.zadd(self._schedule_key, {key: next_fire.timestamp()}, nx=True)
            fired += 1
        return fired

    async def next_fire_times(self) -> Dict[str, datetime]:
        raw = await self.redis.zrange(self._schedule_key, 0, -1, withscores=True)
        return {_text(key): datetime.fromtimestamp(score, tz=timezone.utc) for key, score in raw}

    def register_consumer(self, handler: DeliveryHandler, concurrency: int = 1, rate_limit: Optional[RateLimit] = None) -> None:
        """
        Define the Celery task that hands deliveries to `handler`. Concurrency is
        applied by the worker process consuming this queue (`worker_options()`).
        """
        queue = self
        self.concurrency = concurrency
        if rate_limit and self.limiter_client is not None:
            self.rate_limiter = RedisRateLimiter(self.limiter_client, self._rate_key, rate_limit.max_calls, rate_limit.period_seconds)
        task_rate_limit = rate_limit.as_celery() if rate_limit and self.rate_limiter is None else None

        @self.app.task(
            name=self.task_name,
            bind=True,
            acks_late=True,
            max_retries=None,
            rate_limit=task_rate_limit,
        )
        def deliver(task, trigger_data: Dict[str, Any], attempts_made: int = 0):
            delivery = Delivery(trigger=Trigger.model_validate(trigger_data), attempts_made=attempts_made)
            log_extra = {"queue": queue.name, "key": delivery.trigger.key, "attempts": attempts_made}

            if queue.rate_limiter is not None:
                try:
                    wait = queue.rate_limiter.try_acquire()
                except RedisError as e:
                    logger.warning("Rate limiter unavailable, requeueing: %s", e, extra=log_extra)
                    wait = queue.poll_interval
                if wait > 0:
                    logger.debug("Rate limited, requeueing in %.2fs", wait, extra=log_extra)
                    raise task.retry(args=[trigger_data], kwargs={"attempts_made": attempts_made}, countdown=wait)

            try:
                asyncio.run(handler(delivery))
            except Exception as exc:
                if attempts_made + 1 >= queue.max_attempts:
                    logger.error("Delivery failed after %d attempts: %s", attempts_made + 1, exc, extra=log_extra)
                    raise
                countdown = backoff_delay(attempts_made, queue.retry_backoff_ms)
                logger.info("Delivery failed, retrying in %.1fs: %s", countdown, exc,
                            extra={**log_extra, "attempts": attempts_made + 1})
                raise task.retry(args=[trigger_data], kwargs={"attempts_made": attempts_made + 1}, exc=exc, countdown=countdown)

        self._celery_task = deliver

    def worker_options(self) -> Dict[str, Any]:
        return {"queues": [self.name], "concurrency": self.concurrency}

    async def start(self):
        """
        Start the beat loop publishing due repeatable triggers.
        """
        if not self.is_running:
            self.is_running = True
            self.beat_task = asyncio.create_task(self._beat_loop())
            logger.info("Trigger beat started", extra={"queue": self.name})

    async def stop(self, grace_period: float = 30.0):
        """
        Stop the beat loop. In-flight deliveries belong to the Celery workers,
        which drain on their own warm shutdown.
        """
        if self.is_running:
            self.is_running = False
            if self.beat_task:
                self.beat_task.cancel()
                try:
                    await asyncio.wait_for(self.beat_task, timeout=grace_period)
                except (asyncio.CancelledError, asyncio.TimeoutError):
                    pass
            logger.info("Trigger beat stopped", extra={"queue": self.name})

    async def _beat_loop(self):
        try:
            while self.is_running:
                try:
                    await self.tick()
                except (TriggerQueueError, RedisError) as e:
                    logger.error("Beat tick failed: %s", e, extra={"queue": self.name})
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            pass
