from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, Protocol

from cron_scheduler.domain.trigger import Delivery, RepeatableTrigger, Trigger

DeliveryHandler = Callable[[Delivery], Awaitable[Any]]


class RateLimit(NamedTuple):
    max_calls: int
    period_seconds: float

    def as_celery(self) -> str:
        per_minute = self.max_calls * 60 / self.period_seconds
        return f"{per_minute:g}/m"


def backoff_delay(attempts_made: int, base_ms: int) -> float:
    """
    Exponential redelivery delay in seconds: base, 2*base, 4*base, ...
    """
    return base_ms * (2 ** max(attempts_made, 0)) / 1000


class TriggerQueue(Protocol):
    """
    Durable, at-least-once trigger delivery.

    Repeatable triggers are keyed by a stable key and fire on a cron rule;
    one-shot triggers fire once as soon as possible. A consumer that raises
    gets the delivery back later with `attempts_made` incremented.
    """

    name: str

    async def add_repeatable(self, key: str, trigger: Trigger, cron_expression: str, timezone: str = "UTC") -> None:
        """Register (or replace) the repeatable trigger stored under `key`."""
        ...

    async def remove_repeatable(self, key: str) -> bool:
        """Remove the repeatable trigger under `key`. Return True if one existed."""
        ...

    async def list_repeatable(self) -> List[RepeatableTrigger]:
        """List every registered repeatable trigger."""
        ...

    async def clear_repeatable(self) -> int:
        """Remove every repeatable trigger. Return how many were removed."""
        ...

    async def add_once(self, key: str, trigger: Trigger) -> None:
        """Enqueue a one-shot trigger for immediate delivery."""
        ...

    def register_consumer(self, handler: DeliveryHandler, concurrency: int = 1, rate_limit: Optional[RateLimit] = None) -> None:
        """Install the coroutine that handles deliveries."""
        ...

    async def start(self) -> None:
        """Start firing and delivering triggers."""
        ...

    async def stop(self, grace_period: float = 30.0) -> None:
        """Stop accepting deliveries and drain in-flight ones for up to `grace_period` seconds."""
        ...
