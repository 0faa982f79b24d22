import asyncio
import signal

from redis.asyncio import Redis

from cron_scheduler.celery_app import app, settings
from cron_scheduler.logging import configure_logging
from cron_scheduler.runtime import SchedulerRuntime
from cron_scheduler.storages.sqlalchemy import SqlAlchemyStorage

# The beat side: rebuilds the Redis trigger registry from the database and
# publishes due triggers. Deliveries are consumed by two Celery workers:
#
#   celery -A cron_scheduler.celery_app worker -Q cron-jobs -n jobs@%h --loglevel=info
#   celery -A cron_scheduler.celery_app worker -Q maintenance -c 1 -n maintenance@%h --loglevel=info

runtime = SchedulerRuntime.celery(
    app,
    Redis.from_url(settings.redis_url, decode_responses=True),
    settings,
    storage=SqlAlchemyStorage(settings.database_url),
)


async def main() -> None:
    configure_logging(settings.log_level)
    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopped.set)

    await runtime.start()
    await stopped.wait()
    await runtime.stop()


if __name__ == "__main__":
    # create workers in other threads
    import threading

    def start_worker(queue: str, node: str) -> None:
        import os
        os.system(f"celery -A cron_scheduler.celery_app worker -Q {queue} -n {node}@%h -P solo --loglevel=info")

    for queue, node in (("cron-jobs", "jobs"), ("maintenance", "maintenance")):
        threading.Thread(target=start_worker, args=(queue, node), daemon=True).start()

    asyncio.run(main())
