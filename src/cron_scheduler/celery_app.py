"""
Celery entry point for worker processes.

    celery -A cron_scheduler.celery_app worker -Q cron-jobs -n jobs@%h
    celery -A cron_scheduler.celery_app worker -Q maintenance -c 1 -n maintenance@%h

The maintenance worker runs with a single slot so retention sweeps never
overlap each other or take slots from job dispatches.

Deliveries run their handler with `asyncio.run`, one event loop per task, so
the worker storage does not pool connections across loops.
"""

from celery import Celery
from celery.signals import setup_logging
from redis.asyncio import Redis
from sqlalchemy.pool import NullPool

from cron_scheduler.config import Settings
from cron_scheduler.logging import configure_logging
from cron_scheduler.runtime import SchedulerRuntime
from cron_scheduler.storages.sqlalchemy import SqlAlchemyStorage

settings = Settings()

app = Celery("cron_scheduler", broker=settings.broker_url)
app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    worker_concurrency=settings.worker_concurrency,
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.log_level)


runtime = SchedulerRuntime.celery(
    app,
    Redis.from_url(settings.redis_url, decode_responses=True),
    settings,
    storage=SqlAlchemyStorage(settings.database_url, poolclass=NullPool),
)
runtime.register_consumers()
