import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone

from cron_scheduler.domain.execution import ExecutionAttempt, ExecutionStatus
from cron_scheduler.domain.job import Job, JobStatus, TargetType
from cron_scheduler.errors import ForbiddenError, NotFoundError
from cron_scheduler.services import ExecutionService
from cron_scheduler.storages.sqlalchemy import InMemoryStorage

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def storage():
    storage = InMemoryStorage()
    await storage.create_tables()
    yield storage
    await storage.close()


@pytest.fixture(scope="function")
def service(storage) -> ExecutionService:
    return ExecutionService(storage)


def make_job(owner_id: str = "user_1", name: str = "Ping", **kwargs) -> Job:
    return Job(owner_id=owner_id, name=name, cron_expression="* * * * *", target_type=TargetType.HTTP,
               target_url="https://example.com", **kwargs)


async def record(storage, job: Job, status: ExecutionStatus, minutes: int, duration: int = 100) -> ExecutionAttempt:
    started_at = NOW + timedelta(minutes=minutes)
    attempt = ExecutionAttempt.finished(
        job_id=job.id,
        status=status,
        started_at=started_at,
        finished_at=started_at + timedelta(milliseconds=duration),
    )
    await storage.create_execution(attempt)
    return attempt


@pytest_asyncio.fixture(scope="function")
async def job(storage) -> Job:
    job = make_job()
    await storage.create_job(job)
    return job


@pytest.mark.asyncio
async def test_list_executions(service: ExecutionService, storage, job: Job):
    for minute in range(7):
        status = ExecutionStatus.SUCCESS if minute % 2 == 0 else ExecutionStatus.FAILED
        await record(storage, job, status, minute)

    page = await service.list_executions("user_1", job.id, page=1, limit=5)
    assert len(page.items) == 5
    assert page.items[0].started_at == NOW + timedelta(minutes=6)
    assert page.pagination.total == 7
    assert page.pagination.total_pages == 2

    failed = await service.list_executions("user_1", job.id, status=ExecutionStatus.FAILED)
    assert failed.pagination.total == 3
    assert all(attempt.status == ExecutionStatus.FAILED for attempt in failed.items)


@pytest.mark.asyncio
async def test_list_executions_ownership(service: ExecutionService, job: Job):
    with pytest.raises(ForbiddenError):
        await service.list_executions("user_2", job.id)
    with pytest.raises(NotFoundError, match="Cron job not found"):
        await service.list_executions("user_1", "job_missing")


@pytest.mark.asyncio
async def test_get_execution_by_id(service: ExecutionService, storage, job: Job):
    attempt = await record(storage, job, ExecutionStatus.SUCCESS, 0)

    assert await service.get_execution_by_id("user_1", attempt.id) == attempt
    with pytest.raises(ForbiddenError, match="You do not have access to this log"):
        await service.get_execution_by_id("user_2", attempt.id)
    with pytest.raises(NotFoundError, match="Execution log not found"):
        await service.get_execution_by_id("user_1", "exe_missing")


@pytest.mark.asyncio
async def test_job_statistics(service: ExecutionService, storage, job: Job):
    await record(storage, job, ExecutionStatus.SUCCESS, 0, duration=100)
    await record(storage, job, ExecutionStatus.SUCCESS, 1, duration=200)
    await record(storage, job, ExecutionStatus.FAILED, 2, duration=301)
    await record(storage, job, ExecutionStatus.TIMEOUT, 3, duration=30000)
    for minute in range(4, 8):
        await record(storage, job, ExecutionStatus.SUCCESS, minute, duration=100)

    stats = await service.get_job_statistics("user_1", job.id)

    assert stats.total_executions == 8
    assert stats.success_count == 6
    assert stats.failed_count == 1
    assert stats.timeout_count == 1
    assert stats.success_rate == 75.0
    assert stats.average_duration == 3875
    assert len(stats.recent_executions) == 5
    assert stats.recent_executions[0].started_at == NOW + timedelta(minutes=7)


@pytest.mark.asyncio
async def test_job_statistics_without_executions(service: ExecutionService, job: Job):
    stats = await service.get_job_statistics("user_1", job.id)

    assert stats.total_executions == 0
    assert stats.success_rate == 0.0
    assert stats.average_duration is None
    assert stats.recent_executions == []


@pytest.mark.asyncio
async def test_user_statistics(service: ExecutionService, storage, job: Job):
    report = make_job(name="Report", status=JobStatus.PAUSED)
    foreign = make_job(owner_id="user_2", name="Foreign")
    await storage.create_job(report)
    await storage.create_job(foreign)

    await record(storage, job, ExecutionStatus.SUCCESS, 0)
    await record(storage, report, ExecutionStatus.FAILED, 1)
    await record(storage, report, ExecutionStatus.SUCCESS, 2)
    await record(storage, report, ExecutionStatus.TIMEOUT, 3)
    await record(storage, foreign, ExecutionStatus.SUCCESS, 4)

    stats = await service.get_user_statistics("user_1")

    assert stats.jobs.total == 2
    assert stats.jobs.active == 1
    assert stats.jobs.paused == 1
    assert stats.executions.total == 4
    assert stats.executions.successful == 2
    assert stats.executions.failed == 1
    assert stats.executions.timed_out == 1
    assert stats.executions.success_rate == 50.0
    assert [summary.job_name for summary in stats.recent_executions] == ["Report", "Report", "Report", "Ping"]
