from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text, delete, func
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from cron_scheduler.domain.execution import ExecutionAttempt, ExecutionStatus
from cron_scheduler.domain.job import HttpMethod, Job, JobStatus, TargetType
from cron_scheduler.storages.protocol import Storage

Base = declarative_base()


class JobModel(Base):
    __tablename__ = 'cron_jobs'

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    cron_expression = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    target_type = Column(String, nullable=False)
    target_url = Column(String)
    command = Column(String(1000))
    http_method = Column(String, nullable=False, default="GET")
    headers = Column(JSON)
    payload = Column(JSON)
    status = Column(String, nullable=False, index=True)
    timeout = Column(Integer, nullable=False)
    max_retries = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ExecutionModel(Base):
    __tablename__ = 'execution_logs'

    id = Column(String, primary_key=True)
    job_id = Column(String, ForeignKey('cron_jobs.id', ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False)
    response_code = Column(Integer)
    response_body = Column(Text)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True))
    duration = Column(Integer)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops offsets, so everything is stored as UTC wall time.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlAlchemyStorage(Storage):
    def __init__(self, db_url: str, **engine_kwargs):
        self.engine = create_async_engine(db_url, **engine_kwargs)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        await self.engine.dispose()

    async def create_job(self, job: Job) -> str:
        async with self.async_session() as session:
            db_job = JobModel(id=job.id)
            self._copy_job(job, db_job)
            db_job.created_at = _to_utc(job.created_at)
            session.add(db_job)
            await session.commit()
            return job.id

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self.async_session() as session:
            result = await session.execute(select(JobModel).filter_by(id=job_id))
            db_job = result.scalar_one_or_none()
            if db_job:
                return self._db_to_job(db_job)
            return None

    async def update_job(self, job: Job) -> bool:
        async with self.async_session() as session:
            result = await session.execute(select(JobModel).filter_by(id=job.id))
            db_job = result.scalar_one_or_none()
            if db_job:
                self._copy_job(job, db_job)
                await session.commit()
                return True
            return False

    async def delete_job(self, job_id: str) -> bool:
        async with self.async_session() as session:
            result = await session.execute(select(JobModel).filter_by(id=job_id))
            db_job = result.scalar_one_or_none()
            if db_job:
                await session.execute(delete(ExecutionModel).where(ExecutionModel.job_id == job_id))
                await session.delete(db_job)
                await session.commit()
                return True
            return False

    async def list_jobs(self, owner_id: str, skip: int = 0, take: int = 20, status: Optional[JobStatus] = None) -> List[Job]:
        async with self.async_session() as session:
            query = select(JobModel).filter_by(owner_id=owner_id)
            if status is not None:
                query = query.filter_by(status=JobStatus(status).value)
            result = await session.execute(
                query.order_by(JobModel.created_at.desc(), JobModel.id.desc()).offset(skip).limit(take)
            )
            return [self._db_to_job(db_job) for db_job in result.scalars()]

    async def count_jobs(self, owner_id: str, status: Optional[JobStatus] = None) -> int:
        async with self.async_session() as session:
            query = select(func.count()).select_from(JobModel).where(JobModel.owner_id == owner_id)
            if status is not None:
                query = query.where(JobModel.status == JobStatus(status).value)
            result = await session.execute(query)
            return result.scalar_one()

    async def list_active_jobs(self) -> List[Job]:
        async with self.async_session() as session:
            result = await session.execute(
                select(JobModel).filter_by(status=JobStatus.ACTIVE.value).order_by(JobModel.created_at)
            )
            return [self._db_to_job(db_job) for db_job in result.scalars()]

    async def create_execution(self, attempt: ExecutionAttempt) -> str:
        async with self.async_session() as session:
            db_execution = ExecutionModel(
                id=attempt.id,
                job_id=attempt.job_id,
                status=attempt.status.value,
                response_code=attempt.response_code,
                response_body=attempt.response_body,
                error_message=attempt.error_message,
                started_at=_to_utc(attempt.started_at),
                finished_at=_to_utc(attempt.finished_at),
                duration=attempt.duration
            )
            session.add(db_execution)
            await session.commit()
            return attempt.id

    async def get_execution(self, execution_id: str) -> Optional[ExecutionAttempt]:
        async with self.async_session() as session:
            result = await session.execute(select(ExecutionModel).filter_by(id=execution_id))
            db_execution = result.scalar_one_or_none()
            if db_execution:
                return self._db_to_execution(db_execution)
            return None

    async def list_executions(self, job_id: str, skip: int = 0, take: int = 20, status: Optional[ExecutionStatus] = None) -> List[ExecutionAttempt]:
        async with self.async_session() as session:
            query = select(ExecutionModel).filter_by(job_id=job_id)
            if status is not None:
                query = query.filter_by(status=ExecutionStatus(status).value)
            result = await session.execute(
                query.order_by(ExecutionModel.started_at.desc(), ExecutionModel.id.desc()).offset(skip).limit(take)
            )
            return [self._db_to_execution(db_execution) for db_execution in result.scalars()]

    async def count_executions(self, job_id: Optional[str] = None, owner_id: Optional[str] = None, status: Optional[ExecutionStatus] = None) -> int:
        async with self.async_session() as session:
            query = select(func.count()).select_from(ExecutionModel)
            if owner_id is not None:
                query = query.join(JobModel, JobModel.id == ExecutionModel.job_id).where(JobModel.owner_id == owner_id)
            if job_id is not None:
                query = query.where(ExecutionModel.job_id == job_id)
            if status is not None:
                query = query.where(ExecutionModel.status == ExecutionStatus(status).value)
            result = await session.execute(query)
            return result.scalar_one()

    async def average_duration(self, job_id: str) -> Optional[float]:
        async with self.async_session() as session:
            result = await session.execute(
                select(func.avg(ExecutionModel.duration))
                .where(ExecutionModel.job_id == job_id, ExecutionModel.duration.is_not(None))
            )
            value = result.scalar_one_or_none()
            return float(value) if value is not None else None

    async def list_recent_executions_for_owner(self, owner_id: str, limit: int = 10) -> List[Tuple[ExecutionAttempt, str]]:
        async with self.async_session() as session:
            result = await session.execute(
                select(ExecutionModel, JobModel.name)
                .join(JobModel, JobModel.id == ExecutionModel.job_id)
                .where(JobModel.owner_id == owner_id)
                .order_by(ExecutionModel.started_at.desc(), ExecutionModel.id.desc())
                .limit(limit)
            )
            return [(self._db_to_execution(db_execution), name) for db_execution, name in result.all()]

    async def delete_executions_before(self, cutoff: datetime) -> int:
        async with self.async_session() as session:
            result = await session.execute(
                delete(ExecutionModel).where(ExecutionModel.started_at < _to_utc(cutoff))
            )
            await session.commit()
            return result.rowcount or 0

    def _copy_job(self, job: Job, db_job: JobModel) -> None:
        db_job.owner_id = job.owner_id
        db_job.name = job.name
        db_job.cron_expression = job.cron_expression
        db_job.timezone = job.timezone
        db_job.target_type = job.target_type.value
        db_job.target_url = job.target_url
        db_job.command = job.command
        db_job.http_method = job.http_method.value
        db_job.headers = job.headers
        db_job.payload = job.payload
        db_job.status = job.status.value
        db_job.timeout = job.timeout
        db_job.max_retries = job.max_retries
        db_job.updated_at = _to_utc(job.updated_at)

    def _db_to_job(self, db_job: JobModel) -> Job:
        return Job(
            id=db_job.id,
            owner_id=db_job.owner_id,
            name=db_job.name,
            cron_expression=db_job.cron_expression,
            timezone=db_job.timezone,
            target_type=TargetType(db_job.target_type),
            target_url=db_job.target_url,
            command=db_job.command,
            http_method=HttpMethod(db_job.http_method),
            headers=db_job.headers,
            payload=db_job.payload,
            status=JobStatus(db_job.status),
            timeout=db_job.timeout,
            max_retries=db_job.max_retries,
            created_at=_to_utc(db_job.created_at),
            updated_at=_to_utc(db_job.updated_at)
        )

    def _db_to_execution(self, db_execution: ExecutionModel) -> ExecutionAttempt:
        return ExecutionAttempt(
            id=db_execution.id,
            job_id=db_execution.job_id,
            status=ExecutionStatus(db_execution.status),
            response_code=db_execution.response_code,
            response_body=db_execution.response_body,
            error_message=db_execution.error_message,
            started_at=_to_utc(db_execution.started_at),
            finished_at=_to_utc(db_execution.finished_at),
            duration=db_execution.duration
        )


class InMemoryStorage(SqlAlchemyStorage):
    def __init__(self):
        super().__init__(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
