import asyncio

from cron_scheduler.config import Settings
from cron_scheduler.domain.job import Job, TargetType
from cron_scheduler.errors import SchedulerError
from cron_scheduler.executor_factory import JobExecutorFactory
from cron_scheduler.executors.protocol import DispatchResult, JobExecutor
from cron_scheduler.logging import configure_logging
from cron_scheduler.runtime import SchedulerRuntime
from cron_scheduler.storages.sqlalchemy import InMemoryStorage

OWNER_ID = "demo"


class PrintExecutor(JobExecutor):
    @staticmethod
    def supported_target() -> TargetType:
        return TargetType.HTTP

    async def async_execute(self, job: Job) -> DispatchResult:
        print(f"Executing job {job.id}: {job.http_method.value} {job.target_url}")
        return DispatchResult(success=True, status_code=200)


# Set up the runtime with an executor that only prints
executor_factory = JobExecutorFactory()
executor_factory.register(PrintExecutor)
runtime = SchedulerRuntime.in_memory(Settings(), storage=InMemoryStorage(), executor_factory=executor_factory)


async def get_user_input():
    return await asyncio.to_thread(input, "> ")


async def prompt():
    print("Enter '<cron expression> | <url>' to schedule a job, 'list' to show jobs, 'exit' to quit.")
    while True:
        user_input = (await get_user_input()).strip()
        if user_input.lower() == "exit":
            break

        if user_input.lower() == "list":
            page = await runtime.jobs.list_jobs(OWNER_ID)
            for view in page.items:
                print(f"{view.job.id} {view.schedule_description} next={view.next_execution}")
            continue

        try:
            cron_expression, url = (part.strip() for part in user_input.split("|", 1))
            view = await runtime.jobs.create_job(OWNER_ID, {
                "name": url,
                "cron_expression": cron_expression,
                "target_type": "HTTP",
                "target_url": url,
            })
            print(f"Job created: {view.job.id}")
            print(f"Schedule: {view.schedule_description}, next run at {view.next_execution}")
        except ValueError:
            print("Expected '<cron expression> | <url>'")
        except SchedulerError as e:
            print(f"Error: {e.message}")


async def main():
    configure_logging("WARNING")
    await runtime.start()
    await prompt()
    await runtime.stop()


if __name__ == "__main__":
    asyncio.run(main())
