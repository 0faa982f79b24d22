import pytest

from cron_scheduler.domain.job import Job, TargetType
from cron_scheduler.executors.script import SCRIPT_DISABLED_BODY, SCRIPT_DISABLED_ERROR, ScriptJobExecutor


@pytest.mark.asyncio
async def test_script_is_never_run(tmp_path):
    marker = tmp_path / "ran"
    job = Job(
        owner_id="user_1",
        name="Backup",
        cron_expression="0 3 * * *",
        target_type=TargetType.SCRIPT,
        command=f"touch {marker}",
    )

    result = await ScriptJobExecutor().async_execute(job)

    assert result.success is False
    assert result.status_code is None
    assert result.response_body == SCRIPT_DISABLED_BODY
    assert result.error_message == SCRIPT_DISABLED_ERROR
    assert not marker.exists()
