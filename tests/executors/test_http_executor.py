import asyncio

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from cron_scheduler.domain.job import HttpMethod, Job, TargetType
from cron_scheduler.errors import DispatchTimeoutError, DispatchTransportError
from cron_scheduler.executors.http import HttpJobExecutor

URL_PING = "https://example.com/ping"


@pytest.fixture(scope="function")
def http_executor():
    return HttpJobExecutor()


@pytest.fixture(scope="function")
def sample_job():
    return Job(
        owner_id="user_1",
        name="Test HTTP Job",
        cron_expression="*/5 * * * *",
        target_type=TargetType.HTTP,
        target_url=URL_PING,
        headers={"X-Token": "secret"},
        timeout=5000,
    )


@pytest.mark.asyncio
async def test_async_execute_success(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, status=200, payload={"result": "success"})

        result = await http_executor.async_execute(sample_job)

    assert result.success is True
    assert result.status_code == 200
    assert result.response_body == '{"result":"success"}'
    assert result.error_message is None


@pytest.mark.asyncio
async def test_async_execute_sends_headers(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, status=204)

        await http_executor.async_execute(sample_job)

        call = m.requests[("GET", URL(URL_PING))][0]
        assert call.kwargs["headers"] == {"X-Token": "secret"}
        assert "json" not in call.kwargs


@pytest.mark.asyncio
async def test_async_execute_post_sends_payload(http_executor, sample_job):
    job = sample_job.model_copy(update={"http_method": HttpMethod.POST, "payload": {"report": "daily"}})

    with aioresponses() as m:
        m.post(URL_PING, status=201, body="created", content_type="text/plain")

        result = await http_executor.async_execute(job)

        call = m.requests[("POST", URL(URL_PING))][0]
        assert call.kwargs["json"] == {"report": "daily"}

    assert result.success is True
    assert result.response_body == "created"


@pytest.mark.asyncio
async def test_async_execute_get_ignores_payload(http_executor, sample_job):
    job = sample_job.model_copy(update={"payload": {"ignored": True}})

    with aioresponses() as m:
        m.get(URL_PING, status=200)

        await http_executor.async_execute(job)

        call = m.requests[("GET", URL(URL_PING))][0]
        assert "json" not in call.kwargs


@pytest.mark.asyncio
async def test_async_execute_error_status_is_not_success(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, status=500, body="Internal error", content_type="text/plain")

        result = await http_executor.async_execute(sample_job)

    assert result.success is False
    assert result.status_code == 500
    assert result.response_body == "Internal error"


@pytest.mark.asyncio
async def test_async_execute_truncates_body(sample_job):
    executor = HttpJobExecutor(body_limit=100)

    with aioresponses() as m:
        m.get(URL_PING, status=200, body="x" * 6000, content_type="text/plain")

        result = await executor.async_execute(sample_job)

    assert result.response_body == "x" * 100


@pytest.mark.asyncio
async def test_async_execute_default_body_limit(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, status=200, body="y" * 6000, content_type="text/plain")

        result = await http_executor.async_execute(sample_job)

    assert len(result.response_body) == 5000


@pytest.mark.asyncio
async def test_async_execute_timeout(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, exception=asyncio.TimeoutError())

        with pytest.raises(DispatchTimeoutError, match="Request timed out after 5000ms"):
            await http_executor.async_execute(sample_job)


@pytest.mark.asyncio
async def test_async_execute_connection_error(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, exception=aiohttp.ClientConnectionError("Connection refused"))

        with pytest.raises(DispatchTransportError, match="Request failed: Connection refused") as exc_info:
            await http_executor.async_execute(sample_job)

    assert not isinstance(exc_info.value, DispatchTimeoutError)


@pytest.mark.asyncio
async def test_async_execute_unexpected_error(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, exception=Exception("Connection error"))

        with pytest.raises(DispatchTransportError, match="Unexpected error: Connection error"):
            await http_executor.async_execute(sample_job)


@pytest.mark.asyncio
async def test_async_execute_undecodable_body_is_completed(http_executor, sample_job):
    with aioresponses() as m:
        m.get(URL_PING, status=200, body=b"\xff\xfe\x00bin", content_type="text/plain; charset=utf-8")

        result = await http_executor.async_execute(sample_job)

    assert result.success is True
    assert result.status_code == 200
    assert "\ufffd" in result.response_body
    assert result.response_body.endswith("bin")
