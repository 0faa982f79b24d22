import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from cron_scheduler.domain.execution import RESPONSE_BODY_LIMIT
from cron_scheduler.domain.job import HttpMethod, Job, TargetType
from cron_scheduler.errors import DispatchTimeoutError, DispatchTransportError
from cron_scheduler.executors.protocol import DispatchResult, JobExecutor

logger = logging.getLogger(__name__)

BODY_METHODS = (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class HttpJobExecutor(JobExecutor):
    """
    Job executor for making HTTP requests using aiohttp.

    Every response is a completed dispatch whatever its status code; only
    2xx counts as success. Connection errors and timeouts are raised.
    """

    def __init__(self, body_limit: int = RESPONSE_BODY_LIMIT):
        self.body_limit = body_limit

    @staticmethod
    def supported_target() -> TargetType:
        return TargetType.HTTP

    async def async_execute(self, job: Job) -> DispatchResult:
        """
        Asynchronously execute the given job by making an HTTP request.

        Args:
            job (Job): The job to be executed.
        """
        request_kwargs: Dict[str, Any] = {
            "method": job.http_method.value,
            "url": job.target_url,
            "headers": job.headers or {},
        }
        if job.http_method in BODY_METHODS and job.payload is not None:
            request_kwargs["json"] = job.payload

        timeout = aiohttp.ClientTimeout(total=job.timeout / 1000)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(**request_kwargs) as response:
                    body = await response.text(errors="replace")
                    return DispatchResult(
                        success=200 <= response.status < 300,
                        status_code=response.status,
                        response_body=self._truncate(body, response.content_type),
                    )
        except asyncio.TimeoutError as e:
            raise DispatchTimeoutError(f"Request timed out after {job.timeout}ms") from e
        except aiohttp.ClientError as e:
            raise DispatchTransportError(f"Request failed: {e}") from e
        except Exception as e:
            logger.exception("Unexpected error calling %s for job %s", job.target_url, job.id)
            raise DispatchTransportError(f"Unexpected error: {e}") from e

    def _truncate(self, body: Optional[str], content_type: str) -> Optional[str]:
        if body is None:
            return None
        if content_type == "application/json":
            try:
                body = json.dumps(json.loads(body), separators=(",", ":"), ensure_ascii=False)
            except ValueError:
                # Mislabelled body, keep it raw.
                pass
        return body[:self.body_limit]
