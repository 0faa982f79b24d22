import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from cron_scheduler.errors import TargetConfigurationError

logger = logging.getLogger(__name__)

MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 300000
DEFAULT_TIMEOUT_MS = 30000
MAX_RETRIES_LIMIT = 10
DEFAULT_MAX_RETRIES = 3


def utcnow() -> datetime:
    return datetime.now(ZoneInfo("UTC"))


class JobStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class TargetType(str, Enum):
    HTTP = "HTTP"
    SCRIPT = "SCRIPT"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class JobDefinition(BaseModel):
    """
    The user-editable part of a job: what to run and when.
    """
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    cron_expression: str = Field(..., min_length=1, description="Cron expression, 5 fields or 6 with leading seconds")
    timezone: str = Field(default="UTC", description="IANA timezone the cron expression is evaluated in")
    target_type: TargetType = Field(..., description="Kind of action dispatched on each firing")
    target_url: Optional[str] = Field(None, description="URL called for HTTP jobs")
    command: Optional[str] = Field(None, max_length=1000, description="Command string for SCRIPT jobs")
    http_method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method for HTTP jobs")
    headers: Optional[Dict[str, str]] = Field(None, description="Extra request headers for HTTP jobs")
    payload: Optional[Any] = Field(None, description="JSON body sent with POST, PUT and PATCH requests")
    timeout: int = Field(default=DEFAULT_TIMEOUT_MS, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS, description="Hard dispatch deadline in milliseconds")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=MAX_RETRIES_LIMIT, description="Redeliveries allowed after a failed dispatch")

    @field_validator("target_url")
    def check_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.lower().startswith(("http://", "https://")):
            raise ValueError("Invalid URL")
        return v

    @model_validator(mode="after")
    def check_target(self) -> "JobDefinition":
        if self.target_type == TargetType.HTTP and not self.target_url:
            raise ValueError("targetUrl is required for HTTP jobs")
        if self.target_type == TargetType.SCRIPT and not self.command:
            raise ValueError("command is required for SCRIPT jobs")
        return self


class JobCreate(JobDefinition):
    """
    Input for creating a job.
    """


class JobUpdate(BaseModel):
    """
    Partial update of a job. Only fields explicitly set are applied, so an
    explicit None clears a nullable field while an omitted one is untouched.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    cron_expression: Optional[str] = Field(None, min_length=1)
    timezone: Optional[str] = None
    target_type: Optional[TargetType] = None
    target_url: Optional[str] = None
    command: Optional[str] = Field(None, max_length=1000)
    http_method: Optional[HttpMethod] = None
    headers: Optional[Dict[str, str]] = None
    payload: Optional[Any] = None
    status: Optional[JobStatus] = None
    timeout: Optional[int] = Field(None, ge=MIN_TIMEOUT_MS, le=MAX_TIMEOUT_MS)
    max_retries: Optional[int] = Field(None, ge=0, le=MAX_RETRIES_LIMIT)

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        # Non-nullable columns ignore an explicit None.
        for key in ("name", "cron_expression", "timezone", "target_type", "http_method", "status", "timeout", "max_retries"):
            if key in data and data[key] is None:
                del data[key]
        return data


class Job(JobDefinition):
    """
    A persisted recurring task owned by a user.
    """
    id: str = Field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}", description="Unique job identifier")
    owner_id: str = Field(..., description="Identifier of the owning user")
    status: JobStatus = Field(default=JobStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    def check_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            logger.debug("Naive job timestamp, assuming UTC")
            return v.replace(tzinfo=ZoneInfo("UTC"))
        return v

    @property
    def is_active(self) -> bool:
        return self.status == JobStatus.ACTIVE

    def apply(self, update: JobUpdate) -> "Job":
        """
        Return a new Job with the update applied. The original is untouched.

        Raises:
            TargetConfigurationError: If the merged job is not a valid definition.
        """
        data = self.model_dump()
        data.update(update.changes())
        data["updated_at"] = utcnow()
        return build_model(Job, data)

    def with_status(self, status: JobStatus) -> "Job":
        return self.model_copy(update={"status": status, "updated_at": utcnow()})


def _format_errors(error: ValidationError) -> List[Dict[str, str]]:
    formatted = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        formatted.append({"field": field, "message": item.get("msg", "Invalid value")})
    return formatted


def build_model(model_class, data: Dict[str, Any]):
    """
    Validate `data` into `model_class`, translating pydantic errors into
    TargetConfigurationError so callers see one error type for bad definitions.
    """
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        errors = _format_errors(e)
        message = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise TargetConfigurationError(f"Validation failed: {message}", errors=errors) from e


class JobView(BaseModel):
    """
    A job as returned to API callers, with its computed schedule.
    """
    job: Job
    next_execution: Optional[datetime] = None
    schedule_description: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class Page(BaseModel):
    items: List[Any]
    pagination: Pagination

    @classmethod
    def build(cls, items: List[Any], page: int, limit: int, total: int) -> "Page":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(items=items, pagination=Pagination(page=page, limit=limit, total=total, total_pages=total_pages))
