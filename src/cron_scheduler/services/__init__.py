from .jobs import JobService
from .executions import ExecutionService

__all__ = ["JobService", "ExecutionService"]
