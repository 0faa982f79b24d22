from typing import Any, Dict, List, Optional


class SchedulerError(Exception):
    """
    Base class for errors surfaced to callers of the scheduling services.

    Each error carries an HTTP-style status code so the web layer can turn it
    into a structured response without knowing the concrete type.
    """
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "status": self.status,
            "message": self.message,
        }


class InvalidScheduleError(SchedulerError):
    status_code = 400

    def __init__(self, message: str = "Invalid cron expression"):
        super().__init__(message)


class TargetConfigurationError(SchedulerError):
    status_code = 422

    def __init__(self, message: str = "Invalid job target configuration", errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors: List[Dict[str, str]] = errors or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class ForbiddenError(SchedulerError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(SchedulerError):
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class TriggerQueueError(SchedulerError):
    """
    The trigger queue could not be reached or rejected a write.
    """
    status_code = 503

    def __init__(self, message: str = "Trigger queue unavailable"):
        super().__init__(message)


class DispatchTransportError(Exception):
    """
    A dispatch failed before producing a response (connection refused, DNS,
    unexpected exception). Raised to the queue so the delivery is retried.
    """

    def __init__(self, message: str, attempts_made: int = 0):
        super().__init__(message)
        self.message = message
        self.attempts_made = attempts_made


class DispatchTimeoutError(DispatchTransportError):
    """
    The dispatch exceeded the job's configured timeout.
    """
