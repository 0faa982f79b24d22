"""
Logging setup for scheduler entry points.

Library modules only create `logging.getLogger(__name__)` loggers; processes
(web app, worker, beat) call configure_logging() once at startup. Structured
context is passed through `extra` (job_id, key, attempt) and rendered after
the message.
"""

import logging
import sys
from typing import TextIO

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Append `extra` fields to the formatted message as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if context:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
            message = f"{message} [{rendered}]"
        return message


def configure_logging(level: str = "INFO", stream: TextIO = sys.stderr) -> None:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Per-request noise from the HTTP client and the ORM.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
