import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from linkmeta.main.config import get_loglevel
from linkmeta.main.job_context import get_job_context


JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

# Libraries that log far more than the worker needs at INFO
NOISY_LOGGERS = (
    "asyncio",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "sqlalchemy.dialects",
)


class ContextJSONFormatter(logging.Formatter):
    """One JSON object per record, with the current job context merged in."""

    # Everything a bare LogRecord carries; any other attribute came from ``extra=``
    RESERVED_ATTRS = frozenset(
        logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in get_job_context().items():
            if value is not None:
                log.setdefault(key, value)

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith("_") or value is None:
                continue
            log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log["stack"] = record.stack_info

        return json.dumps(log, default=str)


def quiet_noisy_loggers(level: int) -> None:
    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(quiet_level)
        if name.startswith("sqlalchemy"):
            noisy.propagate = False


def _build_handler(level: int) -> logging.Handler:
    handler: logging.Handler
    if JSON_LOGS_ENABLED:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(ContextJSONFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, markup=True, show_path=True)
    handler.setLevel(level)
    return handler


class SimpleLogger(logging.Logger):
    """A standalone logger with a single stdout or Rich console handler."""

    def __init__(self, name: str, level: int = logging.WARNING):
        super().__init__(name, level)
        self.addHandler(_build_handler(level))


quiet_noisy_loggers(get_loglevel())


def get_logger(module_name: str) -> SimpleLogger:
    return SimpleLogger(name=module_name, level=get_loglevel())
