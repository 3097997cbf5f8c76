import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from trilha.main.config import get_loglevel
from trilha.main.request_context import get_request_context


JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}


class ContextJSONFormatter(logging.Formatter):
    """Serialize log records, the bound task context and ``extra`` fields into JSON."""

    RESERVED_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    # Surfaced even when only passed on the record
    DEFAULT_KEYS = ("correlation_id", "job_id", "audit_log_id", "error_code")

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting logic
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in get_request_context().items():
            if value is not None and key not in log:
                log[key] = value

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith("_") or value is None:
                continue
            log.setdefault(key, value)

        for key in self.DEFAULT_KEYS:
            if key not in log and getattr(record, key, None) is not None:
                log[key] = getattr(record, key)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log["stack"] = record.stack_info

        return json.dumps(log, default=str)


# Quiet third-party loggers unless we are debugging
for _logger in logging.root.manager.loggerDict:
    if get_loglevel() <= logging.DEBUG:
        logging.getLogger(_logger).setLevel(logging.INFO)
    else:
        logging.getLogger(_logger).setLevel(logging.CRITICAL)

# SQLAlchemy is too verbose even at INFO, and must not reach the root logger
for logger_name in ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm", "sqlalchemy.dialects"):
    sa_logger = logging.getLogger(logger_name)
    sa_logger.setLevel(logging.WARNING)
    sa_logger.propagate = False


class SimpleLogger(logging.Logger):
    FORMAT_STRING = "%(asctime)s | %(levelname)s | %(name)s : %(message)s"

    def __init__(
        self,
        name="main",
        fmt_string=FORMAT_STRING,
        level=logging.WARNING,
        console=True,
        files=None,
    ):
        logging.Logger.__init__(self, name, level)
        formatter_obj: logging.Formatter
        if JSON_LOGS_ENABLED:
            formatter_obj = ContextJSONFormatter()
        else:
            formatter_obj = logging.Formatter(fmt_string)

        if files is None:
            files = []
        elif isinstance(files, str):
            files = [files]

        def _add_stream(handler: type[logging.Handler], **kwargs):
            handler_obj = handler(**kwargs)
            handler_obj.setLevel(level)
            handler_obj.setFormatter(formatter_obj)
            self.addHandler(handler_obj)

        if console is True:
            if JSON_LOGS_ENABLED:
                _add_stream(logging.StreamHandler, stream=sys.stdout)
            else:
                # RichHandler does its own formatting
                rich_handler = RichHandler(rich_tracebacks=True, markup=False, show_path=True)
                rich_handler.setLevel(level)
                self.addHandler(rich_handler)

        for filepath in files:
            _add_stream(logging.FileHandler, filename=filepath)


def get_logger(module_name: str):
    return SimpleLogger(name=module_name, level=get_loglevel())
