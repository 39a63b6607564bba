"""
Logging Setup
-------------
Handlers for the `toolrun` logger tree.

Every record is stamped with the run_id bound by aicore.run_context
(ToolRunner.exec, RunEventStream, BillingSubscriber.record). Console
output goes through Rich, file output is one JSON object per line.

Severity: INFO = state, WARNING = recoverable (denials, validation),
ERROR = failed execution or billing rejection. Tool args, outputs and
capabilities are never logged.
"""

from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

from rich.console import Console
from rich.logging import RichHandler

from aicore.run_context import current_run_id

ROOT_LOGGER_NAME = "toolrun"
LOG_FILE_NAME = "toolrun.log"

# Attributes every LogRecord has; anything else came in through `extra=`
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "run_id"}


class RunIdFilter(logging.Filter):
    """Stamps record.run_id from the bound run, or '-' outside a run."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "run_id", None) is None:
            record.run_id = current_run_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields are carried as-is."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", "-"),
            "message": record.getMessage(),
        }
        payload.update(
            (name, value) for name, value in record.__dict__.items()
            if name not in _RECORD_ATTRS
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class RunAwareRichHandler(RichHandler):
    """Rich console handler that prefixes messages with the run_id."""

    def render_message(self, record: logging.LogRecord, message: str):
        run_id = getattr(record, "run_id", "-")
        if run_id != "-":
            message = f"[{run_id}] {message}"
        return super().render_message(record, message)


def configure_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    console: bool = True,
    file: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
) -> Optional[Path]:
    """
    Replace the handlers on the `toolrun` logger.

    Returns the log file path when file output is enabled. The file
    handler records everything from DEBUG up; the console honours level.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if file else level)

    run_filter = RunIdFilter()
    log_file = None

    if console:
        console_handler = RunAwareRichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(level)
        console_handler.addFilter(run_filter)
        root.addHandler(console_handler)

    if file:
        log_file = Path(log_dir or "logs") / LOG_FILE_NAME
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(run_filter)
        root.addHandler(file_handler)

    return log_file
