"""
Run context: the run_id bound to the current task.

The runner, the event stream and the billing subscriber bind the run they
work on; the log filter in infra.logging reads it back so every record
carries its run_id without callers passing it around.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
import logging


_current_run: ContextVar[Optional[str]] = ContextVar("toolrun_run_id", default=None)

_run_logger = logging.getLogger("toolrun.aicore.run")


def current_run_id() -> Optional[str]:
    return _current_run.get()


@contextmanager
def run_scope(run_id: Optional[str]) -> Iterator[Optional[str]]:
    """
    Bind run_id for everything executed inside the block.

    An empty run_id leaves the enclosing binding untouched.
    """
    if not run_id:
        yield current_run_id()
        return

    token = _current_run.set(run_id)
    try:
        yield run_id
    finally:
        _current_run.reset(token)


def log_run_end(
    run_id: str,
    success: bool,
    tool_calls: int = 0,
    error_code: Optional[str] = None,
) -> None:
    """RUN_END boundary record, one per run, for post-mortems."""
    extra = {"run_id": run_id or "-", "success": success, "tool_calls": tool_calls}
    if success:
        _run_logger.info(f"RUN_END: success=True, tool_calls={tool_calls}", extra=extra)
        return

    extra["error_code"] = error_code or "internal"
    _run_logger.error(
        f"RUN_END: success=False, error_code={extra['error_code']}, tool_calls={tool_calls}",
        extra=extra,
    )
