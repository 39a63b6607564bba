"""
Error Taxonomy
--------------
Closed error vocabularies for the AI execution pipeline and the single
normalizer every run boundary uses.

Layers:
- ToolErrorCode: tool-level failures, returned as values by the runner
- AiExecutionErrorCode: run-level failures, the only thing a client sees
- LlmErrorKind: typed failures raised by LLM adapters

Rule: classification reads structured fields (name, code, status, kind),
never message text.
"""

from enum import Enum
from typing import Any, Optional
import asyncio

import httpx


class ToolErrorCode(str, Enum):
    """Why a single tool call failed."""
    VALIDATION = "validation"              # Input or output schema rejected
    EXECUTION = "execution"                # Implementation raised or was aborted
    UNAVAILABLE = "unavailable"            # Tool ID not in the source
    REDACTION_FAILED = "redaction_failed"  # Result could not be made safe
    INVALID_JSON = "invalid_json"          # Raw arguments did not decode
    TIMEOUT = "timeout"                    # Runtime budget exceeded
    POLICY_DENIED = "policy_denied"        # Policy refused the call


class AiExecutionErrorCode(str, Enum):
    """Why a whole AI run failed."""
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    RATE_LIMIT = "rate_limit"
    INTERNAL = "internal"
    INSUFFICIENT_CREDITS = "insufficient_credits"


class LlmErrorKind(str, Enum):
    """Failure kinds an LLM adapter can report."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    PROVIDER_4XX = "provider_4xx"
    PROVIDER_5XX = "provider_5xx"
    ABORTED = "aborted"
    UNKNOWN = "unknown"


_EXECUTION_CODES = frozenset(code.value for code in AiExecutionErrorCode)


class AiExecutionError(Exception):
    """Run-level failure carrying a structured code."""

    def __init__(self, code: AiExecutionErrorCode, message: Optional[str] = None):
        self.code = AiExecutionErrorCode(code)
        super().__init__(message or f"AI execution failed: {self.code.value}")


class LlmError(Exception):
    """Typed error raised by LLM adapters."""

    def __init__(self, message: str, kind: LlmErrorKind, status: Optional[int] = None):
        super().__init__(message)
        self.kind = LlmErrorKind(kind)
        self.status = status

    def __repr__(self) -> str:
        return f"LlmError({self.kind.value}, status={self.status})"


class AbortError(Exception):
    """Raised when a caller-supplied abort signal fires."""

    def __init__(self, message: str = "The operation was aborted"):
        super().__init__(message)
        self.name = "AbortError"


def is_ai_execution_error_code(value: Any) -> bool:
    """Check whether a value is a member of the execution code set."""
    if isinstance(value, AiExecutionErrorCode):
        return True
    return isinstance(value, str) and value in _EXECUTION_CODES


def classify_llm_error_from_status(status: int) -> LlmErrorKind:
    """Map an HTTP status from a provider to an LLM error kind."""
    if status == 408:
        return LlmErrorKind.TIMEOUT
    if status == 429:
        return LlmErrorKind.RATE_LIMITED
    if 400 <= status < 500:
        return LlmErrorKind.PROVIDER_4XX
    if 500 <= status < 600:
        return LlmErrorKind.PROVIDER_5XX
    return LlmErrorKind.UNKNOWN


def llm_error_from_httpx(exc: httpx.HTTPError) -> LlmError:
    """
    Build a typed LlmError from an httpx failure.

    Adapters call this at their boundary so that nothing downstream has
    to inspect transport exceptions or response bodies.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return LlmError(
            f"Provider returned HTTP {status}",
            classify_llm_error_from_status(status),
            status=status,
        )
    if isinstance(exc, httpx.TimeoutException):
        return LlmError("Provider request timed out", LlmErrorKind.TIMEOUT)
    return LlmError(f"Provider request failed: {type(exc).__name__}", LlmErrorKind.UNKNOWN)


def _attr(error: BaseException, name: str) -> Any:
    """Read an attribute that may be a property; any failure reads as absent."""
    try:
        return getattr(error, name, None)
    except Exception:
        return None


def _is_abort(error: BaseException) -> bool:
    if isinstance(error, asyncio.CancelledError):
        return True
    if type(error).__name__ == "AbortError":
        return True
    return _attr(error, "name") == "AbortError"


def normalize_error_to_execution_code(error: object) -> AiExecutionErrorCode:
    """
    Reduce any thrown value to an AiExecutionErrorCode.

    Priority, first match wins:
    1. abort signals (AbortError, CancelledError) -> aborted
    2. a valid structured `code` attribute -> that code
    3. `status` 429/408, `kind` rate_limited/timeout/aborted, TimeoutError
    4. anything else -> internal

    Pure and total: never raises, never reads the message.
    """
    if not isinstance(error, BaseException):
        return AiExecutionErrorCode.INTERNAL
    try:
        return _classify(error)
    except Exception:
        return AiExecutionErrorCode.INTERNAL


def _classify(error: BaseException) -> AiExecutionErrorCode:
    if _is_abort(error):
        return AiExecutionErrorCode.ABORTED

    code = _attr(error, "code")
    if is_ai_execution_error_code(code):
        return AiExecutionErrorCode(code)

    status = _attr(error, "status")
    if status == 429:
        return AiExecutionErrorCode.RATE_LIMIT
    if status == 408:
        return AiExecutionErrorCode.TIMEOUT

    kind = _attr(error, "kind")
    if kind == LlmErrorKind.RATE_LIMITED:
        return AiExecutionErrorCode.RATE_LIMIT
    if kind == LlmErrorKind.TIMEOUT:
        return AiExecutionErrorCode.TIMEOUT
    if kind == LlmErrorKind.ABORTED:
        return AiExecutionErrorCode.ABORTED

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return AiExecutionErrorCode.TIMEOUT

    return AiExecutionErrorCode.INTERNAL


def safe_message(error: object, fallback: str) -> str:
    """Extract a short message from a thrown value, or the fallback."""
    if isinstance(error, BaseException):
        message = str(error)
        if message:
            return message
    return fallback
