# AI core module - error taxonomy, event protocol, usage facts, billing
# Every run failure is reduced to an AiExecutionErrorCode before it leaves a run

from .errors import (
    AbortError, AiExecutionError, AiExecutionErrorCode, LlmError, LlmErrorKind,
    ToolErrorCode, classify_llm_error_from_status, is_ai_execution_error_code,
    llm_error_from_httpx, normalize_error_to_execution_code,
)
from .events import (
    AiEvent, AssistantFinalEvent, DoneEvent, ErrorEvent, EventFanout,
    EventProtocolError, RunEventStream, StatusEvent, TextDeltaEvent,
    ToolCallResultEvent, ToolCallStartEvent, UsageReportEvent,
    INTERNAL_EVENT_TYPES, UI_EVENT_TYPES, parse_ai_event,
)
from .usage import (
    ExecutorType, UsageFact, UsageFactHints, UsageFactStrict,
    UsageIdempotencyKey, idempotency_key_for, missing_usage_unit_id,
    validate_usage_fact,
)
from .billing import BillingSubscriber, CommitOutcome, InMemoryUsageLedger, UsageLedgerPort

__all__ = [
    # Errors
    "AbortError",
    "AiExecutionError",
    "AiExecutionErrorCode",
    "LlmError",
    "LlmErrorKind",
    "ToolErrorCode",
    "classify_llm_error_from_status",
    "is_ai_execution_error_code",
    "llm_error_from_httpx",
    "normalize_error_to_execution_code",
    # Events
    "AiEvent",
    "AssistantFinalEvent",
    "DoneEvent",
    "ErrorEvent",
    "EventFanout",
    "EventProtocolError",
    "RunEventStream",
    "StatusEvent",
    "TextDeltaEvent",
    "ToolCallResultEvent",
    "ToolCallStartEvent",
    "UsageReportEvent",
    "INTERNAL_EVENT_TYPES",
    "UI_EVENT_TYPES",
    "parse_ai_event",
    # Usage
    "ExecutorType",
    "UsageFact",
    "UsageFactHints",
    "UsageFactStrict",
    "UsageIdempotencyKey",
    "idempotency_key_for",
    "missing_usage_unit_id",
    "validate_usage_fact",
    # Billing
    "BillingSubscriber",
    "CommitOutcome",
    "InMemoryUsageLedger",
    "UsageLedgerPort",
]
