"""
AI Event Protocol
-----------------
The event stream a run produces, plus the two pieces that keep it honest:

- RunEventStream: per-run ordering guard. assistant_final is emitted once,
  then done; error is always followed by done; nothing follows done.
- EventFanout: subscription-boundary filtering. UI subscribers never see
  usage_report, regardless of what emitters do.

Usage:
    fanout = EventFanout()
    fanout.subscribe_ui(ui_sink)
    fanout.subscribe_billing(billing.handle_event)

    stream = RunEventStream(fanout, run_id="run_1")
    stream.emit(TextDeltaEvent(delta="Hel"))
    stream.finish("Hello")
"""

from dataclasses import dataclass
from typing import Annotated, Any, Callable, Dict, FrozenSet, Iterable, List, Literal, Optional, Union
import logging

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .errors import AiExecutionErrorCode, normalize_error_to_execution_code
from .run_context import log_run_end, run_scope


class _EventModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys for transport."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class TextDeltaEvent(_EventModel):
    type: Literal["text_delta"] = "text_delta"
    delta: str


class ToolCallStartEvent(_EventModel):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any]


class ToolCallResultEvent(_EventModel):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call_id: str
    result: Dict[str, Any]
    is_error: bool = False


class UsageReportEvent(_EventModel):
    """
    Carries a usage fact to the billing subscriber.

    The fact travels as a plain mapping and is validated by the consumer,
    so a malformed fact is rejected by billing rather than by the emitter.
    """
    type: Literal["usage_report"] = "usage_report"
    fact: Dict[str, Any]

    @classmethod
    def from_fact(cls, fact: BaseModel) -> "UsageReportEvent":
        return cls(fact=fact.model_dump(by_alias=True, mode="json", exclude_none=True))


class AssistantFinalEvent(_EventModel):
    type: Literal["assistant_final"] = "assistant_final"
    content: str


class StatusEvent(_EventModel):
    type: Literal["status"] = "status"
    phase: Literal["thinking", "tool_use", "compacting"]
    label: Optional[str] = None


class DoneEvent(_EventModel):
    type: Literal["done"] = "done"


class ErrorEvent(_EventModel):
    type: Literal["error"] = "error"
    error: AiExecutionErrorCode


AiEvent = Annotated[
    Union[
        TextDeltaEvent,
        ToolCallStartEvent,
        ToolCallResultEvent,
        UsageReportEvent,
        AssistantFinalEvent,
        StatusEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

EmitAiEvent = Callable[[AiEvent], None]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(AiEvent)

ALL_EVENT_TYPES: FrozenSet[str] = frozenset({
    "text_delta",
    "tool_call_start",
    "tool_call_result",
    "usage_report",
    "assistant_final",
    "status",
    "done",
    "error",
})

# Never forwarded to clients
INTERNAL_EVENT_TYPES: FrozenSet[str] = frozenset({"usage_report"})

UI_EVENT_TYPES: FrozenSet[str] = ALL_EVENT_TYPES - INTERNAL_EVENT_TYPES

_TERMINAL_EVENT_TYPES = frozenset({"assistant_final", "done", "error"})


def parse_ai_event(data: Dict[str, Any]) -> AiEvent:
    """
    Decode a wire dict into a typed event.

    Raises:
        pydantic.ValidationError: unknown type or malformed payload
    """
    return _EVENT_ADAPTER.validate_python(data)


class EventProtocolError(RuntimeError):
    """Raised when a run tries to emit events out of order."""


class RunEventStream:
    """
    Ordering guard for the events of one run.

    Terminal events only go through finish() and fail(), so every run ends
    with exactly one done and at most one assistant_final.
    """

    def __init__(self, sink: EmitAiEvent, run_id: str = ""):
        self._sink = sink
        self._run_id = run_id
        self._closed = False
        self._final_emitted = False
        self._tool_calls = 0
        self._error_code: Optional[AiExecutionErrorCode] = None
        self._logger = logging.getLogger("toolrun.aicore.events")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error_code(self) -> Optional[AiExecutionErrorCode]:
        return self._error_code

    def emit(self, event: AiEvent) -> None:
        """Forward a non-terminal event."""
        self._ensure_open(event.type)
        if event.type in _TERMINAL_EVENT_TYPES:
            raise EventProtocolError(
                f"{event.type} must be emitted through finish() or fail()"
            )
        if event.type == "tool_call_start":
            self._tool_calls += 1
        with run_scope(self._run_id):
            self._sink(event)

    __call__ = emit

    def finish(self, content: str) -> None:
        """Emit the final assistant message and close the stream."""
        self._ensure_open("assistant_final")
        if self._final_emitted:
            raise EventProtocolError("assistant_final already emitted for this run")

        self._final_emitted = True
        with run_scope(self._run_id):
            self._sink(AssistantFinalEvent(content=content))
            self._close()
            log_run_end(self._run_id, success=True, tool_calls=self._tool_calls)

    def fail(self, error: object) -> AiExecutionErrorCode:
        """
        Normalize a failure, emit error then done, and close the stream.

        Only the normalized code reaches the stream; the detail stays in
        the server log.
        """
        self._ensure_open("error")
        code = normalize_error_to_execution_code(error)
        self._error_code = code
        with run_scope(self._run_id):
            self._logger.debug(f"Run failure cause: {type(error).__name__}")
            self._sink(ErrorEvent(error=code))
            self._close()
            log_run_end(self._run_id, success=False, tool_calls=self._tool_calls, error_code=code.value)
        return code

    def _close(self) -> None:
        self._sink(DoneEvent())
        self._closed = True

    def _ensure_open(self, event_type: str) -> None:
        if self._closed:
            raise EventProtocolError(f"Cannot emit {event_type} after done")


@dataclass(eq=False)
class _Subscription:
    handler: EmitAiEvent
    event_types: FrozenSet[str]
    name: str


class EventFanout:
    """
    Delivers events to subscribers filtered by event type.

    A failing subscriber is logged and skipped; it never affects other
    subscribers or the emitter.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []
        self._logger = logging.getLogger("toolrun.aicore.fanout")

    def subscribe(
        self,
        handler: EmitAiEvent,
        event_types: Optional[Iterable[str]] = None,
        name: str = "",
    ) -> Callable[[], None]:
        """
        Register a handler. Returns an unsubscribe callable.
        """
        types = frozenset(event_types) if event_types is not None else ALL_EVENT_TYPES
        unknown = types - ALL_EVENT_TYPES
        if unknown:
            raise ValueError(f"Unknown event types: {sorted(unknown)}")

        subscription = _Subscription(
            handler=handler,
            event_types=types,
            name=name or getattr(handler, "__qualname__", repr(handler)),
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def subscribe_ui(self, handler: EmitAiEvent, name: str = "ui") -> Callable[[], None]:
        """Client-facing subscriber; internal events are filtered here."""
        return self.subscribe(handler, UI_EVENT_TYPES, name=name)

    def subscribe_billing(self, handler: EmitAiEvent, name: str = "billing") -> Callable[[], None]:
        """Billing subscriber; receives usage_report only."""
        return self.subscribe(handler, INTERNAL_EVENT_TYPES, name=name)

    def publish(self, event: AiEvent) -> None:
        for subscription in list(self._subscriptions):
            if event.type not in subscription.event_types:
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                self._logger.error(
                    f"Subscriber {subscription.name} failed on {event.type}: {e}"
                )

    __call__ = publish

    def __len__(self) -> int:
        return len(self._subscriptions)
