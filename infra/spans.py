"""
Logging span adapter: records tool spans as log lines.

Only span names, IDs, levels and metadata are logged. Span input and
output are counted, never written.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List
import logging
import time
import uuid


_LEVELS = {
    "DEFAULT": logging.DEBUG,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


@dataclass
class SpanRecord:
    span_id: str
    trace_id: str
    name: str
    start_metadata: Dict[str, Any]
    started_at: float = field(default_factory=time.monotonic)
    level: str = ""
    end_metadata: Dict[str, Any] = field(default_factory=dict)
    has_input: bool = False
    has_output: bool = False
    ended: bool = False


class LoggingSpanPort:
    """ToolSpanPort that keeps recent spans in memory and logs them."""

    def __init__(self, max_spans: int = 500):
        self._spans: List[SpanRecord] = []
        self._max_spans = max_spans
        self._logger = logging.getLogger("toolrun.infra.spans")

    def start_span(self, trace_id: str, name: str, input: Any, metadata: Dict[str, Any]) -> SpanRecord:
        record = SpanRecord(
            span_id=uuid.uuid4().hex[:16],
            trace_id=trace_id,
            name=name,
            start_metadata=dict(metadata),
            has_input=input is not None,
        )
        self._spans.append(record)
        if len(self._spans) > self._max_spans:
            self._spans.pop(0)

        self._logger.debug(f"Span start: {name} trace={trace_id} span={record.span_id}")
        return record

    def end_span(self, span: SpanRecord, output: Any, level: str, metadata: Dict[str, Any]) -> None:
        span.level = level
        span.end_metadata = dict(metadata)
        span.has_output = output is not None
        span.ended = True

        self._logger.log(
            _LEVELS.get(level, logging.INFO),
            f"Span end: {span.name} level={level} span={span.span_id} "
            f"duration_ms={metadata.get('durationMs', '-')}"
        )

    def spans(self) -> List[SpanRecord]:
        return list(self._spans)
