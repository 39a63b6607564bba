# Infrastructure module - logging, configuration, usage ledger, spans
# and the composition root that wires them into a run

from .config import ConfigManager, ConfigError
from .logging import configure_logging, JSONFormatter, RunIdFilter
from .ledger import SqliteUsageLedger, LedgerEntry, DeferredEntry
from .spans import LoggingSpanPort, SpanRecord
from .bootstrap import (
    configure_from, create_billing_subscriber, create_tool_runtime,
    create_tool_source
)

__all__ = [
    # Config
    "ConfigManager",
    "ConfigError",
    # Logging
    "configure_logging",
    "JSONFormatter",
    "RunIdFilter",
    # Ledger
    "SqliteUsageLedger",
    "LedgerEntry",
    "DeferredEntry",
    # Spans
    "LoggingSpanPort",
    "SpanRecord",
    # Composition root
    "configure_from",
    "create_billing_subscriber",
    "create_tool_runtime",
    "create_tool_source",
]
