"""
Billing Subscriber
------------------
Consumes usage_report events and commits validated usage facts to a
ledger under their idempotency key.

Rules:
- Strict facts that fail validation are rejected loudly, never billed
- Hints facts that fail validation are skipped with a warning
- A fact without cost is parked in the ledger's deferred set under its
  key, never billed as zero
- Redelivery of the same fact is a no-op at the ledger, including facts
  keyed by the MISSING:{run_id}/{call_index} fallback
- Nothing here raises back into the event pipeline
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol
import logging

from pydantic import ValidationError

from .run_context import run_scope
from .usage import (
    UsageFact,
    UsageIdempotencyKey,
    fact_digest,
    idempotency_key_for,
    is_billing_authoritative,
    validate_usage_fact,
)


DEFAULT_MAX_TRACKED_RUNS = 10_000


class CommitOutcome(str, Enum):
    """What happened to one usage_report."""
    COMMITTED = "committed"    # Written to the ledger
    DUPLICATE = "duplicate"    # Key already present, nothing written
    DEFERRED = "deferred"      # Cost unknown, parked for reconciliation
    REJECTED = "rejected"      # Strict fact failed validation
    SKIPPED = "skipped"        # Hints fact failed validation
    FAILED = "failed"          # Ledger raised


class UsageLedgerPort(Protocol):
    """Append-only store keyed by UsageIdempotencyKey."""

    def commit(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        """Write a costed fact. Returns False when the key already exists."""
        ...

    def defer(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        """Park a fact without cost. Returns False when the key is already parked."""
        ...


class InMemoryUsageLedger:
    """Ledger kept in dicts; used in tests and single-process runs."""

    def __init__(self):
        self._entries: Dict[UsageIdempotencyKey, UsageFact] = {}
        self._deferred: Dict[UsageIdempotencyKey, UsageFact] = {}

    def commit(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        if key in self._entries:
            return False
        self._entries[key] = fact
        return True

    def defer(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        if key in self._deferred:
            return False
        self._deferred[key] = fact
        return True

    def get(self, key: UsageIdempotencyKey) -> Optional[UsageFact]:
        return self._entries.get(key)

    def get_deferred(self, key: UsageIdempotencyKey) -> Optional[UsageFact]:
        return self._deferred.get(key)

    def keys(self) -> List[UsageIdempotencyKey]:
        return list(self._entries)

    def deferred_keys(self) -> List[UsageIdempotencyKey]:
        return list(self._deferred)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _RunIndex:
    seen: Dict[str, int] = field(default_factory=dict)
    next_index: int = 0

    def index_for(self, digest: str) -> int:
        if digest not in self.seen:
            self.seen[digest] = self.next_index
            self.next_index += 1
        return self.seen[digest]


class BillingSubscriber:
    """
    Billing side of the event fan-out.

    Call index for MISSING:{run_id}/{call_index} fallbacks: each distinct
    fact of a run (by canonical-JSON digest, with or without a unit ID)
    gets the next index, starting at 0, and a redelivered fact gets the
    index it had the first time. Index state is kept for the most recent
    max_tracked_runs runs.
    """

    def __init__(self, ledger: UsageLedgerPort, max_tracked_runs: int = DEFAULT_MAX_TRACKED_RUNS):
        self._ledger = ledger
        self._runs: "OrderedDict[str, _RunIndex]" = OrderedDict()
        self._max_tracked_runs = max_tracked_runs
        self._stats: Counter = Counter()
        self._logger = logging.getLogger("toolrun.aicore.billing")

    def handle_event(self, event: Any) -> None:
        """Event-sink entry point; ignores everything but usage_report."""
        if getattr(event, "type", None) != "usage_report":
            return
        self.record(event.fact)

    __call__ = handle_event

    def record(self, fact: Mapping[str, Any]) -> CommitOutcome:
        """Validate and commit one usage fact."""
        run_id = str(fact.get("runId", fact.get("run_id", "")))
        with run_scope(run_id):
            return self._finish(self._record(run_id, fact))

    def _record(self, run_id: str, fact: Mapping[str, Any]) -> CommitOutcome:
        call_index = self._call_index(run_id, fact)
        executor_type = fact.get("executorType", fact.get("executor_type"))

        try:
            validated = validate_usage_fact(fact)
        except ValidationError as e:
            if is_billing_authoritative(executor_type):
                self._logger.critical(
                    f"Rejected strict usage fact: run_id={run_id or '-'} "
                    f"executor={executor_type} errors={e.error_count()}"
                )
                return CommitOutcome.REJECTED
            self._logger.warning(
                f"Skipped invalid usage hints: run_id={run_id or '-'} "
                f"executor={executor_type} errors={e.error_count()}"
            )
            return CommitOutcome.SKIPPED

        key = idempotency_key_for(validated, call_index)
        deferred = validated.cost_usd is None
        try:
            if deferred:
                written = self._ledger.defer(key, validated)
            else:
                written = self._ledger.commit(key, validated)
        except Exception as e:
            self._logger.error(f"Ledger write failed for {key.as_string()}: {e}")
            return CommitOutcome.FAILED

        if not written:
            self._logger.debug(f"Duplicate usage fact ignored: {key.as_string()}")
            return CommitOutcome.DUPLICATE

        if deferred:
            self._logger.info(f"Deferred usage without cost: {key.as_string()}")
            return CommitOutcome.DEFERRED

        self._logger.info(f"Committed usage: {key.as_string()} cost_usd={validated.cost_usd}")
        return CommitOutcome.COMMITTED

    def _call_index(self, run_id: str, fact: Mapping[str, Any]) -> int:
        run = self._runs.get(run_id)
        if run is None:
            run = self._runs[run_id] = _RunIndex()
            while len(self._runs) > self._max_tracked_runs:
                self._runs.popitem(last=False)
        else:
            self._runs.move_to_end(run_id)
        return run.index_for(fact_digest(fact))

    def _finish(self, outcome: CommitOutcome) -> CommitOutcome:
        self._stats[outcome.value] += 1
        return outcome

    def tracked_runs(self) -> int:
        return len(self._runs)

    def stats(self) -> Dict[str, int]:
        """Count of outcomes so far, keyed by outcome value."""
        return dict(self._stats)
