"""
Usage Ledger
------------
Append-only SQLite store for committed usage facts.

Design:
- Append-only (no UPDATE, no DELETE in code)
- UNIQUE (source, run_id, attempt, usage_unit_id): redelivery is a no-op
- Facts without cost go to usage_deferred under the same key and stay
  pending until reconcile() commits them with a cost
- Canonical JSON for the stored fact
- One connection per operation
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json
import logging
import sqlite3

from aicore.usage import UsageFact, UsageIdempotencyKey, canonical_fact_json, validate_usage_fact


@dataclass
class LedgerEntry:
    """A committed usage row."""
    id: int
    source: str
    run_id: str
    attempt: int
    usage_unit_id: str
    graph_id: str
    billing_account_id: str
    cost_usd: float
    committed_at: datetime
    fact: Dict[str, Any]

    @property
    def key(self) -> UsageIdempotencyKey:
        return UsageIdempotencyKey(self.source, self.run_id, self.attempt, self.usage_unit_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LedgerEntry":
        return cls(
            id=row["id"],
            source=row["source"],
            run_id=row["run_id"],
            attempt=row["attempt"],
            usage_unit_id=row["usage_unit_id"],
            graph_id=row["graph_id"],
            billing_account_id=row["billing_account_id"],
            cost_usd=row["cost_usd"],
            committed_at=datetime.fromisoformat(row["committed_at"]),
            fact=json.loads(row["fact"]),
        )


@dataclass
class DeferredEntry:
    """A usage fact parked without cost."""
    id: int
    source: str
    run_id: str
    attempt: int
    usage_unit_id: str
    deferred_at: datetime
    fact: Dict[str, Any]

    @property
    def key(self) -> UsageIdempotencyKey:
        return UsageIdempotencyKey(self.source, self.run_id, self.attempt, self.usage_unit_id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DeferredEntry":
        return cls(
            id=row["id"],
            source=row["source"],
            run_id=row["run_id"],
            attempt=row["attempt"],
            usage_unit_id=row["usage_unit_id"],
            deferred_at=datetime.fromisoformat(row["deferred_at"]),
            fact=json.loads(row["fact"]),
        )


class SqliteUsageLedger:
    """
    UsageLedgerPort backed by SQLite.

    commit() and defer() return False when the idempotency key already
    exists in their table.
    """

    def __init__(self, db_path: str = "toolrun_usage.db"):
        self._db_path = db_path
        self._logger = logging.getLogger("toolrun.infra.ledger")
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        """Create usage_ledger and usage_deferred tables if not exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,
                    run_id TEXT NOT NULL,
                    attempt INTEGER NOT NULL,
                    usage_unit_id TEXT NOT NULL,
                    graph_id TEXT NOT NULL,
                    billing_account_id TEXT NOT NULL,
                    cost_usd REAL NOT NULL,
                    committed_at TEXT NOT NULL,
                    fact TEXT NOT NULL,
                    UNIQUE (source, run_id, attempt, usage_unit_id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_usage_run_id
                ON usage_ledger(run_id)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_deferred (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source TEXT NOT NULL,
                    run_id TEXT NOT NULL,
                    attempt INTEGER NOT NULL,
                    usage_unit_id TEXT NOT NULL,
                    deferred_at TEXT NOT NULL,
                    fact TEXT NOT NULL,
                    UNIQUE (source, run_id, attempt, usage_unit_id)
                )
            """)
            conn.commit()
            self._logger.debug("Usage ledger schema ensured")
        finally:
            conn.close()

    @staticmethod
    def _canonical_fact(fact: UsageFact) -> str:
        return canonical_fact_json(fact)

    def commit(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        """Append a fact. Returns False if the key is already committed."""
        if fact.cost_usd is None:
            raise ValueError("Cannot commit usage without cost_usd")

        conn = self._connect()
        try:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO usage_ledger
                (source, run_id, attempt, usage_unit_id, graph_id, billing_account_id,
                 cost_usd, committed_at, fact)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                key.source,
                key.run_id,
                key.attempt,
                key.usage_unit_id,
                fact.graph_id,
                fact.billing_account_id,
                fact.cost_usd,
                datetime.now(timezone.utc).isoformat(),
                self._canonical_fact(fact),
            ))
            conn.commit()
            written = cursor.rowcount == 1
        finally:
            conn.close()

        if written:
            self._logger.debug(f"Ledger: committed {key.as_string()}")
        return written

    def defer(self, key: UsageIdempotencyKey, fact: UsageFact) -> bool:
        """Park a fact that has no cost yet. Returns False if already parked."""
        conn = self._connect()
        try:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO usage_deferred
                (source, run_id, attempt, usage_unit_id, deferred_at, fact)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                key.source,
                key.run_id,
                key.attempt,
                key.usage_unit_id,
                datetime.now(timezone.utc).isoformat(),
                self._canonical_fact(fact),
            ))
            conn.commit()
            written = cursor.rowcount == 1
        finally:
            conn.close()

        if written:
            self._logger.debug(f"Ledger: deferred {key.as_string()}")
        return written

    def get_deferred(self, key: UsageIdempotencyKey) -> Optional[DeferredEntry]:
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT * FROM usage_deferred
                WHERE source = ? AND run_id = ? AND attempt = ? AND usage_unit_id = ?
            """, tuple(key)).fetchone()
            return DeferredEntry.from_row(row) if row else None
        finally:
            conn.close()

    def pending_deferred(self, run_id: Optional[str] = None) -> List[DeferredEntry]:
        """Deferred facts with no committed row under the same key."""
        query = """
            SELECT d.* FROM usage_deferred d
            LEFT JOIN usage_ledger l
              ON l.source = d.source AND l.run_id = d.run_id
             AND l.attempt = d.attempt AND l.usage_unit_id = d.usage_unit_id
            WHERE l.id IS NULL
        """
        params: tuple = ()
        if run_id is not None:
            query += " AND d.run_id = ?"
            params = (run_id,)
        query += " ORDER BY d.id"

        conn = self._connect()
        try:
            return [DeferredEntry.from_row(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    def reconcile(self, key: UsageIdempotencyKey, cost_usd: float) -> bool:
        """
        Commit a deferred fact once its cost is known.

        Returns False if the key was already committed.

        Raises:
            KeyError: if nothing is deferred under key
            ValueError: if cost_usd is negative
        """
        if cost_usd < 0:
            raise ValueError("cost_usd must be >= 0")

        entry = self.get_deferred(key)
        if entry is None:
            raise KeyError(key.as_string())

        fact = validate_usage_fact(entry.fact).model_copy(update={"cost_usd": cost_usd})
        written = self.commit(key, fact)
        if written:
            self._logger.info(f"Ledger: reconciled {key.as_string()} cost_usd={cost_usd}")
        return written

    def get(self, key: UsageIdempotencyKey) -> Optional[LedgerEntry]:
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT * FROM usage_ledger
                WHERE source = ? AND run_id = ? AND attempt = ? AND usage_unit_id = ?
            """, tuple(key)).fetchone()
            return LedgerEntry.from_row(row) if row else None
        finally:
            conn.close()

    def get_run_entries(self, run_id: str) -> List[LedgerEntry]:
        """All entries for a run, in commit order."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                "SELECT * FROM usage_ledger WHERE run_id = ? ORDER BY id",
                (run_id,)
            )
            return [LedgerEntry.from_row(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def total_cost(self, run_id: str) -> float:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COALESCE(SUM(cost_usd), 0) FROM usage_ledger WHERE run_id = ?",
                (run_id,)
            ).fetchone()
            return float(row[0])
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM usage_ledger").fetchone()[0]
        finally:
            conn.close()
