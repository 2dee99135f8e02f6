"""SQLite storage for AI usage records.

Append-only ledger with one row per provider attempt.  The database is
created at ``data/ai_usage.db`` by default.  Rows are only ever inserted;
nothing in the engine updates or deletes them.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from helpdesk_ai.logging import get_logger

log = get_logger("helpdesk_ai.costs.storage")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ai_usage_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    task_type TEXT NOT NULL,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    estimated_cost_usd REAL NOT NULL DEFAULT 0,
    latency_ms INTEGER,
    success BOOLEAN NOT NULL,
    error_message TEXT,
    ticket_id TEXT,
    user_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_ai_usage_created ON ai_usage_log(created_at);
CREATE INDEX IF NOT EXISTS idx_ai_usage_provider ON ai_usage_log(provider);
CREATE INDEX IF NOT EXISTS idx_ai_usage_task ON ai_usage_log(task_type);
"""


def _to_utc_iso(value: datetime) -> str:
    """Serialize a datetime as a UTC ISO string (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


@dataclass
class UsageRecord:
    """A single provider attempt."""

    provider: str
    model: str
    task_type: str
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    latency_ms: int | None = None
    success: bool = True
    error_message: str | None = None
    ticket_id: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    id: int | None = None


class UsageStorage:
    """SQLite storage for the usage ledger.

    Thread-safe via connection-per-operation pattern, so writes can be pushed
    to a worker thread with ``asyncio.to_thread``.
    """

    def __init__(self, db_path: str | Path = "data/ai_usage.db"):
        """Initialize the usage storage.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()
        log.info("usage_database_initialized", path=str(self._db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def record_usage(self, record: UsageRecord) -> int:
        """Append a usage record.

        Args:
            record: The usage record to store.  ``created_at`` defaults to now.

        Returns:
            The ID of the inserted record.
        """
        created_at = record.created_at or datetime.now(UTC)

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO ai_usage_log (
                    created_at, provider, model, task_type,
                    input_tokens, output_tokens, estimated_cost_usd,
                    latency_ms, success, error_message, ticket_id, user_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _to_utc_iso(created_at),
                    record.provider,
                    record.model,
                    record.task_type,
                    record.input_tokens,
                    record.output_tokens,
                    record.estimated_cost_usd,
                    record.latency_ms,
                    record.success,
                    record.error_message,
                    record.ticket_id,
                    record.user_id,
                ),
            )
            conn.commit()
            return cursor.lastrowid or 0

    def get_usage_by_date_range(
        self,
        start_date: datetime,
        end_date: datetime | None = None,
        provider: str | None = None,
        task_type: str | None = None,
        limit: int | None = None,
    ) -> list[UsageRecord]:
        """Get usage records within a date range, newest first.

        Args:
            start_date: Start of the date range (inclusive).
            end_date: Optional end of the date range (inclusive).
            provider: Optional provider filter.
            task_type: Optional task type filter.
            limit: Optional maximum number of records.

        Returns:
            List of UsageRecord objects.
        """
        query = "SELECT * FROM ai_usage_log WHERE created_at >= ?"
        params: list[Any] = [_to_utc_iso(start_date)]

        if end_date:
            query += " AND created_at <= ?"
            params.append(_to_utc_iso(end_date))

        if provider:
            query += " AND provider = ?"
            params.append(provider)

        if task_type:
            query += " AND task_type = ?"
            params.append(task_type)

        query += " ORDER BY created_at DESC, id DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_record(row) for row in rows]

    def get_all_in_order(self) -> list[UsageRecord]:
        """Get every record in insertion order."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM ai_usage_log ORDER BY id").fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_totals(self, start_date: datetime) -> dict[str, Any]:
        """Get call, error and token counts, cost sum and average latency since *start_date*."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_calls,
                    SUM(input_tokens) AS total_input_tokens,
                    SUM(output_tokens) AS total_output_tokens,
                    SUM(estimated_cost_usd) AS total_cost_usd,
                    SUM(CASE WHEN success THEN 0 ELSE 1 END) AS error_count,
                    AVG(latency_ms) AS avg_latency_ms
                FROM ai_usage_log
                WHERE created_at >= ?
                """,
                (_to_utc_iso(start_date),),
            ).fetchone()

        return {
            "total_calls": row["total_calls"] or 0,
            "total_input_tokens": row["total_input_tokens"] or 0,
            "total_output_tokens": row["total_output_tokens"] or 0,
            "total_cost_usd": row["total_cost_usd"] or 0.0,
            "error_count": row["error_count"] or 0,
            "avg_latency_ms": row["avg_latency_ms"] or 0.0,
        }

    def get_totals_by_provider(self, start_date: datetime) -> list[dict[str, Any]]:
        """Get per-provider call counts, token sums and cost sums since *start_date*."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    provider,
                    COUNT(*) AS calls,
                    SUM(input_tokens) AS input_tokens,
                    SUM(output_tokens) AS output_tokens,
                    SUM(estimated_cost_usd) AS cost_usd
                FROM ai_usage_log
                WHERE created_at >= ?
                GROUP BY provider
                ORDER BY cost_usd DESC, provider
                """,
                (_to_utc_iso(start_date),),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_totals_by_task_type(self, start_date: datetime) -> list[dict[str, Any]]:
        """Get per-task-type call counts and cost sums since *start_date*."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    task_type,
                    COUNT(*) AS calls,
                    SUM(estimated_cost_usd) AS cost_usd
                FROM ai_usage_log
                WHERE created_at >= ?
                GROUP BY task_type
                ORDER BY cost_usd DESC, task_type
                """,
                (_to_utc_iso(start_date),),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_daily_totals(self, start_date: datetime) -> list[dict[str, Any]]:
        """Get per-day (UTC) call counts, token sums and cost sums, oldest day first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    substr(created_at, 1, 10) AS date,
                    COUNT(*) AS calls,
                    SUM(input_tokens + output_tokens) AS tokens,
                    SUM(estimated_cost_usd) AS cost_usd
                FROM ai_usage_log
                WHERE created_at >= ?
                GROUP BY date
                ORDER BY date
                """,
                (_to_utc_iso(start_date),),
            ).fetchall()
        return [dict(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> UsageRecord:
        """Convert a database row to a UsageRecord."""
        return UsageRecord(
            id=row["id"],
            provider=row["provider"],
            model=row["model"],
            task_type=row["task_type"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            estimated_cost_usd=row["estimated_cost_usd"],
            latency_ms=row["latency_ms"],
            success=bool(row["success"]),
            error_message=row["error_message"],
            ticket_id=row["ticket_id"],
            user_id=row["user_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
