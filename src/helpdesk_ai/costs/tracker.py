"""Best-effort usage logger.

Writes one :class:`UsageRecord` per provider attempt.  Persistence failures
are logged and swallowed here, and only here: a broken ledger must never
change the outcome of an inference call.
"""

import asyncio
from pathlib import Path

from helpdesk_ai.costs.storage import UsageRecord, UsageStorage
from helpdesk_ai.logging import get_logger

log = get_logger("helpdesk_ai.costs.tracker")


class UsageLogger:
    """Records provider attempts to the usage ledger."""

    def __init__(
        self,
        storage: UsageStorage | None = None,
        db_path: str | Path = "data/ai_usage.db",
    ):
        """Initialize the usage logger.

        Args:
            storage: Optional UsageStorage instance (creates one if not provided).
            db_path: Path to the SQLite database (if storage not provided).
        """
        self._storage = storage or UsageStorage(db_path)

    @property
    def storage(self) -> UsageStorage:
        """The underlying ledger storage."""
        return self._storage

    async def record(self, entry: UsageRecord) -> None:
        """Persist *entry*; never raises."""
        try:
            await asyncio.to_thread(self._storage.record_usage, entry)
        except Exception:
            log.exception(
                "usage_record_failed",
                provider=entry.provider,
                model=entry.model,
                task_type=entry.task_type,
                success=entry.success,
            )
            return

        log.info(
            "usage_recorded",
            provider=entry.provider,
            model=entry.model,
            task_type=entry.task_type,
            tokens_in=entry.input_tokens,
            tokens_out=entry.output_tokens,
            cost_usd=round(entry.estimated_cost_usd, 6),
            latency_ms=entry.latency_ms,
            success=entry.success,
        )
