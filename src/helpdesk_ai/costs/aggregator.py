"""Usage aggregation and display helpers.

Rolls the usage ledger up over a trailing window of days: overall totals,
per-provider and per-task-type breakdowns, a per-day series and the most
recent records.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from helpdesk_ai.costs.storage import UsageRecord, UsageStorage
from helpdesk_ai.logging import get_logger

log = get_logger("helpdesk_ai.costs.aggregator")


@dataclass
class ProviderUsage:
    """Usage rolled up for one provider."""

    provider: str
    calls: int
    input_tokens: int
    output_tokens: int
    cost_usd: float


@dataclass
class TaskTypeUsage:
    """Usage rolled up for one task type."""

    task_type: str
    calls: int
    cost_usd: float


@dataclass
class DailyUsage:
    """Usage rolled up for one UTC day."""

    date: str
    calls: int
    tokens: int
    cost_usd: float


@dataclass
class UsageStats:
    """Usage over a trailing window."""

    days: int
    total_calls: int
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: float
    error_count: int
    avg_latency_ms: int
    by_provider: list[ProviderUsage] = field(default_factory=list)
    by_task_type: list[TaskTypeUsage] = field(default_factory=list)
    daily: list[DailyUsage] = field(default_factory=list)
    recent: list[UsageRecord] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        """Input plus output tokens."""
        return self.total_input_tokens + self.total_output_tokens


class UsageAggregator:
    """Aggregates the usage ledger for reporting."""

    def __init__(self, storage: UsageStorage):
        """Initialize the aggregator.

        Args:
            storage: UsageStorage instance to read from.
        """
        self._storage = storage

    def get_usage_stats(
        self,
        days: int = 30,
        recent_limit: int = 100,
        now: datetime | None = None,
    ) -> UsageStats:
        """Aggregate usage over the last *days* days.

        Args:
            days: Size of the trailing window.
            recent_limit: Number of most recent records to include.
            now: End of the window (defaults to the current UTC time).

        Returns:
            UsageStats for the window.
        """
        if days <= 0:
            raise ValueError(f"days must be > 0, got: {days}")

        start_date = (now or datetime.now(UTC)) - timedelta(days=days)
        totals = self._storage.get_totals(start_date)

        stats = UsageStats(
            days=days,
            total_calls=totals["total_calls"],
            total_input_tokens=totals["total_input_tokens"],
            total_output_tokens=totals["total_output_tokens"],
            total_cost_usd=totals["total_cost_usd"],
            error_count=totals["error_count"],
            avg_latency_ms=round(totals["avg_latency_ms"]),
            by_provider=[
                ProviderUsage(
                    provider=row["provider"],
                    calls=row["calls"],
                    input_tokens=row["input_tokens"] or 0,
                    output_tokens=row["output_tokens"] or 0,
                    cost_usd=row["cost_usd"] or 0.0,
                )
                for row in self._storage.get_totals_by_provider(start_date)
            ],
            by_task_type=[
                TaskTypeUsage(
                    task_type=row["task_type"],
                    calls=row["calls"],
                    cost_usd=row["cost_usd"] or 0.0,
                )
                for row in self._storage.get_totals_by_task_type(start_date)
            ],
            daily=[
                DailyUsage(
                    date=row["date"],
                    calls=row["calls"],
                    tokens=row["tokens"] or 0,
                    cost_usd=row["cost_usd"] or 0.0,
                )
                for row in self._storage.get_daily_totals(start_date)
            ],
            recent=self._storage.get_usage_by_date_range(start_date, limit=recent_limit),
        )

        log.debug(
            "usage_stats_computed",
            days=days,
            total_calls=stats.total_calls,
            total_cost_usd=round(stats.total_cost_usd, 6),
        )
        return stats


def format_cost(cost: float) -> str:
    """Format a USD amount for display; amounts under a cent are shown in cents."""
    if cost < 0.01:
        return f"{cost * 100:.4f}¢"
    return f"${cost:.4f}"


def format_tokens(tokens: int) -> str:
    """Format a token count for display (``1.5K``, ``2.00M``)."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)
