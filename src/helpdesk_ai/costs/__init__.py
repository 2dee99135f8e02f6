"""Usage ledger and reporting for LLM API calls."""

from helpdesk_ai.costs.aggregator import (
    DailyUsage,
    ProviderUsage,
    TaskTypeUsage,
    UsageAggregator,
    UsageStats,
    format_cost,
    format_tokens,
)
from helpdesk_ai.costs.storage import UsageRecord, UsageStorage
from helpdesk_ai.costs.tracker import UsageLogger

__all__ = [
    "DailyUsage",
    "ProviderUsage",
    "TaskTypeUsage",
    "UsageAggregator",
    "UsageLogger",
    "UsageRecord",
    "UsageStats",
    "UsageStorage",
    "format_cost",
    "format_tokens",
]
