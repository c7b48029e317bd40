"""
Metrics module for observability.

Provides counters, gauges, and histograms for tracking sync engine behavior.
Exposes metrics in Prometheus text format.
"""

from .registry import (
    REGISTRY,
    cached_records,
    fetch_failures,
    generate_metrics,
    ledger_height,
    notifications,
    poll_duration,
    polls,
    polls_skipped,
    records_fetched,
    remove_engine,
    subscribers,
)

__all__ = [
    "REGISTRY",
    "cached_records",
    "fetch_failures",
    "generate_metrics",
    "ledger_height",
    "notifications",
    "poll_duration",
    "polls",
    "polls_skipped",
    "records_fetched",
    "remove_engine",
    "subscribers",
]
