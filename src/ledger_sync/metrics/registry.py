"""
Metric registry using prometheus_client.

Provides pre-defined metrics for the sync engine.
Exposes metrics in Prometheus text format via the /metrics endpoint.
"""

from __future__ import annotations

from contextlib import suppress

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a dedicated registry for ledger-sync metrics.
#
# Using a dedicated registry avoids pollution from default Python process metrics.
REGISTRY = CollectorRegistry()

# -----------------------------------------------------------------------------
# Ledger
# -----------------------------------------------------------------------------

ledger_height = Gauge(
    "ledger_sync_height",
    "Latest ledger height observed",
    ["engine"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Polling
# -----------------------------------------------------------------------------

polls = Counter(
    "ledger_sync_polls_total",
    "Poll ticks executed",
    registry=REGISTRY,
)

polls_skipped = Counter(
    "ledger_sync_polls_skipped_total",
    "Polls that skipped fetching because the height did not advance",
    registry=REGISTRY,
)

fetch_failures = Counter(
    "ledger_sync_fetch_failures_total",
    "Failed ledger queries during polling",
    registry=REGISTRY,
)

poll_duration = Histogram(
    "ledger_sync_poll_seconds",
    "Poll tick duration",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Events and Notifications
# -----------------------------------------------------------------------------

records_fetched = Counter(
    "ledger_sync_records_fetched_total",
    "Log records retrieved from the ledger",
    ["kind"],
    registry=REGISTRY,
)

cached_records = Gauge(
    "ledger_sync_cached_records",
    "Log records held in the event cache",
    ["engine", "kind"],
    registry=REGISTRY,
)

notifications = Counter(
    "ledger_sync_notifications_total",
    "Snapshots delivered to subscribers",
    registry=REGISTRY,
)

subscribers = Gauge(
    "ledger_sync_subscribers",
    "Registered snapshot subscribers",
    ["engine"],
    registry=REGISTRY,
)


def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format output as bytes.
    """
    return generate_latest(REGISTRY)


def remove_engine(engine: str, kinds: list[str]) -> None:
    """Drop every gauge series labelled with an engine that has shut down."""
    for gauge in (ledger_height, subscribers):
        with suppress(KeyError):
            gauge.remove(engine)
    for kind in kinds:
        with suppress(KeyError):
            cached_records.remove(engine, kind)
