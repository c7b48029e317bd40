"""
Sync engine orchestrator.

This is the main entry point for keeping a view of the ledger fresh.

The Core Problem
----------------
The ledger only answers questions; it never pushes. A dashboard that wants
to show current stakes and the latest messages has to ask over and over.
Asking naively has two costs:

1. **Growing reads**: re-reading every event log from block 0 each time
   makes every poll slower than the last
2. **Spurious updates**: re-rendering on every poll even when nothing
   changed wastes work and makes the UI flicker

How It Works
------------
A timer fires every poll interval while at least one subscriber exists.
Each tick:

1. Reads the ledger height. A failed height, scalar or log query counts
   toward a threshold; reaching it delivers one degraded
   `{connected: False}` snapshot
2. Skips fetching when the height has not moved, except every
   `refresh_every_polls` polls so that scalar-only changes still surface
3. Fetches scalars plus, per event kind, either a backfill `[0, h]` or a
   top-up `[watermark + 1, h]`, all concurrently
4. Merges the results into the event cache (only after every fetch
   succeeded)
5. Derives the activity feed and roster, assembles a snapshot, and
   fingerprints it
6. Notifies subscribers only if the fingerprint changed

Lifecycle
---------
The timer starts lazily on the first subscription and stops when the last
subscriber leaves. An in-flight tick is never cancelled: it runs to
completion and its result is discarded if nobody is left to receive it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ledger_sync import metrics
from ledger_sync.client import DomainClient, LedgerTransport, TransportFactory
from ledger_sync.events import ROSTER_KINDS, EventKind, LogRecord, recent_activity, roster
from ledger_sync.types import LedgerSyncError, WatermarkRegressionError, normalize_address

from .config import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SCALAR_NAMES,
    FAILURE_THRESHOLD,
    MAX_RECORDS_PER_KIND,
    MIN_POLL_INTERVAL_MS,
    NEVER_SYNCED,
    RECENT_ACTIVITY_LIMIT,
    REFRESH_EVERY_POLLS,
)
from .event_cache import CacheStats, EventCache
from .snapshot import SyncSnapshot, fingerprint

if TYPE_CHECKING:
    from ledger_sync.config import SyncConfig
    from ledger_sync.storage import CacheStore

logger = logging.getLogger(__name__)

Subscriber = Callable[[SyncSnapshot], None]
"""Callback invoked with every changed snapshot."""

Unsubscribe = Callable[[], None]
"""Closure returned by `subscribe`; deregisters the callback."""

_engine_ids = itertools.count(1)
"""Source of default engine names."""


def _unix_millis() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class EngineStats:
    """
    Diagnostics snapshot of a sync engine.

    Combines the cache occupancy with the engine's own counters.
    """

    cache: CacheStats
    """Per-kind cache counts and watermarks."""

    configured: bool
    """Whether an endpoint and contract are set."""

    polling: bool
    """Whether the poll timer is running."""

    subscribers: int
    """Number of registered callbacks."""

    consecutive_failures: int
    """Polls failed in a row."""

    last_height: int
    """Latest ledger height observed."""

    poll_interval_ms: int
    """Current poll interval."""

    endpoint: str | None
    """Configured ledger endpoint."""

    contract_address: str | None
    """Configured contract address."""

    halted: str | None = None
    """Why polling halted on an internal defect, None while healthy."""

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, as the diagnostics API returns it."""
        return {
            "configured": self.configured,
            "polling": self.polling,
            "subscribers": self.subscribers,
            "consecutiveFailures": self.consecutive_failures,
            "lastHeight": self.last_height,
            "pollIntervalMs": self.poll_interval_ms,
            "endpoint": self.endpoint,
            "contractAddress": self.contract_address,
            "halted": self.halted,
            "eventTypes": self.cache.event_types,
            "totalEvents": self.cache.total_events,
            "byType": {
                str(kind): {"count": s.count, "lastBlock": s.last_block}
                for kind, s in self.cache.by_type.items()
            },
        }


@dataclass(slots=True)
class SyncEngine:
    """
    Incremental polling engine for one ledger contract.

    The engine owns its event cache, its poll timer, and its subscriber
    registry. Engines share nothing, so several can run side by side.

    Construct it, `configure()` it with an endpoint and contract address,
    then `subscribe()` to start polling. Tear it down with `close()`.
    """

    transport_factory: TransportFactory
    """Builds a transport for every new configuration."""

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    """Delay between polls; clamped to `MIN_POLL_INTERVAL_MS`."""

    max_records_per_kind: int = MAX_RECORDS_PER_KIND
    """Per-kind cache bound."""

    failure_threshold: int = FAILURE_THRESHOLD
    """Consecutive failed polls before the degraded snapshot is delivered."""

    refresh_every_polls: int = REFRESH_EVERY_POLLS
    """Polls without height change after which a full fetch happens anyway."""

    recent_activity_limit: int = RECENT_ACTIVITY_LIMIT
    """Maximum items in the activity feed."""

    scalar_names: Sequence[str] = DEFAULT_SCALAR_NAMES
    """Aggregate contract reads included in every snapshot."""

    store: CacheStore | None = field(default=None)
    """Optional warm-start mirror of the event cache."""

    clock: Callable[[], int] = field(default=_unix_millis)
    """Source of capture timestamps in milliseconds."""

    name: str = ""
    """Label of this engine's metric series; generated when empty."""

    _cache: EventCache = field(init=False)
    """Event cache, rebuilt from `max_records_per_kind`."""

    _subscribers: dict[int, Subscriber] = field(default_factory=dict, init=False)
    """Callbacks by registration token, in registration order."""

    _next_token: int = field(default=0, init=False)
    """Next subscriber registration token."""

    _endpoint: str | None = field(default=None, init=False)
    """Configured endpoint, None while unconfigured."""

    _contract: str | None = field(default=None, init=False)
    """Configured contract address (lowercase), None while unconfigured."""

    _transport: LedgerTransport | None = field(default=None, init=False)
    """Transport of the current configuration."""

    _client: DomainClient | None = field(default=None, init=False)
    """Domain client of the current configuration."""

    _generation: int = field(default=0, init=False)
    """Bumped by every reconfiguration; in-flight ticks of an older one are discarded."""

    _fingerprint: str | None = field(default=None, init=False)
    """Fingerprint of the last delivered snapshot, None to force delivery."""

    _latest: SyncSnapshot | None = field(default=None, init=False)
    """Last delivered snapshot."""

    _consecutive_failures: int = field(default=0, init=False)
    """Polls failed in a row; reset only by a fully successful fetch."""

    _last_height: int = field(default=0, init=False)
    """Latest height observed."""

    _last_fetched_height: int | None = field(default=None, init=False)
    """Height of the last full fetch, None if the next poll must fetch."""

    _polls_since_fetch: int = field(default=0, init=False)
    """Polls skipped since the last full fetch."""

    _busy: bool = field(default=False, init=False)
    """True while a tick is running."""

    _timer: asyncio.Task[None] | None = field(default=None, init=False)
    """Running poll loop, None while stopped."""

    _timer_token: int = field(default=0, init=False)
    """Identifies the current poll loop; a loop exits once its token is stale."""

    _wake: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    """Set to cut the current wait short."""

    _fault: WatermarkRegressionError | None = field(default=None, init=False)
    """Defect that halted the poll loop; cleared by reconfiguration."""

    def __post_init__(self) -> None:
        """Clamp the interval, name the engine, and create the cache."""
        self.poll_interval_ms = max(self.poll_interval_ms, MIN_POLL_INTERVAL_MS)
        if not self.name:
            self.name = f"engine-{next(_engine_ids)}"
        self._cache = EventCache(max_records_per_kind=self.max_records_per_kind)

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        transport_factory: TransportFactory,
        store: CacheStore | None = None,
    ) -> SyncEngine:
        """
        Build an unconfigured engine from tunables in a `SyncConfig`.

        The caller still has to `configure()` it with the endpoint and address.
        """
        return cls(
            transport_factory=transport_factory,
            poll_interval_ms=config.poll_interval_ms,
            max_records_per_kind=config.max_records_per_kind,
            failure_threshold=config.failure_threshold,
            refresh_every_polls=config.refresh_every_polls,
            recent_activity_limit=config.recent_activity_limit,
            scalar_names=tuple(config.scalar_names),
            store=store,
        )

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def latest_snapshot(self) -> SyncSnapshot | None:
        """Last snapshot delivered to subscribers."""
        return self._latest

    @property
    def client(self) -> DomainClient | None:
        """Domain client of the current configuration, for point queries."""
        return self._client

    @property
    def cache(self) -> EventCache:
        """The engine's event cache."""
        return self._cache

    @property
    def is_configured(self) -> bool:
        """Whether an endpoint and contract are set."""
        return self._client is not None

    @property
    def is_polling(self) -> bool:
        """Whether the poll timer is running."""
        return self._timer is not None

    def stats(self) -> EngineStats:
        """Cache statistics plus engine diagnostics."""
        return EngineStats(
            cache=self._cache.stats(),
            configured=self.is_configured,
            polling=self.is_polling,
            subscribers=len(self._subscribers),
            consecutive_failures=self._consecutive_failures,
            last_height=self._last_height,
            poll_interval_ms=self.poll_interval_ms,
            endpoint=self._endpoint,
            contract_address=self._contract,
            halted=str(self._fault) if self._fault is not None else None,
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def configure(self, endpoint: str, contract_address: str) -> None:
        """
        Point the engine at a ledger endpoint and contract.

        Calling it again with the same values does nothing. Otherwise the
        cache and fingerprint are reset, a new client is built, and no
        snapshot is delivered until the next successful poll. An in-flight
        tick of the previous configuration discards its result.

        An empty endpoint or a malformed address leaves the engine
        unconfigured: ticks do nothing until a valid configuration arrives.
        """
        endpoint = endpoint.strip()
        try:
            contract: str | None = normalize_address(contract_address.strip())
        except ValueError:
            contract = None

        if not endpoint or contract is None:
            endpoint, contract = "", None

        if (endpoint or None, contract) == (self._endpoint, self._contract):
            return

        self._generation += 1
        old_transport = self._transport
        self._reset()

        if contract is None:
            logger.warning(
                "Invalid configuration (endpoint=%r, contract=%r); engine idle",
                endpoint,
                contract_address,
            )
            self._endpoint = self._contract = None
            self._transport = self._client = None
        else:
            self._endpoint, self._contract = endpoint, contract
            self._transport = self.transport_factory(endpoint, contract)
            self._client = DomainClient(self._transport)
            logger.info("Configured for contract %s at %s", contract, endpoint)
            self._warm_start()

        # A loop halted by a defect resumes under the new configuration.
        if self._subscribers and self._timer is None:
            self._start_timer()

        if old_transport is not None:
            await old_transport.aclose()

    def _reset(self) -> None:
        """Drop all state tied to a configuration."""
        self._cache.clear_all()
        self._fingerprint = None
        self._latest = None
        self._consecutive_failures = 0
        self._last_height = 0
        self._last_fetched_height = None
        self._polls_since_fetch = 0
        self._fault = None
        self._publish_cache_sizes()

    def _publish_cache_sizes(self) -> None:
        for kind in EventKind:
            metrics.cached_records.labels(engine=self.name, kind=str(kind)).set(
                self._cache.size(kind)
            )

    def _warm_start(self) -> None:
        """Restore the cache mirror of the current configuration, if any."""
        if self.store is None or self._endpoint is None or self._contract is None:
            return
        try:
            entries = self.store.load(self._endpoint, self._contract)
            self._cache.restore(entries)
        except Exception:
            logger.warning("Cache mirror unreadable; starting cold", exc_info=True)
            self._cache.clear_all()
            return
        if entries:
            logger.info("Warm start: restored %d cached records", len(self._cache))
            self._publish_cache_sizes()

    def _save_mirror(self) -> None:
        if self.store is None or self._endpoint is None or self._contract is None:
            return
        try:
            self.store.save(self._endpoint, self._contract, self._cache.entries())
        except Exception:
            logger.warning("Failed to save cache mirror", exc_info=True)

    # -------------------------------------------------------------------------
    # Subscription and timer
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """
        Register a callback for changed snapshots.

        The first subscription starts the poll timer, so it must be called
        from within a running event loop.

        Returns:
            A closure that deregisters the callback. Calling it more than once
            is harmless. When the last callback leaves, the timer stops.

        Callbacks joining an engine that is already polling receive the next
        changed snapshot; `latest_snapshot` holds the current one.
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback
        metrics.subscribers.labels(engine=self.name).set(len(self._subscribers))

        if self._timer is None:
            if self._fault is None:
                self._start_timer()
            else:
                logger.warning("Polling halted (%s); reconfigure to resume", self._fault)

        def unsubscribe() -> None:
            if self._subscribers.pop(token, None) is None:
                return
            metrics.subscribers.labels(engine=self.name).set(len(self._subscribers))
            if not self._subscribers:
                self._stop_timer()

        return unsubscribe

    def _start_timer(self) -> None:
        # A fresh loop always delivers its first snapshot, even if unchanged.
        self._fingerprint = None
        self._timer_token += 1
        self._wake.clear()
        self._timer = asyncio.get_running_loop().create_task(
            self._run(self._timer_token), name="ledger-sync-poll"
        )

    def _stop_timer(self) -> None:
        # The loop sees its token go stale and exits after the current tick.
        self._timer_token += 1
        self._timer = None
        self._wake.set()

    async def _run(self, token: int) -> None:
        """Poll loop: tick, then wait one interval or until woken."""
        logger.info("Polling started (interval %d ms)", self.poll_interval_ms)
        try:
            while token == self._timer_token:
                await self._tick()
                if token != self._timer_token:
                    break
                try:
                    async with asyncio.timeout(self.poll_interval_ms / 1000):
                        await self._wake.wait()
                except TimeoutError:
                    pass
                self._wake.clear()
        except WatermarkRegressionError as exc:
            logger.critical("Cache watermark regression; polling halted", exc_info=True)
            self._fault = exc
        finally:
            if token == self._timer_token:
                self._timer = None
            logger.info("Polling stopped")

    def force_refresh(self) -> None:
        """
        Make the next poll fetch and notify even if nothing changed.

        Typically called right after a write. If the timer is running it is
        also woken so the poll happens now rather than after the interval.
        """
        self._fingerprint = None
        self._last_fetched_height = None
        if self._timer is not None:
            self._wake.set()

    def set_poll_interval_ms(self, interval_ms: int) -> None:
        """
        Change the poll interval, clamped to `MIN_POLL_INTERVAL_MS`.

        A running timer restarts its period with the new interval.
        """
        self.poll_interval_ms = max(int(interval_ms), MIN_POLL_INTERVAL_MS)
        if self._timer is not None:
            self._wake.set()

    async def close(self) -> None:
        """
        Stop the timer, wait for the loop to exit, and release the transport.

        The engine's metric series are removed as well.
        """
        timer = self._timer
        self._subscribers.clear()
        if timer is not None:
            self._stop_timer()
            await timer
        metrics.remove_engine(self.name, [str(kind) for kind in EventKind])
        if self._transport is not None:
            await self._transport.aclose()
            self._transport = None
            self._client = None
            self._endpoint = self._contract = None

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def _tick(self) -> None:
        """
        Run one poll.

        At most one tick runs at a time; a tick that starts while another is
        still running returns immediately. Ledger errors are logged, never
        raised. A watermark regression is a defect and propagates.
        """
        client = self._client
        if client is None:
            return
        if self._busy:
            logger.debug("Previous poll still running; skipping tick")
            return

        self._busy = True
        generation = self._generation
        metrics.polls.inc()
        try:
            with metrics.poll_duration.time():
                await self._poll(client, generation)
        except WatermarkRegressionError:
            raise
        except Exception:
            if generation == self._generation:
                logger.exception("Poll failed")
        finally:
            self._busy = False

    async def _poll(self, client: DomainClient, generation: int) -> None:
        # Step 1: height, with the failure threshold.
        try:
            height = await client.get_height()
        except LedgerSyncError as exc:
            if generation == self._generation:
                self._on_failure("Height query", exc)
            return
        if generation != self._generation:
            return

        self._last_height = height
        metrics.ledger_height.labels(engine=self.name).set(height)

        # Step 2: throttle when the height has not moved.
        if self._should_skip(height):
            self._polls_since_fetch += 1
            metrics.polls_skipped.inc()
            logger.debug("Height %d unchanged; skipping fetch", height)
            return

        # A height below a watermark means the ledger was reset under us.
        if any(self._cache.last_incorporated_block(kind) > height for kind in EventKind):
            logger.warning("Ledger rewound to height %d; discarding cached records", height)
            self._cache.clear_all()
            self._publish_cache_sizes()

        # Step 3: fetch everything before merging anything.
        try:
            scalars, fetched = await self._fetch(client, height)
        except LedgerSyncError as exc:
            if generation == self._generation:
                self._on_failure("Fetch", exc)
            return
        if generation != self._generation:
            return

        # Step 4: merge.
        self._merge(fetched, height)
        self._save_mirror()
        self._consecutive_failures = 0
        self._last_fetched_height = height
        self._polls_since_fetch = 0

        # Steps 5 and 6: derive, assemble, and deliver.
        records_by_kind = {kind: self._cache.records(kind) for kind in EventKind}
        snapshot = SyncSnapshot(
            connected=True,
            height=height,
            scalars=scalars,
            records_by_kind=records_by_kind,
            roster=roster(records_by_kind, ROSTER_KINDS),
            recent_activity=recent_activity(records_by_kind, self.recent_activity_limit),
            captured_at_unix_millis=self.clock(),
        )
        self._deliver(snapshot)

    def _on_failure(self, stage: str, exc: LedgerSyncError) -> None:
        """
        Count a failed poll; reaching the threshold delivers the degraded snapshot.

        Height, scalar and log failures all count. Only a poll that fetches
        and merges successfully resets the count, so the next poll always
        fetches again.
        """
        self._consecutive_failures += 1
        self._last_fetched_height = None
        metrics.fetch_failures.inc()
        logger.warning(
            "%s failed (attempt %d/%d): %s",
            stage,
            self._consecutive_failures,
            self.failure_threshold,
            exc,
        )
        if self._consecutive_failures >= self.failure_threshold:
            self._deliver(SyncSnapshot.disconnected(self.clock()))

    def _should_skip(self, height: int) -> bool:
        """
        Decide whether this poll can skip fetching.

        A missing fingerprint (first poll, after `force_refresh`) always
        fetches. Otherwise a poll is skipped while the height equals the last
        fetched height, until `refresh_every_polls` polls have elapsed.
        """
        if self._fingerprint is None or self._last_fetched_height is None:
            return False
        if height != self._last_fetched_height:
            return False
        return self._polls_since_fetch + 1 < self.refresh_every_polls

    async def _fetch(
        self,
        client: DomainClient,
        height: int,
    ) -> tuple[dict[str, str], dict[EventKind, list[LogRecord]]]:
        """
        Fetch scalars and log ranges concurrently.

        Per kind: a never-synced kind is backfilled from block 0, otherwise
        only the blocks after its watermark are requested. A kind already at
        `height` needs no request at all.
        """
        ranges: dict[EventKind, int] = {}
        for kind in EventKind:
            watermark = self._cache.last_incorporated_block(kind)
            if watermark == NEVER_SYNCED:
                ranges[kind] = 0
            elif watermark < height:
                ranges[kind] = watermark + 1

        scalars, *logs = await asyncio.gather(
            client.get_network_stats(self.scalar_names),
            *(client.get_logs(kind, start, height) for kind, start in ranges.items()),
        )
        return scalars, dict(zip(ranges, logs, strict=True))

    def _merge(self, fetched: dict[EventKind, list[LogRecord]], height: int) -> None:
        """
        Incorporate fetched records and advance every watermark to `height`.

        Every kind is validated before any is merged: a batch that fails
        validation leaves all watermarks where they were.
        """
        for kind in EventKind:
            self._cache.check_merge(kind, fetched.get(kind, []), height)

        for kind in EventKind:
            records = fetched.get(kind, [])
            if self._cache.last_incorporated_block(kind) == NEVER_SYNCED:
                self._cache.replace(kind, records, height)
            else:
                self._cache.append(kind, records, height)
            metrics.records_fetched.labels(kind=str(kind)).inc(len(records))

        self._publish_cache_sizes()

    def _deliver(self, snapshot: SyncSnapshot) -> None:
        """
        Pass a snapshot through the fingerprint gate and fan it out.

        Each subscriber runs in isolation: one raising does not stop the rest.
        """
        digest = fingerprint(snapshot)
        if digest == self._fingerprint:
            logger.debug("Snapshot unchanged; not notifying")
            return
        if not self._subscribers:
            return

        self._fingerprint = digest
        self._latest = snapshot
        metrics.notifications.inc()

        for callback in list(self._subscribers.values()):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Subscriber %r raised", callback)
