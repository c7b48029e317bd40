"""
Diagnostics API server for the sync engine.

Provides HTTP endpoints for:
- /ledger/v0/health - Health check endpoint
- /ledger/v0/stats - Engine and cache diagnostics
- /ledger/v0/snapshot - Latest delivered snapshot as JSON
- /metrics - Prometheus metrics endpoint
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aiohttp import web

from ledger_sync.metrics import generate_metrics

if TYPE_CHECKING:
    from ledger_sync.sync import SyncEngine

logger = logging.getLogger(__name__)


def _no_engine() -> SyncEngine | None:
    """Default engine getter that returns None."""
    return None


async def _handle_health(_request: web.Request) -> web.Response:
    """Handle health check endpoint."""
    return web.json_response({"status": "healthy", "service": "ledger-sync-api"})


async def _handle_metrics(_request: web.Request) -> web.Response:
    """Handle Prometheus metrics endpoint."""
    return web.Response(
        body=generate_metrics(),
        content_type="text/plain; version=0.0.4",
        charset="utf-8",
    )


@dataclass(frozen=True, slots=True)
class ApiServerConfig:
    """Configuration for the API server."""

    host: str = "127.0.0.1"
    """Host address to bind to."""

    port: int = 5053
    """Port to listen on."""

    enabled: bool = True
    """Whether the API server is enabled."""


@dataclass(slots=True)
class ApiServer:
    """
    HTTP API server exposing sync engine diagnostics.

    Read-only: no endpoint changes engine state.

    Uses aiohttp to handle HTTP protocol details efficiently.
    """

    config: ApiServerConfig
    """Server configuration."""

    engine_getter: Callable[[], SyncEngine | None] = _no_engine
    """Callable that returns the current engine."""

    _runner: web.AppRunner | None = field(default=None, init=False)
    """The aiohttp application runner."""

    _site: web.TCPSite | None = field(default=None, init=False)
    """The TCP site for the server."""

    @property
    def engine(self) -> SyncEngine | None:
        """Get the current engine."""
        return self.engine_getter()

    async def start(self) -> None:
        """Start the API server in the background."""
        if not self.config.enabled:
            logger.info("API server is disabled")
            return

        app = web.Application()
        app.add_routes(
            [
                web.get("/ledger/v0/health", _handle_health),
                web.get("/metrics", _handle_metrics),
                web.get("/ledger/v0/stats", self._handle_stats),
                web.get("/ledger/v0/snapshot", self._handle_snapshot),
            ]
        )

        self._runner = web.AppRunner(app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info("API server listening on %s:%d", self.config.host, self.config.port)

    async def stop(self) -> None:
        """Gracefully stop the server; does nothing if it never started."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
            logger.info("API server stopped")

    async def _handle_stats(self, _request: web.Request) -> web.Response:
        """
        Handle engine diagnostics endpoint.

        Returns configuration, polling state, failure counters, and per-kind
        cache counts and watermarks at /ledger/v0/stats.
        """
        engine = self.engine
        if engine is None:
            raise web.HTTPServiceUnavailable(reason="Engine not initialized")

        return web.json_response(engine.stats().to_json_dict())

    async def _handle_snapshot(self, _request: web.Request) -> web.Response:
        """
        Handle latest snapshot endpoint.

        Returns the last snapshot delivered to subscribers at
        /ledger/v0/snapshot. Until the first poll succeeds there is nothing
        to serve.
        """
        engine = self.engine
        if engine is None:
            raise web.HTTPServiceUnavailable(reason="Engine not initialized")

        snapshot = engine.latest_snapshot
        if snapshot is None:
            raise web.HTTPServiceUnavailable(reason="No snapshot yet")

        return web.json_response(snapshot.to_json_dict())
