"""
Prometheus metrics collection and HTTP exposition.

Metric objects live at module level so the policy chains, the management
API and the report hook can count into them without holding a service
reference. They are always recorded; whether anyone can scrape them depends
on a [MetricsServer][relayguard.core.metrics.MetricsServer] being started.

Metrics:
    SERVICE_INFO:               Service name, set when ``run_forever()`` starts.
    SERVICE_GAUGE:              Per-service point-in-time values.
    SERVICE_COUNTER:            Per-service cumulative totals.
    CYCLE_DURATION_SECONDS:     Management cycle latency.
    POLICY_DECISIONS:           Accept/reject/error per policy and chain.
    MODERATION_ACTIONS:         Owner actions through NIP-86.
    REPORTS_RECEIVED:           NIP-56 reports by intake outcome.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    Set ``host`` to ``"0.0.0.0"`` in container environments to allow
    external scraping. The endpoint is only started when ``enabled``
    is True.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Service Metrics (auto-tracked by BaseService.run_forever)
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "relayguard_service",
    "Service information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "relayguard_cycle_duration_seconds",
    "Duration of service cycle in seconds",
    ["service"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
)

# Automatic labels (BaseService.run_forever):
#   gauge:   consecutive_failures, last_cycle_timestamp
#   counter: cycles_success, cycles_failed, errors_{type}
SERVICE_GAUGE = Gauge(
    "relayguard_service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "relayguard_service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# Moderation Metrics
# ---------------------------------------------------------------------------

# outcome: accept, reject, error
POLICY_DECISIONS = Counter(
    "relayguard_policy_decisions",
    "Decisions taken by admission and filter policies",
    ["chain", "policy", "outcome"],
)

# action: ban_pubkey, allow_pubkey, ban_event, allow_event, cascade_failed
MODERATION_ACTIONS = Counter(
    "relayguard_moderation_actions",
    "Owner actions performed through the management API",
    ["action"],
)

# outcome: stored, duplicate, dropped
REPORTS_RECEIVED = Counter(
    "relayguard_reports_received",
    "NIP-56 reports seen by the store-time hook",
    ["outcome"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible /metrics endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... service runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for Prometheus scrape requests.

        No-op if metrics are disabled in the configuration.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Safe to call if it was never started."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )
