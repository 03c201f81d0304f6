"""
Prometheus Metrics for the Cross-Venue Arbitrage Engine

Exposes cycle, oracle, relay and ledger metrics for monitoring and alerting.
"""

import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .utils import get_logger

logger = get_logger(__name__)


class ArbitrageMetrics:
    """
    Arbitrage engine metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Cycle outcomes and pool loading
    - Oracle decisions
    - Relay polling and settlement
    - Ledger writes and realized P&L
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        engine_name: str = "cross-venue-arbitrage",
    ):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self.engine_name = engine_name
        self._initialize_metrics()

        # Server components
        self._runner = None
        self._site = None

        # Thread-safe access
        self._lock = threading.RLock()

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === CYCLE METRICS ===
        self.cycles_total = Counter(
            "cross_venue_arbitrage_cycles_total",
            "Total scan/decide/execute cycles by outcome",
            ["engine", "outcome"],
            registry=self.registry,
        )

        self.pools_loaded = Gauge(
            "cross_venue_arbitrage_pools_loaded",
            "Pools loaded in the last cycle, per venue",
            ["engine", "venue"],
            registry=self.registry,
        )

        self.opportunities_found_total = Counter(
            "cross_venue_arbitrage_opportunities_found_total",
            "Threshold-passing opportunities found by the scanner",
            ["engine"],
            registry=self.registry,
        )

        # === DECISION METRICS ===
        self.oracle_decisions_total = Counter(
            "cross_venue_arbitrage_oracle_decisions_total",
            "Decision gate verdicts (execute, skip, error)",
            ["engine", "decision"],
            registry=self.registry,
        )

        # === EXECUTION METRICS ===
        self.relay_polls_total = Counter(
            "cross_venue_arbitrage_relay_polls_total",
            "Relay status queries issued",
            ["engine"],
            registry=self.registry,
        )

        self.executions_total = Counter(
            "cross_venue_arbitrage_executions_total",
            "Relay executions by terminal state",
            ["engine", "state"],
            registry=self.registry,
        )

        self.settlement_seconds = Histogram(
            "cross_venue_arbitrage_settlement_seconds",
            "Time from submission to terminal state",
            ["engine"],
            buckets=[1, 5, 10, 20, 30, 45, 60, 90, 120],
            registry=self.registry,
        )

        # === LEDGER METRICS ===
        self.ledger_write_failures_total = Counter(
            "cross_venue_arbitrage_ledger_write_failures_total",
            "Settled trades that could not be recorded",
            ["engine"],
            registry=self.registry,
        )

        self.last_realized_pnl = Gauge(
            "cross_venue_arbitrage_last_realized_pnl",
            "Realized P&L of the last recorded trade, in quote units",
            ["engine"],
            registry=self.registry,
        )

        self.last_activity_timestamp = Gauge(
            "cross_venue_arbitrage_last_activity_timestamp",
            "Unix timestamp of the last completed cycle",
            ["engine"],
            registry=self.registry,
        )

    # === METRIC RECORDING METHODS ===

    def record_cycle(self, outcome: str):
        """Record a completed cycle"""
        with self._lock:
            self.cycles_total.labels(engine=self.engine_name, outcome=outcome).inc()
            self.last_activity_timestamp.labels(engine=self.engine_name).set(time.time())

    def record_pools_loaded(self, venue: str, count: int):
        with self._lock:
            self.pools_loaded.labels(engine=self.engine_name, venue=venue).set(count)

    def record_opportunities(self, count: int):
        if count <= 0:
            return
        with self._lock:
            self.opportunities_found_total.labels(engine=self.engine_name).inc(count)

    def record_decision(self, decision: str):
        """Record an oracle verdict: execute, skip or error"""
        with self._lock:
            self.oracle_decisions_total.labels(
                engine=self.engine_name, decision=decision
            ).inc()

    def record_relay_poll(self):
        with self._lock:
            self.relay_polls_total.labels(engine=self.engine_name).inc()

    def record_execution(self, state: str, duration_seconds: float = 0.0):
        """Record a terminal relay state and its settlement latency"""
        with self._lock:
            self.executions_total.labels(engine=self.engine_name, state=state).inc()
            if duration_seconds > 0:
                self.settlement_seconds.labels(engine=self.engine_name).observe(
                    duration_seconds
                )

    def record_ledger_failure(self):
        with self._lock:
            self.ledger_write_failures_total.labels(engine=self.engine_name).inc()

    def update_pnl(self, pnl: float):
        with self._lock:
            self.last_realized_pnl.labels(engine=self.engine_name).set(pnl)

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            app = web.Application()
            app.router.add_get(path, self._metrics_handler)
            app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        """Handle metrics endpoint requests"""
        metrics_output = generate_latest(self.registry)
        # Strip charset from content type to avoid conflicts with aiohttp
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        """Handle health check endpoint"""
        return web.json_response(
            {"status": "healthy", "service": "cross_venue_arbitrage_metrics"}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get current metrics summary"""
        return {
            "metrics_available": True,
            "registry_collectors": len(list(self.registry._collector_to_names.keys())),
            "timestamp": time.time(),
        }
