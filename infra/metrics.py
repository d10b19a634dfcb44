"""Prometheus-backed metrics hooks for the trading engine and order execution."""

from __future__ import annotations

import logging
from typing import Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


class MetricsRecorder:
    """
    Expose engine/execution stats via Prometheus.

    Instances are created by the runner and passed explicitly to the components
    that record. Each instance owns its own CollectorRegistry, so several
    recorders (e.g. one per test) never collide. A disabled recorder is a no-op.
    """

    def __init__(self, enabled: bool = True, port: int = 9100,
                 registry: Optional[CollectorRegistry] = None) -> None:
        self._enabled = bool(enabled)
        self._port = port
        self._server: Any = None
        self._thread: Any = None
        self.registry = registry or CollectorRegistry()

        if not self._enabled:
            return

        self._cycle_counter = Counter(
            "trader_cycle_total",
            "Total engine cycles by outcome",
            labelnames=("symbol", "status"),
            registry=self.registry,
        )
        self._cycle_summary = Summary(
            "trader_cycle_duration_seconds",
            "Duration of one engine step",
            registry=self.registry,
        )
        self._orders_counter = Counter(
            "trader_orders_total",
            "Orders submitted by side, tag and outcome",
            labelnames=("side", "tag", "outcome"),
            registry=self.registry,
        )
        self._stop_loss_counter = Counter(
            "trader_stop_loss_triggers_total",
            "Forced stop-loss exits triggered",
            labelnames=("symbol",),
            registry=self.registry,
        )
        self._risk_block_counter = Counter(
            "trader_risk_blocks_total",
            "Entries skipped by the per-trade risk cap",
            labelnames=("symbol",),
            registry=self.registry,
        )
        self._trailing_counter = Counter(
            "trader_trailing_stop_updates_total",
            "Trailing stop raises",
            labelnames=("symbol",),
            registry=self.registry,
        )
        self._positions_gauge = Gauge(
            "trader_open_positions",
            "Number of currently open positions",
            registry=self.registry,
        )
        self._realized_pnl_gauge = Gauge(
            "trader_realized_pnl_today",
            "Realized P&L booked since local midnight",
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        """Serve the registry over HTTP. Idempotent."""
        if not self._enabled or self._server is not None:
            return
        try:
            self._server, self._thread = start_http_server(self._port, registry=self.registry)
        except OSError as exc:
            logger.error(f"Failed to start metrics exporter on port {self._port}: {exc}")
            return
        logger.info(f"Prometheus metrics exporter listening on 0.0.0.0:{self._port}")

    def shutdown(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        self._thread = None
        logger.info("Prometheus metrics exporter stopped")

    def record_cycle(self, symbol: str, status: str, duration_seconds: float) -> None:
        if not self._enabled:
            return
        self._cycle_counter.labels(symbol=symbol, status=status).inc()
        self._cycle_summary.observe(max(duration_seconds, 0.0))

    def record_order(self, side: str, tag: str, success: bool) -> None:
        if not self._enabled:
            return
        outcome = "filled" if success else "failed"
        self._orders_counter.labels(side=side, tag=tag, outcome=outcome).inc()

    def record_stop_loss(self, symbol: str) -> None:
        if not self._enabled:
            return
        self._stop_loss_counter.labels(symbol=symbol).inc()

    def record_risk_block(self, symbol: str) -> None:
        if not self._enabled:
            return
        self._risk_block_counter.labels(symbol=symbol).inc()

    def record_trailing_update(self, symbol: str) -> None:
        if not self._enabled:
            return
        self._trailing_counter.labels(symbol=symbol).inc()

    def set_open_positions(self, count: int) -> None:
        if not self._enabled:
            return
        self._positions_gauge.set(count)

    def set_realized_pnl(self, value: float) -> None:
        if not self._enabled:
            return
        self._realized_pnl_gauge.set(value)
