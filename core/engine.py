"""
Trading Engine - per-symbol decision/execution cycle

Implements one cycle for one symbol:
1. Fetch candles (abort on failure / short window)
2. Compute indicators
3. Forced stop-loss exit (preempts the oracle)
4. Build decision context (+ optional news sentiment)
5. Ask the decision oracle (abort on failure)
6. Resolve quantity
7. Execute BUY (risk-gated) / SELL / HOLD
8. Trail the stop
9. Return StepResult

Past step 5 nothing raises: leg failures become CycleEvents that render into
the reason trail. A confirmed fill is always committed to the position book
before anything else can interrupt the cycle.
"""

import logging
import math
import threading
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from core.audit_log import AuditLogger
from core.deadline import CycleDeadline, ensure_deadline
from core.exceptions import CycleCancelled, FetchError, InsufficientData, OracleError, OrderError
from core.execution import OrderExecutor
from core.indicators import calculate_indicators
from core.interfaces import Broker, Decider, NewsService
from core.models import (
    Candle,
    CycleEvent,
    Decision,
    Indicators,
    STOP_LOSS_REASON,
    STOP_LOSS_TRIGGERED,
    StepResult,
    TAG_STOP_LOSS,
)
from core.position_manager import PositionManager
from core.risk import RiskManager
from core.stops import StopManager
from infra.metrics import MetricsRecorder
from tools.config_validator import BotConfig

logger = logging.getLogger(__name__)


class TradingEngine:
    """
    Per-cycle orchestration over PositionManager, RiskManager, StopManager
    and OrderExecutor.

    Scheduling across symbols is the caller's job; `step` is synchronous and
    safe to call for different symbols from different threads (the position
    book and the daily P&L total are lock-guarded).
    """

    def __init__(self,
                 config: BotConfig,
                 broker: Broker,
                 decider: Decider,
                 audit: AuditLogger,
                 news: Optional[NewsService] = None,
                 metrics: Optional[MetricsRecorder] = None,
                 positions: Optional[PositionManager] = None,
                 risk: Optional[RiskManager] = None,
                 stops: Optional[StopManager] = None):
        """
        Args:
            config: Validated bot configuration
            broker: Candle source + order placement
            decider: Decision oracle
            audit: Audit sink for trades and decisions
            news: Optional sentiment enrichment
            metrics: Optional metrics recorder
        """
        self.config = config
        self.broker = broker
        self.decider = decider
        self.news = news
        self.metrics = metrics

        self.positions = positions or PositionManager()
        self.risk = risk or RiskManager(account_value=config.risk.account_value)
        self.stops = stops or StopManager(config.stop.to_stop_config())
        self.executor = OrderExecutor(broker, audit, metrics=metrics)

        self._tz = ZoneInfo(config.audit.timezone) if config.audit.timezone else None
        self.realized_pnl_today = 0.0
        self._pnl_day = self._today()
        self._pnl_lock = threading.Lock()

        logger.info(
            f"Initialized TradingEngine: candles={config.engine.candle_count}/"
            f"min {config.engine.min_candles}, risk_pct={config.risk.per_trade_risk_pct}, "
            f"news={'on' if news is not None and config.news.enabled else 'off'}"
        )

    # ------------------------------------------------------------------ cycle

    def step(self, symbol: str, deadline: Optional[CycleDeadline] = None) -> StepResult:
        """
        Run one cycle for a symbol.

        Raises:
            FetchError / InsufficientData: candles unavailable (no mutation)
            OracleError: decision oracle failed (no mutation)
            CycleCancelled: deadline hit before the oracle answered (no mutation)
        """
        started = time.monotonic()
        deadline = ensure_deadline(deadline)
        try:
            result = self._step(symbol, deadline)
        except Exception as e:
            self._record_cycle(symbol, type(e).__name__, started)
            raise
        self._record_cycle(symbol, "ok" if not result.events_with("error") else "degraded", started)
        return result

    def _step(self, symbol: str, deadline: CycleDeadline) -> StepResult:
        candles = self._fetch_candles(symbol, deadline)
        inds = self._indicators(candles)
        latest = candles[-1]
        price = latest.close
        events: List[CycleEvent] = []

        # Forced exit before, and independent of, the oracle
        forced = self._forced_exit(symbol, latest, deadline, events)
        if forced is not None:
            return forced

        context = self._build_context(symbol, price, deadline, events)

        deadline.check("decision")
        try:
            decision = self.decider.decide(symbol, latest, inds, context, deadline=deadline)
        except CycleCancelled:
            raise
        except Exception as e:
            logger.error(f"Decision oracle failed for {symbol}: {e}")
            raise OracleError(f"decide {symbol}", e) from e

        self.executor.log_decision(symbol, decision, price, inds)

        result = StepResult(
            symbol=symbol,
            price=price,
            time=latest.ts,
            decision=decision,
            events=events,
            base_reason=decision.reason,
        )

        qty = self.pick_quantity(symbol, decision)
        if decision.action == "BUY" and qty > 0:
            self._execute_buy(symbol, qty, price, inds, decision, deadline, result)
        elif decision.action == "SELL" and qty > 0:
            self._execute_sell(symbol, qty, price, decision, deadline, result)

        self._trail_stop(symbol, price, inds, result)

        if self.metrics:
            self.metrics.set_open_positions(len(self.positions))
        return result

    # ----------------------------------------------------------------- stages

    def _fetch_candles(self, symbol: str, deadline: CycleDeadline) -> List[Candle]:
        deadline.check("candle fetch")
        count = self.config.engine.candle_count
        try:
            candles = self.broker.recent_candles(symbol, count, deadline=deadline)
        except CycleCancelled:
            raise
        except Exception as e:
            logger.error(f"Candle fetch failed for {symbol}: {e}")
            raise FetchError(f"recent_candles {symbol}", e) from e

        candles = list(candles or [])
        if len(candles) < self.config.engine.min_candles:
            raise InsufficientData(symbol, len(candles), self.config.engine.min_candles)
        return candles

    def _indicators(self, candles: List[Candle]) -> Indicators:
        cfg = self.config.indicators
        return calculate_indicators(
            candles,
            sma_windows=cfg.sma_windows,
            rsi_period=cfg.rsi_period,
            bb_window=cfg.bb_window,
            bb_stddev=cfg.bb_stddev,
            atr_period=cfg.atr_period,
        )

    def _forced_exit(self, symbol: str, latest: Candle, deadline: CycleDeadline,
                     events: List[CycleEvent]) -> Optional[StepResult]:
        """Full-quantity SL sell when price has breached the stored stop."""
        price = latest.close
        pos = self.positions.get(symbol)
        if not self.stops.check_stop_loss(symbol, price, pos.stop_price if pos else 0.0, pos):
            return None

        if self.metrics:
            self.metrics.record_stop_loss(symbol)

        try:
            deadline.check("stop-loss order")
            resp = self.executor.place_sell_order(
                symbol, pos.quantity, price, STOP_LOSS_REASON, 1.0,
                tag=TAG_STOP_LOSS, deadline=deadline,
            )
        except (OrderError, CycleCancelled) as e:
            # Fill not confirmed: keep the position and fall through
            outcome = "cancelled" if isinstance(e, CycleCancelled) else "error"
            events.append(CycleEvent("stop_loss", outcome, f"stop_loss_order_err:{e}"))
            logger.error(f"Stop-loss exit for {symbol} failed, position kept open: {e}")
            return None

        # Confirmed fill: commit before anything else
        self.positions.close(symbol)
        realized = (price - pos.avg_price) * pos.quantity
        self._book_pnl(realized)
        events.append(CycleEvent("stop_loss", "triggered", STOP_LOSS_TRIGGERED))

        if self.metrics:
            self.metrics.set_open_positions(len(self.positions))

        return StepResult(
            symbol=symbol,
            price=price,
            time=latest.ts,
            decision=None,
            orders=[resp],
            events=events,
            realized_pnl=realized,
            base_reason=STOP_LOSS_TRIGGERED,
        )

    def _build_context(self, symbol: str, price: float, deadline: CycleDeadline,
                       events: List[CycleEvent]) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "price": price,
            "risk": self.config.risk.model_dump(),
        }

        pos = self.positions.get(symbol)
        if pos is not None:
            context["position"] = {
                "qty": pos.quantity,
                "avg": pos.avg_price,
                "stop": pos.stop_price,
                "unrealized_pnl": pos.unrealized_pnl(price),
            }

        if self.news is None or not self.config.news.enabled:
            return context

        try:
            sentiment = self.news.get_sentiment(symbol, deadline=deadline)
        except Exception as e:
            logger.warning(f"News sentiment unavailable for {symbol}, deciding without it: {e}")
            events.append(CycleEvent("sentiment", "skipped", f"sentiment_err:{e}"))
            return context

        if sentiment.confidence >= self.config.news.min_confidence:
            context["news_sentiment"] = sentiment.to_context()
            events.append(CycleEvent("sentiment", "ok", sentiment.overall_sentiment))
        else:
            logger.debug(
                f"Sentiment for {symbol} below confidence threshold "
                f"({sentiment.confidence:.2f} < {self.config.news.min_confidence:.2f})"
            )
            events.append(CycleEvent("sentiment", "skipped", "low_confidence"))
        return context

    def pick_quantity(self, symbol: str, decision: Decision) -> int:
        """
        Priority order:
        1. Quantity from the decision (if > 0)
        2. Per-symbol configuration
        3. Side-specific default
        """
        if decision.quantity and decision.quantity > 0:
            return decision.quantity
        qty_cfg = self.config.qty
        if symbol in qty_cfg.per_symbol:
            return qty_cfg.per_symbol[symbol]
        if decision.action == "SELL":
            return qty_cfg.default_sell
        return qty_cfg.default_buy

    def _execute_buy(self, symbol: str, qty: int, price: float, inds: Indicators,
                     decision: Decision, deadline: CycleDeadline, result: StepResult) -> None:
        exceeded, exposure = self.risk.validate_trade(
            symbol, price, qty, self.config.risk.per_trade_risk_pct
        )
        if exceeded:
            result.events.append(CycleEvent("risk", "blocked", "blocked: risk cap"))
            if self.metrics:
                self.metrics.record_risk_block(symbol)
            return

        try:
            deadline.check("buy order")
            resp = self.executor.place_buy_order(
                symbol, qty, price, decision.reason, decision.confidence, deadline=deadline
            )
        except CycleCancelled as e:
            result.events.append(CycleEvent("buy", "cancelled", f"cancelled:{e}"))
            return
        except OrderError as e:
            result.events.append(CycleEvent("buy", "error", f"order_err:{e}"))
            return

        # Fill confirmed: commit synchronously
        existing = self.positions.get(symbol)
        if existing is not None:
            new_avg = (existing.avg_price * existing.quantity + price * qty) / (existing.quantity + qty)
        else:
            new_avg = price
        stop = self.stops.calculate_stop_price(new_avg, inds.atr)
        self.positions.add_buy(symbol, qty, price, inds.atr, stop)

        result.orders.append(resp)
        result.events.append(CycleEvent("buy", "ok", f"bought {qty} @ {price:.4f}"))

    def _execute_sell(self, symbol: str, qty: int, price: float, decision: Decision,
                      deadline: CycleDeadline, result: StepResult) -> None:
        try:
            deadline.check("sell order")
            resp = self.executor.place_sell_order(
                symbol, qty, price, decision.reason, decision.confidence, deadline=deadline
            )
        except CycleCancelled as e:
            result.events.append(CycleEvent("sell", "cancelled", f"cancelled:{e}"))
            return
        except OrderError as e:
            result.events.append(CycleEvent("sell", "error", f"order_err:{e}"))
            return

        realized = self.positions.reduce_sell(symbol, qty, price)
        self._book_pnl(realized)
        result.realized_pnl += realized
        result.orders.append(resp)
        result.events.append(CycleEvent("sell", "ok", f"sold {qty} @ {price:.4f}, pnl={realized:+.2f}"))

    def _trail_stop(self, symbol: str, price: float, inds: Indicators, result: StepResult) -> None:
        if not self.stops.is_trailing_enabled() or not self.positions.has(symbol):
            return
        candidate = self.stops.calculate_stop_price(price, inds.atr)
        if math.isnan(candidate):
            return
        if self.positions.update_trailing_stop(symbol, candidate, inds.atr):
            result.events.append(CycleEvent("trailing", "ok", f"stop raised to {candidate:.4f}"))
            if self.metrics:
                self.metrics.record_trailing_update(symbol)

    # ---------------------------------------------------------------- helpers

    def _today(self) -> date:
        now = datetime.now(self._tz) if self._tz is not None else datetime.now().astimezone()
        return now.date()

    def _book_pnl(self, realized: float) -> None:
        with self._pnl_lock:
            today = self._today()
            if today != self._pnl_day:
                logger.info(f"New trading day {today}: resetting realized P&L ({self.realized_pnl_today:+.2f})")
                self.realized_pnl_today = 0.0
                self._pnl_day = today
            self.realized_pnl_today += realized
            total = self.realized_pnl_today
        if self.metrics:
            self.metrics.set_realized_pnl(total)

    def _record_cycle(self, symbol: str, status: str, started: float) -> None:
        elapsed = time.monotonic() - started
        logger.debug(f"Cycle {symbol} finished status={status} in {elapsed * 1000:.1f}ms")
        if self.metrics:
            self.metrics.record_cycle(symbol, status, elapsed)
