"""
steptrader Core: Order Executor

Normalizes buy/sell requests, submits them to the broker and writes
one audit record per confirmed fill. Also records one decision per cycle.

No retry: a failed order surfaces as OrderError and the next scheduled
cycle decides again.
"""

import logging
from typing import Optional

from core.audit_log import AuditLogger, DecisionRecord, TradeRecord
from core.deadline import CycleDeadline
from core.exceptions import OrderError
from core.interfaces import Broker
from core.models import Decision, Indicators, OrderRequest, OrderResponse, TAG_LLM
from infra.metrics import MetricsRecorder

logger = logging.getLogger(__name__)


class OrderExecutor:
    """
    Order placement + trade logging.

    Safety:
    - Audit records are written only after the broker confirms the order
    - Audit failures never propagate (the fill must reach position bookkeeping)
    """

    def __init__(self, broker: Broker, audit: AuditLogger,
                 metrics: Optional[MetricsRecorder] = None):
        self.broker = broker
        self.audit = audit
        self.metrics = metrics

    def place_buy_order(self, symbol: str, qty: int, price: float, reason: str,
                        confidence: float, deadline: Optional[CycleDeadline] = None) -> OrderResponse:
        return self._place(symbol, "BUY", qty, price, reason, confidence, TAG_LLM, deadline)

    def place_sell_order(self, symbol: str, qty: int, price: float, reason: str,
                         confidence: float, tag: str = TAG_LLM,
                         deadline: Optional[CycleDeadline] = None) -> OrderResponse:
        return self._place(symbol, "SELL", qty, price, reason, confidence, tag, deadline)

    def _place(self, symbol: str, side: str, qty: int, price: float, reason: str,
               confidence: float, tag: str, deadline: Optional[CycleDeadline]) -> OrderResponse:
        """
        Submit one market order.

        Args:
            symbol: Trading symbol
            side: "BUY" | "SELL"
            qty: Quantity
            price: Reference price (recorded in the audit trail)
            reason: Audit reason
            confidence: Decision confidence
            tag: "LLM" for oracle trades, "SL" for forced stop exits
            deadline: Cycle deadline forwarded to the broker

        Raises:
            OrderError: broker rejected or failed the order
        """
        request = OrderRequest(symbol=symbol, side=side, quantity=qty, tag=tag)

        try:
            resp = self.broker.place_order(request, deadline=deadline)
        except Exception as e:
            logger.error(f"Failed to place {side} order: {symbol} qty={qty} @ {price:.4f} tag={tag}: {e}")
            if self.metrics:
                self.metrics.record_order(side, tag, success=False)
            raise OrderError(f"{side} {symbol} failed", e) from e

        logger.info(
            f"ORDER {side} {symbol}: qty={qty} @ {price:.4f} tag={tag} "
            f"order_id={resp.order_id} status={resp.status}"
        )
        if self.metrics:
            self.metrics.record_order(side, tag, success=True)

        self.audit.append_trade(TradeRecord(
            symbol=symbol,
            side=side,
            qty=qty,
            price=price,
            order_id=resp.order_id,
            reason=reason,
            confidence=confidence,
        ))
        return resp

    def log_decision(self, symbol: str, decision: Decision, price: float,
                     indicators: Indicators) -> None:
        """Record the oracle decision with its full indicator snapshot."""
        logger.info(
            f"DECISION {symbol}: {decision.action} conf={decision.confidence:.2f} "
            f"price={price:.4f} reason={decision.reason!r}"
        )
        self.audit.append_decision(DecisionRecord(
            symbol=symbol,
            action=decision.action,
            confidence=decision.confidence,
            reason=decision.reason,
            price=price,
            indicators=indicators.snapshot(),
        ))
