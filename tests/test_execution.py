"""Order executor: broker submission and trade audit."""

import pytest

from core.exceptions import OrderError
from core.execution import OrderExecutor
from core.models import Decision, Indicators, TAG_LLM, TAG_STOP_LOSS
from infra.metrics import MetricsRecorder
from tests.helpers import StubBroker


def test_buy_is_submitted_and_audited(audit):
    broker = StubBroker()
    executor = OrderExecutor(broker, audit)

    resp = executor.place_buy_order("ABC", 3, 101.0, "breakout", 0.7)

    assert resp.order_id == "ord-1"
    assert broker.orders[0].side == "BUY"
    assert broker.orders[0].tag == TAG_LLM
    assert broker.orders[0].quantity == 3

    trades = audit.get_recent(5)
    assert trades[0]["side"] == "BUY"
    assert trades[0]["reason"] == "breakout"
    assert trades[0]["confidence"] == 0.7


def test_stop_loss_sell_carries_tag(audit):
    broker = StubBroker()
    executor = OrderExecutor(broker, audit)

    executor.place_sell_order("ABC", 10, 94.0, "STOP_LOSS", 1.0, tag=TAG_STOP_LOSS)

    assert broker.orders[0].tag == "SL"
    assert audit.get_recent(1)[0]["reason"] == "STOP_LOSS"


def test_broker_failure_raises_order_error_without_audit(audit):
    broker = StubBroker(fail_orders=True)
    metrics = MetricsRecorder(enabled=True)
    executor = OrderExecutor(broker, audit, metrics=metrics)

    with pytest.raises(OrderError) as exc_info:
        executor.place_buy_order("ABC", 1, 100.0, "x", 0.5)

    assert "order rejected by broker" in str(exc_info.value)
    assert isinstance(exc_info.value.original, RuntimeError)
    assert audit.get_recent(5) == []
    assert metrics.registry.get_sample_value(
        "trader_orders_total", {"side": "BUY", "tag": "LLM", "outcome": "failed"}
    ) == 1.0


def test_log_decision_writes_indicator_snapshot(audit):
    executor = OrderExecutor(StubBroker(), audit)
    inds = Indicators(sma={20: 101.0, 50: 100.0}, rsi=61.0, atr=2.0)

    executor.log_decision("ABC", Decision(action="HOLD", confidence=0.4, reason="meh"), 100.0, inds)

    records = audit.get_recent(1, partition="decisions")
    assert records[0]["action"] == "HOLD"
    assert records[0]["indicators"]["SMA20"] == 101.0
    assert records[0]["indicators"]["SMA200"] is None
