"""End-of-day per-symbol CSV summary."""

import json
from datetime import date, datetime, time, timezone

import pytest
import yaml

from core.eod import EodSummarizer, aggregate_trades, parse_close_time
from core.models import Decision
from runner.main_loop import TradingLoop
from tests.helpers import ScriptedDecider, StubBroker, flat_candles

DAY = date(2024, 1, 2)


def _write_trades(audit, day, lines):
    path = audit.day_path(day)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")


def _trade(symbol, side, qty, price):
    return json.dumps({
        "symbol": symbol, "side": side, "qty": qty, "price": price,
        "order_id": "x", "reason": "", "confidence": 0.0, "time": "",
    })


def test_aggregate_matches_bought_and_sold_quantity():
    rows = aggregate_trades([
        {"symbol": "ABC", "side": "BUY", "qty": 10, "price": 100.0},
        {"symbol": "ABC", "side": "BUY", "qty": 10, "price": 110.0},
        {"symbol": "ABC", "side": "SELL", "qty": 15, "price": 120.0},
        {"symbol": "ABC", "side": "BUY", "qty": 5},
    ])

    abc = rows["ABC"]
    assert abc.buy_qty == 20
    assert abc.buy_avg == pytest.approx(105.0)
    assert abc.sell_avg == pytest.approx(120.0)
    # 15 matched shares at +15 each
    assert abc.realized_pnl == pytest.approx(225.0)


def test_summary_csv_rows_sorted_with_total(audit):
    _write_trades(audit, DAY, [
        _trade("XYZ", "SELL", 5, 50.0),
        _trade("ABC", "BUY", 10, 100.0),
        "not json",
        _trade("ABC", "BUY", 10, 110.0),
        _trade("ABC", "SELL", 15, 120.0),
    ])

    path = EodSummarizer(audit).summarize_day(DAY)

    assert path == audit.log_dir / "eod" / "2024-01-02.csv"
    assert path.read_text().splitlines() == [
        "symbol,buy_qty,buy_avg,sell_qty,sell_avg,realized_pnl,gross_buy_value,gross_sell_value",
        "ABC,20,105.0000,15,120.0000,225.00,2100.00,1800.00",
        "XYZ,0,0.0000,5,50.0000,0.00,0.00,250.00",
        "TOTAL,,,,,225.00,2100.00,2050.00",
    ]


def test_no_trades_writes_nothing(audit):
    summarizer = EodSummarizer(audit)

    assert summarizer.summarize_day(DAY) is None
    assert not summarizer.csv_path(DAY).exists()


def test_custom_output_dir(audit, tmp_path):
    _write_trades(audit, DAY, [_trade("ABC", "BUY", 1, 10.0)])

    path = EodSummarizer(audit, output_dir=str(tmp_path / "reports")).summarize_day(DAY)

    assert path == tmp_path / "reports" / "2024-01-02.csv"
    assert path.exists()


def test_should_run_only_after_close_and_once(audit):
    summarizer = EodSummarizer(audit, close_time=time(15, 40))
    before = datetime(2024, 1, 2, 15, 39, tzinfo=timezone.utc)
    at_close = datetime(2024, 1, 2, 15, 40, tzinfo=timezone.utc)
    after = datetime(2024, 1, 2, 15, 41, tzinfo=timezone.utc)

    assert summarizer.should_run_now(before)[0] is False
    assert summarizer.should_run_now(at_close)[0] is False
    due, path = summarizer.should_run_now(after)
    assert due is True
    assert path == summarizer.csv_path(DAY)

    _write_trades(audit, DAY, [_trade("ABC", "BUY", 1, 10.0)])
    summarizer.summarize_day(DAY)
    assert summarizer.should_run_now(after)[0] is False


def test_parse_close_time():
    assert parse_close_time("15:40") == time(15, 40)


def test_loop_shutdown_writes_final_summary(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text(yaml.safe_dump({
        "app": {"mode": "DRY_RUN", "symbols": ["ABC"]},
        "engine": {"candle_count": 100, "min_candles": 30},
        "audit": {"log_dir": str(tmp_path / "audit"), "timezone": "UTC"},
        "eod": {"enabled": True, "close_time": "15:40"},
        "logging": {"file": str(tmp_path / "bot.log")},
    }))
    broker = StubBroker({"ABC": flat_candles(100.0, spread=2.0)})
    loop = TradingLoop(str(path), broker=broker,
                       decider=ScriptedDecider(Decision(action="BUY", reason="go")),
                       install_signal_handlers=False)

    loop.run_cycle()
    loop.shutdown()
    loop.shutdown()

    csv_path = loop.eod.csv_path(loop.audit.now().date())
    lines = csv_path.read_text().splitlines()
    assert lines[1].startswith("ABC,")
    assert lines[-1].startswith("TOTAL,")


def test_loop_without_eod(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text(yaml.safe_dump({
        "app": {"mode": "DRY_RUN", "symbols": ["ABC"]},
        "audit": {"log_dir": str(tmp_path / "audit")},
        "eod": {"enabled": False},
        "logging": {"file": str(tmp_path / "bot.log")},
    }))

    loop = TradingLoop(str(path), install_signal_handlers=False)
    loop.shutdown()

    assert loop.eod is None
    assert not (tmp_path / "audit" / "eod").exists()
