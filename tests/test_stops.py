"""Stop price computation and trigger checks."""

from datetime import datetime, timedelta, timezone

import pytest

from core.models import Position
from core.stops import StopConfig, StopManager, round_to_tick


def _position(qty=10, avg=100.0, stop=95.0, held_seconds=0):
    return Position(
        symbol="ABC",
        quantity=qty,
        avg_price=avg,
        stop_price=stop,
        last_atr=2.0,
        entry_time=datetime.now(timezone.utc) - timedelta(seconds=held_seconds),
    )


def test_atr_stop_scenario():
    stops = StopManager(StopConfig(mode="ATR", atr_mult=1.5, min_tick=0.05))

    assert stops.calculate_stop_price(100.0, 2.0) == pytest.approx(97.00)


def test_pct_stop_scenario():
    stops = StopManager(StopConfig(mode="PCT", pct=2.0, min_tick=0.0))

    assert stops.calculate_stop_price(100.0, 2.0) == pytest.approx(98.00)


def test_pct_stop_rounded_to_tick():
    stops = StopManager(StopConfig(mode="pct", pct=1.0, min_tick=0.05))

    # 123.45 * 0.99 = 122.2155 -> nearest 0.05
    assert stops.calculate_stop_price(123.45, 0.0) == pytest.approx(122.20)


def test_volatility_mode_widens_with_relative_atr():
    cfg = StopConfig(mode="VOLATILITY", atr_mult=1.5, min_tick=0.0)
    stops = StopManager(cfg)

    # relative vol = 2%; multiplier = 1.5 * (1 + 2/50) = 1.56
    assert stops.calculate_stop_price(100.0, 2.0) == pytest.approx(100.0 - 1.56 * 2.0)
    assert stops.calculate_stop_price(100.0, 2.0) < StopManager(
        StopConfig(mode="ATR", atr_mult=1.5, min_tick=0.0)
    ).calculate_stop_price(100.0, 2.0)


def test_nan_atr_falls_back_to_medium_level():
    stops = StopManager(StopConfig(mode="ATR", min_tick=0.05))

    assert stops.calculate_stop_price(100.0, float("nan")) == pytest.approx(99.0)


def test_named_levels():
    stops = StopManager(StopConfig(min_tick=0.0))

    assert stops.calculate_stop_with_level(100.0, "tight") == pytest.approx(99.5)
    assert stops.calculate_stop_with_level(100.0, "wide") == pytest.approx(98.0)
    assert stops.calculate_stop_with_level(100.0, "unknown") == pytest.approx(99.0)

    stops.set_stop_level("tight", 0.25)
    assert stops.get_stop_level("tight") == 0.25


@pytest.mark.parametrize("price,expected", [
    (94.0, True),
    (95.0, True),
    (95.01, False),
    (120.0, False),
])
def test_check_stop_loss_inclusive(price, expected):
    stops = StopManager()

    assert stops.check_stop_loss("ABC", price, 95.0, _position(stop=95.0)) is expected


def test_check_stop_loss_requires_position():
    stops = StopManager()

    assert stops.check_stop_loss("ABC", 10.0, 95.0, None) is False
    assert stops.check_stop_loss("ABC", 10.0, 95.0, _position(qty=0)) is False


def test_time_based_stop():
    stops = StopManager(StopConfig(max_hold_seconds=60))

    assert stops.check_time_based_stop("ABC", _position(held_seconds=120)) is True
    assert stops.check_time_based_stop("ABC", _position(held_seconds=10)) is False
    assert stops.check_time_based_stop("ABC", None) is False

    stops.set_max_hold_time(600)
    assert stops.max_hold_seconds == 600
    assert stops.check_time_based_stop("ABC", _position(held_seconds=120)) is False


def test_config_is_immutable():
    cfg = StopConfig(mode="atr")

    assert cfg.mode == "ATR"
    with pytest.raises(Exception):
        cfg.mode = "PCT"


def test_round_to_tick():
    assert round_to_tick(97.03, 0.05) == pytest.approx(97.05)
    assert round_to_tick(97.02, 0.05) == pytest.approx(97.00)
    assert round_to_tick(97.033, 0) == 97.033


def test_round_to_tick_half_rounds_up():
    assert round_to_tick(96.5, 1.0) == 97.0
    assert round_to_tick(97.5, 1.0) == 98.0
    assert round_to_tick(0.25, 0.5) == 0.5


def test_pct_stop_on_exact_half_tick():
    stops = StopManager(StopConfig(mode="PCT", pct=3.5, min_tick=1.0))

    assert stops.calculate_stop_price(100.0, 0.0) == 97.0
