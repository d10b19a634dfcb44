"""Per-trade exposure cap."""

import pytest

from core.risk import RiskManager


@pytest.fixture
def risk():
    return RiskManager(account_value=100.0)


@pytest.mark.parametrize("max_pct", [0.0, -5.0])
def test_disabled_cap_never_blocks(risk, max_pct):
    exceeded, exposure = risk.validate_trade("ABC", 1_000_000.0, 1000, max_pct)

    assert exceeded is False
    assert exposure == 0.0


def test_exposure_above_cap_blocks(risk):
    exceeded, exposure = risk.validate_trade("ABC", 10.0, 3, 25.0)

    assert exceeded is True
    assert exposure == pytest.approx(30.0)


def test_exposure_equal_to_cap_is_allowed(risk):
    exceeded, exposure = risk.validate_trade("ABC", 10.0, 2, 20.0)

    assert exceeded is False
    assert exposure == pytest.approx(20.0)


def test_exposure_below_cap_is_allowed(risk):
    exceeded, _ = risk.validate_trade("ABC", 5.0, 1, 10.0)

    assert exceeded is False


def test_account_value_setter_changes_baseline(risk):
    assert risk.validate_trade("ABC", 50.0, 1, 10.0)[0] is True

    risk.account_value = 1000.0

    assert risk.account_value == 1000.0
    assert risk.validate_trade("ABC", 50.0, 1, 10.0)[0] is False


def test_non_positive_account_value_blocks():
    risk = RiskManager(account_value=0.0)

    exceeded, exposure = risk.validate_trade("ABC", 1.0, 1, 50.0)

    assert exceeded is True
    assert exposure == pytest.approx(1.0)


def test_calculate_exposure(risk):
    assert risk.calculate_exposure(12.5, 4) == pytest.approx(50.0)
