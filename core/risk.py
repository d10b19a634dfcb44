"""
steptrader Core: Risk Manager

Per-trade exposure cap against the account value baseline.
Applied to entries only; exits are never risk-gated.

The account value is injected (config baseline or setter). Real equity
retrieval is the caller's responsibility.
"""

from typing import Tuple
import logging

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_VALUE = 100.0


class RiskManager:
    """
    Exposure check: price * qty as % of account value vs max risk %.

    A max risk % <= 0 disables the check.
    """

    def __init__(self, account_value: float = DEFAULT_ACCOUNT_VALUE):
        self._account_value = float(account_value)
        logger.info(f"RiskManager initialized: account_value={self._account_value:.2f}")

    @property
    def account_value(self) -> float:
        return self._account_value

    @account_value.setter
    def account_value(self, value: float) -> None:
        self._account_value = float(value)
        logger.info(f"Account value updated: {self._account_value:.2f}")

    def calculate_exposure(self, price: float, qty: int) -> float:
        return price * qty

    def validate_trade(self, symbol: str, price: float, qty: int,
                       max_risk_pct: float) -> Tuple[bool, float]:
        """
        Check whether a trade exceeds the per-trade risk cap.

        Args:
            symbol: Trading symbol
            price: Reference price
            qty: Quantity to trade
            max_risk_pct: Max exposure as % of account value (<= 0 disables)

        Returns:
            (exceeded, exposure). exposure is 0.0 when the check is disabled.
        """
        if max_risk_pct <= 0:
            return False, 0.0

        exposure = self.calculate_exposure(price, qty)

        if self._account_value <= 0:
            logger.warning(
                f"TRADE_BLOCKED_RISK_CAP {symbol}: non-positive account value "
                f"{self._account_value:.2f}, exposure={exposure:.2f}"
            )
            return True, exposure

        exposure_pct = exposure / self._account_value * 100.0
        exceeded = exposure_pct > max_risk_pct

        if exceeded:
            logger.warning(
                f"TRADE_BLOCKED_RISK_CAP {symbol}: qty={qty} @ {price:.4f}, "
                f"exposure={exposure:.2f} ({exposure_pct:.2f}% of {self._account_value:.2f}) "
                f"> limit {max_risk_pct:.2f}%"
            )
        return exceeded, exposure
