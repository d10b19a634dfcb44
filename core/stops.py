"""
steptrader Core: Stop Manager

Pure stop-loss computation from configuration + market data.
Long-only: stops sit below entry and trigger when price falls to them.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from core.models import Position

logger = logging.getLogger(__name__)

STOP_MODES = ("PCT", "ATR", "VOLATILITY")

DEFAULT_STOP_LEVELS = {
    "tight": 0.5,
    "medium": 1.0,
    "wide": 2.0,
}


def round_to_tick(price: float, tick: float) -> float:
    """Round to the nearest multiple of tick, halves away from zero; no-op when tick <= 0."""
    if tick <= 0:
        return price
    steps = math.floor(abs(price) / tick + 0.5)
    return math.copysign(steps * tick, price)


@dataclass(frozen=True)
class StopConfig:
    """Stop configuration, immutable after construction."""
    mode: str = "ATR"
    pct: float = 1.0
    atr_mult: float = 1.5
    min_tick: float = 0.05
    trailing: bool = False
    max_hold_seconds: int = 3600
    levels: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_STOP_LEVELS))

    def __post_init__(self):
        object.__setattr__(self, "mode", (self.mode or "ATR").upper())


class StopManager:
    """
    Stop price and trigger computation.

    Modes:
    - PCT: entry * (1 - pct/100)
    - ATR (default): entry - atr_mult * ATR
    - VOLATILITY: multiplier widened by ATR as % of entry
      (effective = atr_mult * (1 + relative_vol/50))
    """

    def __init__(self, config: Optional[StopConfig] = None):
        self.config = config or StopConfig()
        self._levels: Dict[str, float] = dict(self.config.levels)
        self._max_hold_seconds = int(self.config.max_hold_seconds)

        logger.info(
            f"StopManager initialized: mode={self.config.mode}, pct={self.config.pct}, "
            f"atr_mult={self.config.atr_mult}, tick={self.config.min_tick}, "
            f"trailing={self.config.trailing}"
        )

    def calculate_stop_price(self, entry: float, atr: float) -> float:
        """Stop price for an entry at the current ATR, rounded to tick."""
        mode = self.config.mode
        if mode == "PCT":
            stop = entry * (1.0 - self.config.pct / 100.0)
        elif mode == "VOLATILITY":
            relative_vol = (atr / entry) * 100.0 if entry else 0.0
            multiplier = self.config.atr_mult * (1.0 + relative_vol / 50.0)
            stop = entry - multiplier * atr
        else:
            stop = entry - self.config.atr_mult * atr

        if math.isnan(stop):
            # ATR unavailable (short window): fall back to the medium preset
            return self.calculate_stop_with_level(entry, "medium")
        return round_to_tick(stop, self.config.min_tick)

    def calculate_stop_with_level(self, entry: float, level: str) -> float:
        """Percentage-off stop from a named preset; unknown labels use medium."""
        stop_pct = self.get_stop_level(level)
        return round_to_tick(entry * (1.0 - stop_pct / 100.0), self.config.min_tick)

    def get_stop_level(self, level: str) -> float:
        if level in self._levels:
            return self._levels[level]
        return self._levels.get("medium", DEFAULT_STOP_LEVELS["medium"])

    def set_stop_level(self, level: str, pct: float) -> None:
        self._levels[level] = pct

    def check_stop_loss(self, symbol: str, current_price: float, stop_price: float,
                        position: Optional[Position]) -> bool:
        """True iff a position is held and current_price <= stop_price."""
        if position is None or position.quantity <= 0:
            return False

        if current_price <= stop_price:
            unrealized = (current_price - position.avg_price) * position.quantity
            logger.warning(
                f"STOP_LOSS_TRIGGERED {symbol}: price={current_price:.4f} <= stop={stop_price:.4f}, "
                f"qty={position.quantity}, avg={position.avg_price:.4f}, unrealized={unrealized:+.2f}"
            )
            return True
        return False

    def check_time_based_stop(self, symbol: str, position: Optional[Position],
                              now: Optional[datetime] = None) -> bool:
        """True iff the position has been held longer than the max hold time."""
        if position is None or position.quantity <= 0:
            return False

        now = now or datetime.now(timezone.utc)
        held_seconds = (now - position.entry_time).total_seconds()
        if held_seconds > self._max_hold_seconds:
            logger.warning(
                f"TIME_STOP_TRIGGERED {symbol}: held {held_seconds:.0f}s > max {self._max_hold_seconds}s, "
                f"qty={position.quantity}, entry_time={position.entry_time.isoformat()}"
            )
            return True
        return False

    def set_max_hold_time(self, seconds: int) -> None:
        self._max_hold_seconds = int(seconds)

    @property
    def max_hold_seconds(self) -> int:
        return self._max_hold_seconds

    def is_trailing_enabled(self) -> bool:
        return self.config.trailing
