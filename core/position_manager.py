"""
Position Management: per-symbol open position bookkeeping

Owns the only mutable position state in the system. One position per symbol,
weighted-average entry on adds, stops that only ratchet up, and realized P&L
booked on sells. All mutation happens under a single coarse lock so the
manager can be shared by schedulers stepping different symbols concurrently.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.models import Position

logger = logging.getLogger(__name__)


class PositionManager:
    """
    In-memory position book.

    Responsibilities:
    - Create positions on first buy, average in on subsequent buys
    - Reduce/close positions on sells and book realized P&L
    - Ratchet stop prices upward (trailing), never downward
    - Hand out copies only; callers never mutate stored positions
    """

    def __init__(self):
        self._positions: Dict[str, Position] = {}
        self._lock = threading.RLock()

    def get(self, symbol: str) -> Optional[Position]:
        """Copy of the open position for symbol, or None."""
        with self._lock:
            pos = self._positions.get(symbol)
            return replace(pos) if pos is not None else None

    def has(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._positions

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._positions)

    def snapshot(self) -> Dict[str, Position]:
        """Copies of every open position keyed by symbol."""
        with self._lock:
            return {symbol: replace(pos) for symbol, pos in self._positions.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def add_buy(self, symbol: str, qty: int, price: float, atr: float, stop_price: float) -> Position:
        """
        Apply a confirmed BUY fill.

        New position: entry time = now, stop = stop_price.
        Existing position: average = (old_avg*old_qty + price*qty) / (old_qty+qty),
        quantity += qty, ATR refreshed, stop raised to max(existing, stop_price).
        Entry time is never reset so time-based stops reference the original entry.

        Args:
            symbol: Trading symbol
            qty: Filled quantity (> 0)
            price: Fill price
            atr: Current ATR
            stop_price: Stop computed for this fill

        Returns:
            Copy of the updated position
        """
        if qty <= 0:
            raise ValueError(f"buy quantity must be positive, got {qty}")

        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None:
                pos = Position(
                    symbol=symbol,
                    quantity=qty,
                    avg_price=price,
                    stop_price=stop_price,
                    last_atr=atr,
                    entry_time=datetime.now(timezone.utc),
                )
                self._positions[symbol] = pos
                logger.info(
                    f"OPEN {symbol}: qty={qty} @ {price:.4f}, stop={stop_price:.4f}"
                )
            else:
                total_cost = pos.avg_price * pos.quantity + price * qty
                pos.quantity += qty
                pos.avg_price = total_cost / pos.quantity
                pos.last_atr = atr
                if stop_price > pos.stop_price:
                    pos.stop_price = stop_price
                logger.info(
                    f"ADD {symbol}: +{qty} @ {price:.4f} -> qty={pos.quantity}, "
                    f"avg={pos.avg_price:.4f}, stop={pos.stop_price:.4f}"
                )
            return replace(pos)

    def reduce_sell(self, symbol: str, qty: int, price: float) -> float:
        """
        Apply a confirmed SELL fill.

        Realized P&L = (price - avg) * sold quantity. The average entry price is
        left untouched. A sell larger than the held quantity is clamped to the
        held quantity and closes the position.

        Returns:
            Realized P&L (0.0 when there is no position)
        """
        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None:
                logger.warning(f"Attempted to sell {qty} {symbol} with no position")
                return 0.0

            sold = qty
            if qty > pos.quantity:
                logger.warning(
                    f"Oversell on {symbol}: sell qty={qty} > held qty={pos.quantity}, "
                    f"clamping to held quantity"
                )
                sold = pos.quantity

            realized_pnl = (price - pos.avg_price) * sold
            pos.quantity -= sold

            if pos.quantity <= 0:
                del self._positions[symbol]
                logger.info(f"CLOSE {symbol}: sold {sold} @ {price:.4f}, pnl={realized_pnl:+.2f}")
            else:
                logger.info(
                    f"REDUCE {symbol}: sold {sold} @ {price:.4f}, remaining={pos.quantity}, "
                    f"pnl={realized_pnl:+.2f}"
                )
            return realized_pnl

    def close(self, symbol: str) -> Optional[Position]:
        """Unconditionally remove a position (forced stop-loss exit path)."""
        with self._lock:
            pos = self._positions.pop(symbol, None)
        if pos is not None:
            logger.info(f"CLOSE {symbol}: forced exit of qty={pos.quantity}")
        return pos

    def update_trailing_stop(self, symbol: str, new_stop: float, atr: float) -> bool:
        """
        Refresh ATR and raise the stop if new_stop exceeds the current stop.

        Returns:
            True if the stop moved
        """
        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None or pos.quantity <= 0:
                return False

            pos.last_atr = atr
            if new_stop > pos.stop_price:
                old_stop = pos.stop_price
                pos.stop_price = new_stop
                logger.debug(f"TRAIL {symbol}: stop {old_stop:.4f} -> {new_stop:.4f}")
                return True
            return False
