"""
Technical indicators over a candle window.

Pure functions; insufficient data yields NaN rather than raising.
"""

import math
from typing import Iterable, List, Sequence

from core.models import Candle, Indicators

NAN = float("nan")


def sma(closes: Sequence[float], n: int) -> float:
    if n <= 0 or len(closes) < n:
        return NAN
    return sum(closes[-n:]) / n


def rsi(closes: Sequence[float], period: int) -> float:
    """Simple-average RSI over the last `period` changes."""
    if period <= 0 or len(closes) < period + 1:
        return NAN
    gain = loss = 0.0
    for i in range(len(closes) - period, len(closes)):
        delta = closes[i] - closes[i - 1]
        if delta > 0:
            gain += delta
        else:
            loss -= delta
    if loss == 0:
        return 100.0
    rs = (gain / period) / (loss / period)
    return 100.0 - (100.0 / (1.0 + rs))


def stddev(values: Sequence[float], n: int) -> float:
    """Population standard deviation of the last n values."""
    if n <= 0 or len(values) < n:
        return NAN
    mean = sma(values, n)
    return math.sqrt(sum((v - mean) ** 2 for v in values[-n:]) / n)


def bollinger(closes: Sequence[float], n: int, k: float):
    """(middle, upper, lower)"""
    mid = sma(closes, n)
    sd = stddev(closes, n)
    return mid, mid + k * sd, mid - k * sd


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int) -> float:
    """Simple mean of the last `period` true ranges."""
    if not (len(highs) == len(lows) == len(closes)):
        return NAN
    if period <= 0 or len(closes) < period + 1:
        return NAN
    total = 0.0
    for i in range(len(closes) - period, len(closes)):
        total += max(
            highs[i] - lows[i],
            abs(highs[i] - closes[i - 1]),
            abs(lows[i] - closes[i - 1]),
        )
    return total / period


def calculate_indicators(candles: List[Candle], sma_windows: Iterable[int] = (20, 50, 200),
                         rsi_period: int = 14, bb_window: int = 20, bb_stddev: float = 2.0,
                         atr_period: int = 14) -> Indicators:
    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]

    middle, upper, lower = bollinger(closes, bb_window, bb_stddev)
    return Indicators(
        sma={w: sma(closes, w) for w in sma_windows},
        rsi=rsi(closes, rsi_period),
        bb_middle=middle,
        bb_upper=upper,
        bb_lower=lower,
        atr=atr(highs, lows, closes, atr_period),
    )
