"""
steptrader Core: Data Model

Value objects exchanged between the engine and its collaborators.
Position is the only mutable record and lives inside PositionManager;
everything handed to callers is a copy.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Action = Literal["BUY", "SELL", "HOLD"]
Side = Literal["BUY", "SELL"]

ACTIONS = ("BUY", "SELL", "HOLD")

# Order tags
TAG_LLM = "LLM"
TAG_STOP_LOSS = "SL"

# Audit reason for forced exits and the matching cycle reason
STOP_LOSS_REASON = "STOP_LOSS"
STOP_LOSS_TRIGGERED = "STOP_LOSS_TRIGGERED"


@dataclass
class Candle:
    """OHLCV bar, ts in epoch seconds"""
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass
class Indicators:
    """Indicator values derived from one candle window."""
    sma: Dict[int, float] = field(default_factory=dict)
    rsi: float = float("nan")
    bb_middle: float = float("nan")
    bb_upper: float = float("nan")
    bb_lower: float = float("nan")
    atr: float = float("nan")

    def snapshot(self) -> Dict[str, float]:
        """Flatten to the key set written with every decision record."""
        return {
            "RSI": self.rsi,
            "SMA20": self.sma.get(20, float("nan")),
            "SMA50": self.sma.get(50, float("nan")),
            "SMA200": self.sma.get(200, float("nan")),
            "BB_MID": self.bb_middle,
            "BB_UP": self.bb_upper,
            "BB_LOW": self.bb_lower,
            "ATR": self.atr,
        }


@dataclass
class Decision:
    """Oracle output for one cycle."""
    action: Action
    confidence: float = 0.0
    reason: str = ""
    quantity: int = 0  # 0 = no explicit override


@dataclass
class Position:
    """
    Open long position for a symbol.

    Exists only while quantity > 0. stop_price never decreases while the
    position lives; entry_time is fixed by the first buy.
    """
    symbol: str
    quantity: int
    avg_price: float
    stop_price: float
    last_atr: float
    entry_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.avg_price) * self.quantity


@dataclass
class OrderRequest:
    symbol: str
    side: Side
    quantity: int
    tag: str = TAG_LLM


@dataclass
class OrderResponse:
    order_id: str
    status: str = ""
    message: str = ""


@dataclass
class CycleEvent:
    """One stage outcome inside a cycle (ok/skipped/blocked/error/triggered/cancelled)."""
    stage: str
    outcome: str
    detail: str = ""


# Outcomes that surface in the human-readable reason trail
ANNOTATED_OUTCOMES = ("blocked", "error", "cancelled")


@dataclass
class StepResult:
    """Result of one engine cycle for a symbol."""
    symbol: str
    price: float
    time: int
    decision: Optional[Decision] = None
    orders: List[OrderResponse] = field(default_factory=list)
    events: List[CycleEvent] = field(default_factory=list)
    realized_pnl: float = 0.0
    base_reason: str = ""

    @property
    def reason(self) -> str:
        """Base reason followed by every blocked/error/cancelled annotation."""
        parts = [self.base_reason]
        for event in self.events:
            if event.outcome in ANNOTATED_OUTCOMES and event.detail:
                parts.append(event.detail)
        return " | ".join(parts)

    def events_with(self, outcome: str) -> List[CycleEvent]:
        return [e for e in self.events if e.outcome == outcome]

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload.pop("base_reason")
        payload["reason"] = self.reason
        return payload


@dataclass
class NewsSentiment:
    """Aggregated news sentiment for a symbol."""
    symbol: str
    overall_sentiment: str = "NEUTRAL"  # POSITIVE / NEGATIVE / NEUTRAL
    score: float = 0.0
    confidence: float = 0.0
    recommendation: str = ""
    summary: str = ""
    article_count: int = 0
    timestamp: float = 0.0

    def to_context(self) -> Dict[str, Any]:
        """Shape attached to the decision context."""
        return {
            "overall_sentiment": self.overall_sentiment,
            "score": self.score,
            "confidence": self.confidence,
            "recommendation": self.recommendation,
            "summary": self.summary,
            "article_count": self.article_count,
        }
