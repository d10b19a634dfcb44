"""
steptrader Core: Paper Broker

Broker implementation for DRY_RUN mode. Candles come from CSV files
(<data_dir>/<SYMBOL>.csv with ts,open,high,low,close,volume) or are
injected in memory; market orders fill immediately at the last close.
"""

import csv
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from core.deadline import CycleDeadline
from core.interfaces import Broker
from core.models import Candle, OrderRequest, OrderResponse

logger = logging.getLogger(__name__)


def _parse_ts(raw: str) -> int:
    """Epoch seconds or ISO-8601 timestamp."""
    raw = raw.strip()
    try:
        return int(float(raw))
    except ValueError:
        return int(datetime.fromisoformat(raw).timestamp())


class PaperBroker(Broker):
    """
    Simulated broker with instant fills.

    Order history is kept for inspection; `read_only` blocks order placement.
    """

    def __init__(self, data_dir: Optional[str] = None,
                 candles: Optional[Dict[str, List[Candle]]] = None,
                 read_only: bool = False):
        self.data_dir = Path(data_dir) if data_dir else None
        self.read_only = read_only
        self._candles: Dict[str, List[Candle]] = {k: list(v) for k, v in (candles or {}).items()}
        self._lock = threading.Lock()
        self.order_history: List[Dict] = []

        logger.info(f"PaperBroker initialized: data_dir={self.data_dir}, read_only={read_only}")

    def set_candles(self, symbol: str, candles: List[Candle]) -> None:
        with self._lock:
            self._candles[symbol] = sorted(candles, key=lambda c: c.ts)

    def recent_candles(self, symbol: str, count: int,
                       deadline: Optional[CycleDeadline] = None) -> List[Candle]:
        with self._lock:
            candles = self._candles.get(symbol)
        if candles is None:
            candles = self._load_csv(symbol)
            with self._lock:
                self._candles[symbol] = candles
        return list(candles[-count:]) if count > 0 else []

    def place_order(self, request: OrderRequest,
                    deadline: Optional[CycleDeadline] = None) -> OrderResponse:
        if self.read_only:
            raise RuntimeError(f"Read-only mode: {request.side} {request.symbol} blocked")
        if request.quantity <= 0:
            raise ValueError(f"Invalid quantity {request.quantity} for {request.symbol}")

        with self._lock:
            candles = self._candles.get(request.symbol) or []
        if not candles:
            raise RuntimeError(f"No price available for {request.symbol}")
        fill_price = candles[-1].close

        order_id = f"paper-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self.order_history.append({
                "order_id": order_id,
                "symbol": request.symbol,
                "side": request.side,
                "quantity": request.quantity,
                "tag": request.tag,
                "price": fill_price,
            })
        logger.info(
            f"Paper fill {request.side} {request.symbol}: qty={request.quantity} "
            f"@ {fill_price:.4f} ({order_id})"
        )
        return OrderResponse(order_id=order_id, status="COMPLETE", message="paper fill")

    def _load_csv(self, symbol: str) -> List[Candle]:
        if self.data_dir is None:
            raise FileNotFoundError(f"No candles for {symbol} and no data_dir configured")
        csv_path = self.data_dir / f"{symbol}.csv"
        if not csv_path.exists():
            raise FileNotFoundError(f"CSV file not found: {csv_path}")

        candles = []
        with open(csv_path, "r", newline="") as f:
            for row in csv.DictReader(f):
                candles.append(Candle(
                    ts=_parse_ts(row["ts"]),
                    open=float(row["open"]),
                    high=float(row["high"]),
                    low=float(row["low"]),
                    close=float(row["close"]),
                    volume=float(row.get("volume") or 0.0),
                ))
        candles.sort(key=lambda c: c.ts)
        logger.debug(f"Loaded {len(candles)} candles for {symbol} from {csv_path}")
        return candles
