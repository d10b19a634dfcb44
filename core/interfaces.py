"""
Collaborator contracts consumed by the trading engine.

Broker, decision oracle and news service are external; the engine only
depends on these abstract interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.deadline import CycleDeadline
from core.models import Candle, Decision, Indicators, NewsSentiment, OrderRequest, OrderResponse


class Broker(ABC):
    """Market data + order placement."""

    @abstractmethod
    def recent_candles(self, symbol: str, count: int,
                       deadline: Optional[CycleDeadline] = None) -> List[Candle]:
        """
        Return up to `count` most recent bars in ascending time order.

        Raises:
            Exception: On any retrieval failure (wrapped into FetchError by the engine)
        """

    @abstractmethod
    def place_order(self, request: OrderRequest,
                    deadline: Optional[CycleDeadline] = None) -> OrderResponse:
        """
        Submit a market order. A returned response means the fill is confirmed.

        Raises:
            Exception: On rejection or transport failure
        """


class Decider(ABC):
    """Decision oracle (LLM or otherwise)."""

    @abstractmethod
    def decide(self, symbol: str, latest: Candle, indicators: Indicators,
               context: Dict[str, Any],
               deadline: Optional[CycleDeadline] = None) -> Decision:
        pass


class NewsService(ABC):
    """Optional sentiment enrichment."""

    @abstractmethod
    def get_sentiment(self, symbol: str,
                      deadline: Optional[CycleDeadline] = None) -> NewsSentiment:
        pass
