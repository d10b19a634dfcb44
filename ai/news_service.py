"""
News sentiment service with a TTL cache.

Wraps a pluggable fetcher (symbol -> NewsSentiment). Fresh results are cached
for `cache_ttl` seconds; a daemon thread sweeps expired entries. Fetch errors
never reach the engine: they degrade to a NEUTRAL zero-confidence result.
"""

import importlib
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from core.deadline import CycleDeadline
from core.interfaces import NewsService
from core.models import NewsSentiment

logger = logging.getLogger(__name__)

SentimentFetcher = Callable[[str], NewsSentiment]


class ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers > 0:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class SentimentCache:
    """Symbol -> (sentiment, stored_at) with TTL expiry."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._data: Dict[str, Tuple[NewsSentiment, float]] = {}

    def get(self, symbol: str) -> Optional[NewsSentiment]:
        self._lock.acquire_read()
        try:
            entry = self._data.get(symbol)
        finally:
            self._lock.release_read()
        if entry is None:
            return None
        sentiment, stored_at = entry
        if self._clock() - stored_at > self.ttl:
            return None
        return sentiment

    def set(self, symbol: str, sentiment: NewsSentiment) -> None:
        self._lock.acquire_write()
        try:
            self._data[symbol] = (sentiment, self._clock())
        finally:
            self._lock.release_write()

    def sweep(self) -> int:
        """Drop expired entries, returns how many were removed."""
        now = self._clock()
        self._lock.acquire_write()
        try:
            expired = [s for s, (_, ts) in self._data.items() if now - ts > self.ttl]
            for symbol in expired:
                del self._data[symbol]
        finally:
            self._lock.release_write()
        return len(expired)

    def clear(self) -> None:
        self._lock.acquire_write()
        try:
            self._data.clear()
        finally:
            self._lock.release_write()

    def symbols(self) -> List[str]:
        self._lock.acquire_read()
        try:
            return sorted(self._data)
        finally:
            self._lock.release_read()


class NewsSentimentService(NewsService):
    """
    Cached sentiment lookups for the decision context.

    Disabled service answers NEUTRAL immediately without touching the fetcher.
    """

    def __init__(self,
                 fetcher: Optional[SentimentFetcher],
                 enabled: bool = True,
                 cache_ttl: float = 3600.0,
                 sweep_interval: float = 600.0,
                 start_sweeper: bool = True):
        self.fetcher = fetcher
        self.enabled = enabled and fetcher is not None
        self.cache = SentimentCache(cache_ttl)
        self.sweep_interval = sweep_interval

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if self.enabled and start_sweeper:
            self._sweeper = threading.Thread(
                target=self._sweep_loop, name="sentiment-cache-sweeper", daemon=True
            )
            self._sweeper.start()

        logger.info(
            f"Initialized NewsSentimentService: enabled={self.enabled}, "
            f"ttl={cache_ttl:.0f}s, sweep={sweep_interval:.0f}s"
        )

    def get_sentiment(self, symbol: str,
                      deadline: Optional[CycleDeadline] = None) -> NewsSentiment:
        if not self.enabled:
            return NewsSentiment(
                symbol=symbol,
                summary="Sentiment analysis disabled",
                timestamp=time.time(),
            )

        cached = self.cache.get(symbol)
        if cached is not None:
            logger.debug(f"Using cached sentiment for {symbol}")
            return cached

        logger.info(f"Fetching fresh news sentiment for {symbol}")
        try:
            if deadline is not None:
                deadline.check("sentiment fetch")
            sentiment = self.fetcher(symbol)
        except Exception as e:
            logger.error(f"Failed to fetch sentiment for {symbol}: {e}")
            return NewsSentiment(
                symbol=symbol,
                summary=f"Failed to fetch sentiment: {e}",
                confidence=0.0,
                timestamp=time.time(),
            )

        self.cache.set(symbol, sentiment)
        return sentiment

    def refresh_sentiment(self, symbol: str) -> NewsSentiment:
        """Bypass the cache. Fetch errors propagate."""
        sentiment = self.fetcher(symbol)
        self.cache.set(symbol, sentiment)
        return sentiment

    def clear_cache(self) -> None:
        self.cache.clear()

    def cached_symbols(self) -> List[str]:
        return self.cache.symbols()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            removed = self.cache.sweep()
            if removed:
                logger.debug(f"Swept {removed} expired sentiment entries")


def load_fetcher(spec: str) -> SentimentFetcher:
    """Resolve a "package.module:callable" reference."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid fetcher reference '{spec}', expected 'module:callable'")
    module = importlib.import_module(module_name)
    fetcher = getattr(module, attr)
    if not callable(fetcher):
        raise ValueError(f"Fetcher '{spec}' is not callable")
    return fetcher
