"""
steptrader Core: Cycle Deadline

Cancellation/deadline token handed to every blocking collaborator call.
The engine checks it before candle fetch, oracle call and each order leg;
never between a confirmed fill and the position commit.
"""

import threading
import time
from typing import Optional

from core.exceptions import CycleCancelled


class CycleDeadline:
    """Cancellable token with an optional monotonic deadline."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self._cancelled = threading.Event()
        self._expires_at = (
            time.monotonic() + float(timeout_seconds)
            if timeout_seconds is not None and timeout_seconds > 0
            else None
        )

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry, None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def timeout(self, default: float) -> float:
        """Per-call timeout: the remaining budget capped at `default`."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def check(self, stage: str) -> None:
        if self.cancelled:
            raise CycleCancelled(f"cycle cancelled before {stage}")
        if self.expired:
            raise CycleCancelled(f"cycle deadline exceeded before {stage}")


def ensure_deadline(deadline: Optional[CycleDeadline]) -> CycleDeadline:
    """Unbounded token when the caller passes none."""
    return deadline if deadline is not None else CycleDeadline()
