"""Cycle deadline / cancellation token."""

import time

import pytest

from core.deadline import CycleDeadline, ensure_deadline
from core.exceptions import CycleCancelled


def test_unbounded_deadline_never_expires():
    deadline = CycleDeadline()

    assert deadline.remaining() is None
    assert deadline.timeout(20.0) == 20.0
    deadline.check("anything")


def test_cancel_trips_check():
    deadline = CycleDeadline(60)
    deadline.cancel()

    assert deadline.cancelled
    with pytest.raises(CycleCancelled, match="before order"):
        deadline.check("order")


def test_expiry_trips_check():
    deadline = CycleDeadline(0.01)
    time.sleep(0.05)

    assert deadline.expired
    assert deadline.remaining() == 0.0
    with pytest.raises(CycleCancelled, match="deadline exceeded"):
        deadline.check("decision")


def test_timeout_capped_by_remaining():
    deadline = CycleDeadline(2.0)

    assert deadline.timeout(30.0) <= 2.0
    assert deadline.timeout(0.5) == 0.5


def test_ensure_deadline():
    existing = CycleDeadline(1)

    assert ensure_deadline(existing) is existing
    assert isinstance(ensure_deadline(None), CycleDeadline)
