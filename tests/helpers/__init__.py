"""Test helpers for steptrader test suite"""

from tests.helpers.engine_stubs import (
    StubBroker,
    ScriptedDecider,
    StaticNews,
    make_candles,
    flat_candles,
    with_last_close,
    build_config,
)

__all__ = [
    "StubBroker",
    "ScriptedDecider",
    "StaticNews",
    "make_candles",
    "flat_candles",
    "with_last_close",
    "build_config",
]
