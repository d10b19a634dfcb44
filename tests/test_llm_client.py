"""LLM decider parsing, provider calls and factory fallbacks."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from ai.llm_client import (
    LLMDecider,
    MockDecider,
    NoopDecider,
    UNPARSABLE_REASON,
    create_decider,
    normalize_decision,
    parse_decision_text,
)
from core.deadline import CycleDeadline
from core.exceptions import OracleError
from core.models import Candle, Decision, Indicators
from tools.config_validator import LLMConfig

LATEST = Candle(ts=1_700_000_000, open=100.0, high=101.0, low=99.0, close=100.5, volume=10.0)
INDS = Indicators(sma={20: 100.0}, rsi=55.0, atr=1.2)


# ------------------------------------------------------------------ parsing


def test_parse_plain_json():
    d = parse_decision_text('{"action": "buy", "confidence": 0.8, "reason": "trend", "qty": 3}')

    assert d == Decision(action="BUY", confidence=0.8, reason="trend", quantity=3)


def test_parse_fenced_json():
    text = 'Sure!\n```json\n{"action": "SELL", "confidence": 0.6, "reason": "overbought"}\n```'

    d = parse_decision_text(text)

    assert d.action == "SELL"
    assert d.reason == "overbought"


def test_parse_embedded_object():
    d = parse_decision_text('Decision: {"action": "HOLD", "confidence": 0.5, "reason": "chop"} thanks')

    assert d.action == "HOLD"
    assert d.confidence == 0.5


def test_unparsable_output_holds():
    d = parse_decision_text("I think you should buy")

    assert d.action == "HOLD"
    assert d.confidence == 0.0
    assert d.reason == UNPARSABLE_REASON


@pytest.mark.parametrize("raw,expected", [
    ({"action": "short"}, "HOLD"),
    ({"action": " sell "}, "SELL"),
    ({}, "HOLD"),
])
def test_action_normalization(raw, expected):
    assert normalize_decision(raw).action == expected


@pytest.mark.parametrize("confidence", [1.5, -0.1, "high"])
def test_out_of_range_confidence_zeroed(confidence):
    assert normalize_decision({"action": "BUY", "confidence": confidence}).confidence == 0.0


def test_quantity_aliases_and_negative():
    assert normalize_decision({"action": "BUY", "quantity": 4}).quantity == 4
    assert normalize_decision({"action": "BUY", "qty": -2}).quantity == 0
    assert normalize_decision({"action": "BUY", "qty": "lots"}).quantity == 0


# ---------------------------------------------------------------- providers


def _openai_client(content):
    client = MagicMock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )
    return client


def _anthropic_client(text):
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(content=[SimpleNamespace(text=text)])
    return client


def test_openai_decide_sends_state_and_parses():
    client = _openai_client('{"action": "BUY", "confidence": 0.9, "reason": "momentum"}')
    decider = LLMDecider("openai", "gpt-test", api_key="k", client=client, timeout_s=15)

    decision = decider.decide("ABC", LATEST, INDS, {"price": 100.5})

    assert decision.action == "BUY"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["timeout"] == 15
    user_msg = kwargs["messages"][1]["content"]
    state = json.loads(user_msg.split("State:", 1)[1].split("\n", 1)[0])
    assert state["symbol"] == "ABC"
    assert state["context"]["price"] == 100.5
    assert state["indicators"]["RSI"] == 55.0


def test_anthropic_decide():
    client = _anthropic_client('{"action": "SELL", "confidence": 0.7, "reason": "fade"}')
    decider = LLMDecider("anthropic", "claude-test", api_key="k", client=client,
                         system_prompt="be careful")

    decision = decider.decide("ABC", LATEST, INDS, {})

    assert decision.action == "SELL"
    assert client.messages.create.call_args.kwargs["system"] == "be careful"


def test_timeout_capped_by_deadline():
    client = _openai_client('{"action": "HOLD"}')
    decider = LLMDecider("openai", "m", api_key="k", client=client, timeout_s=30)

    decider.decide("ABC", LATEST, INDS, {}, deadline=CycleDeadline(5))

    assert client.chat.completions.create.call_args.kwargs["timeout"] <= 5


def test_sdk_failure_raises_oracle_error():
    client = MagicMock()
    client.chat.completions.create.side_effect = ConnectionError("boom")
    decider = LLMDecider("openai", "m", api_key="k", client=client)

    with pytest.raises(OracleError):
        decider.decide("ABC", LATEST, INDS, {})


def test_unknown_provider_rejected():
    with pytest.raises(ValueError):
        LLMDecider("mistral", "m", api_key="k")


# ---------------------------------------------------------- fallbacks/factory


def test_noop_decider_holds():
    d = NoopDecider().decide("ABC", LATEST, INDS, {})

    assert d == Decision(action="HOLD", confidence=0.0, reason="noop_decider_fallback")


def test_mock_decider_repeats_last():
    mock = MockDecider([Decision(action="BUY"), Decision(action="SELL")])

    actions = [mock.decide("ABC", LATEST, INDS, {}).action for _ in range(3)]

    assert actions == ["BUY", "SELL", "SELL"]
    assert mock.call_count == 3


def test_factory_noop_provider():
    assert isinstance(create_decider(LLMConfig(provider="NOOP")), NoopDecider)


def test_factory_missing_key_falls_back(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert isinstance(create_decider(LLMConfig(provider="OPENAI", model="m")), NoopDecider)


def test_factory_builds_llm_decider(monkeypatch):
    monkeypatch.setenv("CLAUDE_API_KEY", "secret")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    fake_client = MagicMock()
    monkeypatch.setattr("anthropic.Anthropic", lambda **kwargs: fake_client)

    decider = create_decider(LLMConfig(provider="CLAUDE", model="claude-test", schema="{}"))

    assert isinstance(decider, LLMDecider)
    assert decider.provider == "anthropic"
    assert decider.schema == "{}"
    assert decider.client is fake_client
