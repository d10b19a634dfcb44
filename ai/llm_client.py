"""
LLM Decider - BUY/SELL/HOLD decisions from an LLM.

This module provides structured communication with LLMs to get a single trade
decision per cycle, enforcing a JSON shape, numeric bounds, and error surfacing.
"""

import json
import logging
import os
import time
from dataclasses import asdict
from typing import Any, Dict, List, Literal, Optional

from core.deadline import CycleDeadline
from core.exceptions import OracleError
from core.interfaces import Decider
from core.models import ACTIONS, Candle, Decision, Indicators

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a disciplined equities trader. Output STRICT JSON with BUY/SELL/HOLD."
)

DEFAULT_SCHEMA = (
    '{"action": "BUY|SELL|HOLD", "confidence": 0.0-1.0, '
    '"reason": "short justification", "qty": 0}'
)

UNPARSABLE_REASON = "unable_to_parse_llm_output"

# ─── Parsing ───────────────────────────────────────────────────────────────


def normalize_decision(data: Dict[str, Any]) -> Decision:
    """
    Build a Decision from raw model JSON.

    - action uppercased; anything else than BUY/SELL/HOLD becomes HOLD
    - confidence outside [0, 1] becomes 0.0
    - negative or non-integer quantities become 0 (no override)
    """
    action = str(data.get("action", "HOLD")).strip().upper()
    if action not in ACTIONS:
        action = "HOLD"

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    if not 0.0 <= confidence <= 1.0:
        confidence = 0.0

    raw_qty = data.get("qty", data.get("quantity", 0))
    try:
        qty = int(raw_qty or 0)
    except (TypeError, ValueError):
        qty = 0
    qty = max(qty, 0)

    reason = str(data.get("reason") or data.get("rationale") or "")[:500]
    return Decision(action=action, confidence=confidence, reason=reason, quantity=qty)


def parse_decision_text(text: str) -> Decision:
    """
    Locate a JSON object in model output and turn it into a Decision.

    Tries, in order: the whole text, a ```json fenced block, the span from the
    first '{' to the last '}'. Unparsable output yields HOLD.
    """
    content = (text or "").strip()

    candidates = [content]
    if "```json" in content:
        candidates.append(content.split("```json", 1)[1].split("```", 1)[0])
    elif "```" in content:
        parts = content.split("```")
        if len(parts) >= 3:
            candidates.append(parts[1])
    start, end = content.find("{"), content.rfind("}")
    if start >= 0 and end > start:
        candidates.append(content[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate.strip())
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return normalize_decision(data)

    logger.warning(f"Could not parse LLM output as a decision: {content[:200]!r}")
    return Decision(action="HOLD", confidence=0.0, reason=UNPARSABLE_REASON)


# ─── LLM Decider ───────────────────────────────────────────────────────────

class LLMDecider(Decider):
    """
    Decision oracle backed by OpenAI or Anthropic.

    Responsibilities:
    - Build the prompt from system text, schema and the cycle state
    - Enforce JSON on the way back, clamp nonsense values
    - Raise OracleError on API failure (the engine aborts the cycle)
    """

    def __init__(
        self,
        provider: Literal["openai", "anthropic"],
        model: str,
        api_key: str,
        timeout_s: float = 20.0,
        max_tokens: int = 512,
        temperature: float = 0.2,
        system_prompt: str = "",
        schema: str = "",
        client: Any = None,
    ):
        self.provider = provider
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.schema = schema or DEFAULT_SCHEMA

        if client is not None:
            self.client = client
        elif provider == "openai":
            import openai
            self.client = openai.OpenAI(api_key=api_key, timeout=timeout_s)
        elif provider == "anthropic":
            import anthropic
            self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout_s)
        else:
            raise ValueError(f"Unknown provider: {provider}")

    def decide(self, symbol: str, latest: Candle, indicators: Indicators,
               context: Dict[str, Any],
               deadline: Optional[CycleDeadline] = None) -> Decision:
        timeout = deadline.timeout(self.timeout_s) if deadline else self.timeout_s
        user_msg = self.build_user_message(symbol, latest, indicators, context)

        start = time.perf_counter()
        try:
            if self.provider == "openai":
                text = self._call_openai(user_msg, timeout)
            else:
                text = self._call_anthropic(user_msg, timeout)
        except Exception as e:
            elapsed = time.perf_counter() - start
            logger.error(f"{self.provider} call failed for {symbol} after {elapsed * 1000:.1f}ms: {e}")
            raise OracleError(f"{self.provider} decide {symbol}", e) from e

        elapsed = time.perf_counter() - start
        decision = parse_decision_text(text)
        logger.info(
            f"{self.provider} decision for {symbol} in {elapsed * 1000:.1f}ms: "
            f"{decision.action} conf={decision.confidence:.2f}"
        )
        return decision

    def build_user_message(self, symbol: str, latest: Candle, indicators: Indicators,
                           context: Dict[str, Any]) -> str:
        """Schema + JSON state object the model sees."""
        state = {
            "symbol": symbol,
            "latest": asdict(latest),
            "indicators": indicators.snapshot(),
            "context": context,
        }
        state_json = json.dumps(state, default=str)
        return (
            f"Schema:{self.schema}\n"
            f"State:{state_json}\n\n"
            "Respond ONLY with compact JSON matching the schema."
        )

    def _call_openai(self, user_msg: str, timeout: float) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": user_msg},
            ],
            response_format={"type": "json_object"},
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    def _call_anthropic(self, user_msg: str, timeout: float) -> str:
        response = self.client.messages.create(
            model=self.model,
            system=self.system_prompt,
            messages=[{"role": "user", "content": user_msg}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=timeout,
        )
        return "".join(
            getattr(block, "text", "") for block in response.content
        )


# ─── Fallback / test deciders ──────────────────────────────────────────────

class NoopDecider(Decider):
    """Used when no LLM is configured: always HOLD with zero confidence."""

    def decide(self, symbol: str, latest: Candle, indicators: Indicators,
               context: Dict[str, Any],
               deadline: Optional[CycleDeadline] = None) -> Decision:
        logger.debug(f"Noop decider called for {symbol} - returning HOLD")
        return Decision(action="HOLD", confidence=0.0, reason="noop_decider_fallback")


class MockDecider(Decider):
    """Returns pre-configured decisions in order, repeating the last one."""

    def __init__(self, decisions: Optional[List[Decision]] = None):
        self.decisions = list(decisions or [])
        self.call_count = 0
        self.calls: List[Dict[str, Any]] = []

    def decide(self, symbol: str, latest: Candle, indicators: Indicators,
               context: Dict[str, Any],
               deadline: Optional[CycleDeadline] = None) -> Decision:
        self.call_count += 1
        self.calls.append({"symbol": symbol, "latest": latest, "context": context})
        if not self.decisions:
            return Decision(action="HOLD", reason="mock_decider_empty")
        index = min(self.call_count - 1, len(self.decisions) - 1)
        return self.decisions[index]


# ─── Factory ───────────────────────────────────────────────────────────────

_PROVIDERS = {
    "OPENAI": ("openai", ("OPENAI_API_KEY",)),
    "CLAUDE": ("anthropic", ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY")),
    "ANTHROPIC": ("anthropic", ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY")),
}


def create_decider(llm_config) -> Decider:
    """
    Factory for the configured decision oracle.

    Falls back to NoopDecider (always HOLD) when the provider is NOOP or its
    API key is missing from the environment.
    """
    provider_name = (llm_config.provider or "NOOP").upper()
    if provider_name not in _PROVIDERS:
        logger.warning("No LLM provider configured - using Noop decider (always HOLD)")
        return NoopDecider()

    provider, env_keys = _PROVIDERS[provider_name]
    api_key = next((os.getenv(k) for k in env_keys if os.getenv(k)), None)
    if not api_key:
        logger.warning(
            f"{provider_name} selected but none of {', '.join(env_keys)} is set - "
            "using Noop decider (always HOLD)"
        )
        return NoopDecider()

    return LLMDecider(
        provider=provider,
        model=llm_config.model,
        api_key=api_key,
        timeout_s=llm_config.timeout_seconds,
        max_tokens=llm_config.max_tokens,
        temperature=llm_config.temperature,
        system_prompt=llm_config.system,
        schema=llm_config.schema_,
    )
