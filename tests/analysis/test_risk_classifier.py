import asyncio
import json
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from analysis.errors import MalformedReasoningResponse, ReasoningServiceFailure
from analysis.risk_classifier import (
    AIRiskStrategy,
    SYSTEM_PROMPT,
    build_decision_prompt,
    build_risk_strategy,
    parse_ai_decision,
)
from analysis.risk_rules import (
    RuleBasedRiskStrategy,
    STATE_AI_ATTEMPTED,
    STATE_AI_FAILED,
    STATE_AI_SUCCEEDED,
    STATE_DECIDED,
    STATE_FALLBACK_APPLIED,
    STATE_PENDING,
)


def _reply(decision='EXECUTE', reason="Healthy margin", confidence=0.82, **risk):
    analysis = {
        'gasRisk': 'low',
        'slippageRisk': 'low',
        'mevRisk': 'medium',
        'timingRisk': 'low',
        'profitMargin': 'safe',
    }
    analysis.update(risk)
    return json.dumps({
        'decision': decision,
        'reason': reason,
        'confidence': confidence,
        'riskAnalysis': analysis,
    })


class StubClient:
    configured = True

    def __init__(self, reply=None, delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.prompts = []

    async def complete(self, prompt, system_prompt=None):
        self.prompts.append((prompt, system_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


def _strategy(client, timeout=1.0):
    return AIRiskStrategy(client, RuleBasedRiskStrategy(), timeout=timeout)


def test_parse_ai_decision_valid_reply():
    decision = parse_ai_decision(_reply())
    assert decision.decision == 'EXECUTE'
    assert decision.reason == "Healthy margin"
    assert decision.confidence == 0.82
    assert decision.ratings == {
        'gas_risk': 'LOW',
        'slippage_risk': 'LOW',
        'mev_risk': 'MEDIUM',
        'timing_risk': 'LOW',
        'profit_margin': 'safe',
    }


def test_parse_ai_decision_tolerates_fences_and_prose():
    text = "Here is my analysis:\n```json\n" + _reply(decision='skip') + "\n```\nThanks."
    decision = parse_ai_decision(text)
    assert decision.decision == 'SKIP'


def test_parse_ai_decision_defaults_missing_confidence_and_ratings():
    decision = parse_ai_decision('{"decision": "SKIP", "reason": "Too risky"}')
    assert decision.confidence == 0.5
    assert decision.ratings == {}


@pytest.mark.parametrize("text", [
    "",
    "I think you should execute",
    "{not json}",
    "[1, 2]",
    _reply(decision='MAYBE'),
    _reply(confidence=1.2),
    _reply(confidence=-0.1),
    _reply(confidence="high"),
    _reply(confidence=True),
    _reply(reason=42),
    _reply(gasRisk='extreme'),
    _reply(profitMargin='huge'),
    '{"decision": "EXECUTE", "riskAnalysis": "fine"}',
])
def test_parse_ai_decision_rejects_malformed_replies(text):
    with pytest.raises(MalformedReasoningResponse):
        parse_ai_decision(text)


def test_build_decision_prompt_includes_figures(make_summary, make_context):
    prompt = build_decision_prompt(make_summary(gross=30.0, gas_usd=1.5), make_context(depth='medium'))
    assert "Gas Cost: $1.50 (5.0% of gross profit)" in prompt
    assert "Net Profit: $28.50" in prompt
    assert "Liquidity Depth: medium" in prompt
    assert "Destination Chain: arbitrum (block time 0.25s)" in prompt
    assert "volatility" not in prompt
    assert '"decision": "EXECUTE" or "SKIP"' in prompt


@pytest.mark.asyncio
async def test_ai_decision_is_used_when_valid(make_summary, make_context):
    client = StubClient(_reply(decision='SKIP', reason="Gas may spike", confidence=0.7))
    assessment = await _strategy(client).assess(make_summary(gross=30.0, gas_usd=1.0), make_context())

    assert assessment.source == 'ai'
    assert assessment.decision == 'SKIP'
    assert assessment.reason == "Gas may spike"
    assert assessment.confidence == 0.7
    assert assessment.ratings.mev_risk == 'MEDIUM'
    assert assessment.fallback_reason is None
    assert assessment.states == (STATE_PENDING, STATE_AI_ATTEMPTED, STATE_AI_SUCCEEDED, STATE_DECIDED)
    assert client.prompts[0][1] == SYSTEM_PROMPT


@pytest.mark.asyncio
async def test_missing_ai_ratings_are_filled_from_rules(make_summary, make_context):
    client = StubClient('{"decision": "EXECUTE", "reason": "ok", "riskAnalysis": {"gasRisk": "medium"}}')
    assessment = await _strategy(client).assess(make_summary(gross=30.0, gas_usd=1.0), make_context())

    assert assessment.ratings.gas_risk == 'MEDIUM'
    assert assessment.ratings.timing_risk == 'LOW'
    assert assessment.ratings.profit_margin == 'safe'
    assert assessment.confidence == 0.5


@pytest.mark.asyncio
async def test_timeout_falls_back_within_bound(make_summary, make_context):
    client = StubClient(_reply(), delay=5.0)
    started = time.monotonic()
    assessment = await _strategy(client, timeout=0.05).assess(make_summary(gross=30.0, gas_usd=1.0), make_context())

    assert time.monotonic() - started < 1.0
    assert assessment.source == 'rules'
    assert assessment.decision == 'EXECUTE'
    assert assessment.fallback_reason == "reasoning service timed out after 0.05s"
    assert assessment.states == (
        STATE_PENDING, STATE_AI_ATTEMPTED, STATE_AI_FAILED, STATE_FALLBACK_APPLIED, STATE_DECIDED,
    )


@pytest.mark.asyncio
async def test_service_failure_falls_back(make_summary, make_context):
    client = StubClient(error=ReasoningServiceFailure("Gemini API response was empty"))
    assessment = await _strategy(client).assess(make_summary(gross=2.0, gas_usd=0.4, fees_usd=0.1), make_context())

    assert assessment.source == 'rules'
    assert assessment.decision == 'SKIP'
    assert assessment.fallback_reason == "Gemini API response was empty"


@pytest.mark.asyncio
async def test_malformed_reply_falls_back(make_summary, make_context):
    client = StubClient(_reply(confidence=7))
    assessment = await _strategy(client).assess(make_summary(gross=30.0, gas_usd=1.0), make_context())

    assert assessment.source == 'rules'
    assert "confidence out of range" in assessment.fallback_reason
    assert STATE_AI_FAILED in assessment.states


@pytest.mark.asyncio
async def test_unexpected_client_error_falls_back(make_summary, make_context):
    client = SimpleNamespace(configured=True, complete=AsyncMock(side_effect=KeyError('candidates')))
    assessment = await _strategy(client).assess(make_summary(gross=30.0, gas_usd=1.0), make_context())

    assert assessment.source == 'rules'
    assert assessment.fallback_reason.startswith("unexpected error: KeyError")


@pytest.mark.asyncio
async def test_profit_floor_overrides_ai_execute(make_summary, make_context):
    client = StubClient(_reply(decision='EXECUTE', confidence=0.99))
    summary = make_summary(gross=1.0, gas_usd=0.5, fees_usd=0.8)
    assessment = await _strategy(client).assess(summary, make_context())

    assert assessment.decision == 'SKIP'
    assert assessment.source == 'rules'
    assert assessment.reason == "Net profit is negative or zero after all costs"
    assert assessment.fallback_reason == "AI decision overridden by profit floor"
    assert assessment.states == (
        STATE_PENDING, STATE_AI_ATTEMPTED, STATE_AI_SUCCEEDED, STATE_FALLBACK_APPLIED, STATE_DECIDED,
    )


@pytest.mark.asyncio
async def test_stricter_ai_skip_is_kept_for_unprofitable_trade(make_summary, make_context):
    client = StubClient(_reply(decision='SKIP', reason="Loses money"))
    assessment = await _strategy(client).assess(make_summary(gross=1.0, gas_usd=0.5, fees_usd=0.8), make_context())

    assert assessment.source == 'ai'
    assert assessment.decision == 'SKIP'
    assert assessment.reason == "Loses money"


def _config(**overrides):
    values = dict(
        ai_analysis_enabled=True,
        ai_timeout=3.0,
        min_net_profit=2.0,
        safe_net_profit=10.0,
        max_spread=5.0,
        low_liquidity_max_amount=0.05,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_build_risk_strategy_uses_ai_when_configured():
    strategy = build_risk_strategy(_config(), StubClient())
    assert isinstance(strategy, AIRiskStrategy)
    assert strategy.timeout == 3.0


def test_build_risk_strategy_uses_rules_when_disabled():
    strategy = build_risk_strategy(_config(ai_analysis_enabled=False), StubClient())
    assert isinstance(strategy, RuleBasedRiskStrategy)


def test_build_risk_strategy_uses_rules_without_credentials():
    assert isinstance(build_risk_strategy(_config(), None), RuleBasedRiskStrategy)
    unconfigured = SimpleNamespace(configured=False)
    assert isinstance(build_risk_strategy(_config(), unconfigured), RuleBasedRiskStrategy)


def test_build_risk_strategy_applies_configured_thresholds():
    strategy = build_risk_strategy(_config(ai_analysis_enabled=False, min_net_profit=5.0, max_spread=3.0))
    assert strategy.policy.min_net_profit_usd == 5.0
    assert strategy.policy.max_spread_pct == 3.0
