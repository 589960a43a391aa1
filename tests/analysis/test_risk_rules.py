import pytest

from analysis.risk_rules import (
    RiskPolicy,
    RuleBasedRiskStrategy,
    STATE_DECIDED,
    STATE_PENDING,
    score_risks,
)


@pytest.fixture
def rules():
    return RuleBasedRiskStrategy()


def test_score_risks_low_across_the_board(make_summary, make_context):
    ratings = score_risks(make_summary(gross=30.0, gas_usd=1.0), make_context())
    assert ratings.gas_risk == 'LOW'
    assert ratings.slippage_risk == 'LOW'
    assert ratings.mev_risk == 'LOW'
    assert ratings.timing_risk == 'LOW'
    assert ratings.profit_margin == 'safe'


def test_score_risks_treats_non_positive_gross_as_worst_case(make_summary, make_context):
    ratings = score_risks(make_summary(gross=0.0, gas_usd=0.01), make_context())
    assert ratings.gas_risk == 'HIGH'
    assert ratings.slippage_risk == 'MEDIUM'
    assert ratings.timing_risk == 'HIGH'
    assert ratings.profit_margin == 'thin'


def test_score_risks_medium_bands(make_summary, make_context):
    # gas/gross = 0.4, slippage/gross = 0.3, slippage > $2 with net < $10
    ratings = score_risks(make_summary(gross=10.0, gas_usd=4.0, slippage_usd=3.0), make_context())
    assert ratings.gas_risk == 'MEDIUM'
    assert ratings.slippage_risk == 'MEDIUM'
    assert ratings.mev_risk == 'MEDIUM'
    assert ratings.timing_risk == 'HIGH'


def test_score_risks_low_liquidity_raises_slippage_and_mev(make_summary, make_context):
    ratings = score_risks(make_summary(gross=20.0, gas_usd=0.5, slippage_usd=1.5), make_context(depth='low', amount=0.5))
    assert ratings.slippage_risk == 'HIGH'
    assert ratings.mev_risk == 'HIGH'


@pytest.mark.parametrize("depth", ['low', 'medium', 'high'])
def test_non_positive_net_always_skips(rules, make_summary, make_context, depth):
    summary = make_summary(gross=1.0, gas_usd=0.2, fees_usd=1.0)
    decision, reason, confidence = rules.decide(summary, make_context(depth=depth), rules.score(summary, make_context(depth=depth)))
    assert decision == 'SKIP'
    assert reason == "Net profit is negative or zero after all costs"
    assert confidence == 0.95


def test_gas_dominating_gross_profit_skips(rules, make_summary, make_context):
    assessment = rules.evaluate(make_summary(gross=10.0, gas_usd=6.0), make_context())
    assert assessment.decision == 'SKIP'
    assert assessment.confidence == 0.90
    assert assessment.reason == "Gas cost is 60% of gross profit - too risky"


def test_thin_margin_with_high_execution_risk_skips(rules, make_summary, make_context):
    assessment = rules.evaluate(make_summary(gross=3.0, gas_usd=0.2, slippage_usd=1.5), make_context(depth='low', amount=0.01))
    assert assessment.decision == 'SKIP'
    assert assessment.confidence == 0.85
    assert assessment.reason == "Profit margin too thin relative to execution risks"


def test_net_below_minimum_skips(rules, make_summary, make_context):
    # net $1.50, gas/gross 0.2, deep pool
    summary = make_summary(gross=2.0, gas_usd=0.4, fees_usd=0.1)
    assert summary.net_profit_usd == pytest.approx(1.5)

    assessment = rules.evaluate(summary, make_context(depth='high'))
    assert assessment.decision == 'SKIP'
    assert assessment.confidence == 0.80
    assert assessment.reason == "Net profit of $1.50 below $2 safety threshold"


def test_net_exactly_at_minimum_passes(rules, make_summary, make_context):
    summary = make_summary(gross=3.0, gas_usd=0.5, fees_usd=0.5)
    assert summary.net_profit_usd == 2.0

    assessment = rules.evaluate(summary, make_context())
    assert assessment.decision == 'EXECUTE'
    assert assessment.ratings.profit_margin == 'acceptable'
    assert assessment.confidence == 0.75


def test_anomalous_spread_skips(rules, make_summary, make_context):
    assessment = rules.evaluate(make_summary(gross=30.0, gas_usd=1.0, spread=6.0), make_context())
    assert assessment.decision == 'SKIP'
    assert assessment.confidence == 0.75
    assert "anomalous" in assessment.reason


def test_large_trade_in_low_liquidity_skips(rules, make_summary, make_context):
    assessment = rules.evaluate(make_summary(gross=20.0, gas_usd=1.0), make_context(depth='low', amount=1.0))
    assert assessment.decision == 'SKIP'
    assert assessment.confidence == 0.80
    assert assessment.reason == "Trade size too large for low liquidity pool - high MEV risk"


def test_safe_margin_executes_with_high_confidence(rules, make_summary, make_context):
    assessment = rules.evaluate(make_summary(gross=30.0, gas_usd=1.0), make_context())
    assert assessment.decision == 'EXECUTE'
    assert assessment.should_execute
    assert assessment.confidence == 0.90
    assert assessment.reason == "Net profit $29.00 with safe margin and manageable risks"


def test_policy_thresholds_are_configurable(make_summary, make_context):
    rules = RuleBasedRiskStrategy(RiskPolicy(min_net_profit_usd=1.0))
    assessment = rules.evaluate(make_summary(gross=2.0, gas_usd=0.4, fees_usd=0.1), make_context())
    assert assessment.decision == 'EXECUTE'
    assert assessment.ratings.profit_margin == 'acceptable'


@pytest.mark.asyncio
async def test_assess_reports_rule_source_and_states(rules, make_summary, make_context):
    assessment = await rules.assess(make_summary(gross=30.0, gas_usd=1.0), make_context())
    assert assessment.source == 'rules'
    assert assessment.fallback_reason is None
    assert assessment.states == (STATE_PENDING, STATE_DECIDED)
