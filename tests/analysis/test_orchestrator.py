import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from analysis.cost_model import CostModel, CostModelConfig
from analysis.errors import UpstreamUnavailable
from analysis.models import TradeRequest
from analysis.orchestrator import DecisionOrchestrator
from analysis.profit_aggregator import ProfitAggregator
from analysis.risk_classifier import AIRiskStrategy
from analysis.risk_rules import RuleBasedRiskStrategy, STATE_AI_FAILED
from services.market_data import StaticMarketData, StaticMarketDataSource

NO_MEV = CostModelConfig(mev_base_priority_fee_gwei=0.0, mev_priority_fee_cap_gwei=0.0, builder_tip_rate=0.0)

QUIET_MARKET = StaticMarketData(
    native_price_usd=1000.0,
    origin_gas_price_wei=1,
    destination_gas_price_wei=1,
    amm_slippage_pct=0.0,
    liquidity_depth='low',
    bridge_lp_fee_pct=0.0,
    bridge_relayer_gas_fee_pct=0.0,
    bridge_relayer_capital_fee_pct=0.0,
)


def _orchestrator(data=StaticMarketData(), strategy=None, cost_config=CostModelConfig()):
    source = StaticMarketDataSource(data)
    aggregator = ProfitAggregator(CostModel(cost_config), source, source, source, source)
    return DecisionOrchestrator(aggregator, strategy or RuleBasedRiskStrategy())


class RecordingStrategy(RuleBasedRiskStrategy):
    def __init__(self):
        super().__init__()
        self.contexts = []

    async def assess(self, summary, context):
        self.contexts.append(context)
        return await super().assess(summary, context)


class SleepyClient:
    configured = True

    async def complete(self, prompt, system_prompt=None):
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_unprofitable_default_trade_is_skipped():
    result = await _orchestrator().decide(TradeRequest.from_inputs("0.01", 2900, 2950))

    assert result.summary.net_profit_usd < 0
    assert result.assessment.decision == 'SKIP'
    assert result.assessment.confidence == 0.95
    assert not result.assessment.should_execute


@pytest.mark.asyncio
async def test_large_trade_in_low_liquidity_pool_is_skipped():
    orchestrator = _orchestrator(QUIET_MARKET, cost_config=NO_MEV)
    request = TradeRequest.from_inputs("1", 3000, 3006, fee_tier=500, liquidity_depth='low')
    result = await orchestrator.decide(request)

    assert result.summary.net_profit_usd == pytest.approx(5.0, abs=1e-6)
    assert result.assessment.decision == 'SKIP'
    assert result.assessment.reason == "Trade size too large for low liquidity pool - high MEV risk"
    assert result.assessment.confidence == 0.80


@pytest.mark.asyncio
async def test_context_uses_pool_depth_when_request_has_none():
    strategy = RecordingStrategy()
    orchestrator = _orchestrator(StaticMarketData(liquidity_depth='medium'), strategy=strategy)
    await orchestrator.decide(TradeRequest.from_inputs("0.5", 3000, 3030))

    context = strategy.contexts[0]
    assert context.liquidity_depth == 'medium'
    assert context.amount_native == 0.5
    assert context.chain == 'arbitrum'
    assert context.block_time_seconds == 0.25


@pytest.mark.asyncio
async def test_request_depth_overrides_pool_depth():
    strategy = RecordingStrategy()
    orchestrator = _orchestrator(StaticMarketData(liquidity_depth='high'), strategy=strategy)
    await orchestrator.decide(TradeRequest.from_inputs("0.5", 3000, 3030, liquidity_depth='low'))

    assert strategy.contexts[0].liquidity_depth == 'low'


@pytest.mark.asyncio
async def test_estimation_failure_skips_classification():
    aggregator = AsyncMock()
    aggregator.estimate.side_effect = UpstreamUnavailable('rpc:base', 'connection refused')
    strategy = AsyncMock()
    orchestrator = DecisionOrchestrator(aggregator, strategy)

    with pytest.raises(UpstreamUnavailable):
        await orchestrator.decide(TradeRequest.from_inputs("1", 3000, 3030))
    strategy.assess.assert_not_awaited()


@pytest.mark.asyncio
async def test_slow_reasoning_service_still_returns_a_decision():
    strategy = AIRiskStrategy(SleepyClient(), RuleBasedRiskStrategy(), timeout=0.1)
    orchestrator = _orchestrator(strategy=strategy)

    started = time.monotonic()
    result = await orchestrator.decide(TradeRequest.from_inputs("0.01", 2900, 2950))

    assert time.monotonic() - started < 2.0
    assert result.assessment.source == 'rules'
    assert result.assessment.decision == 'SKIP'
    assert STATE_AI_FAILED in result.assessment.states
