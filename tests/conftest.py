from decimal import Decimal

import pytest

from analysis.models import (
    BridgeFeeComponent,
    BridgingCost,
    CostBreakdown,
    GasCost,
    GasLeg,
    MevCost,
    ProfitSummary,
    RiskContext,
    SlippageCost,
    SwapFeeCost,
    TradeRequest,
)


def _summary(gross, gas_usd, slippage_usd=0.0, fees_usd=0.0, spread=1.0, amount=1.0, depth='high'):
    buy = 3000.0
    request = TradeRequest(
        amount=Decimal(str(amount)),
        buy_price=buy,
        sell_price=buy * (1 + spread / 100),
    )
    zero = BridgeFeeComponent(pct=0.0, native=0.0, usd=0.0)
    breakdown = CostBreakdown(
        gas=GasCost(legs=(GasLeg('arbitrum', 150000, 0, 0, 0.0, gas_usd),)),
        swap_fee=SwapFeeCost(fee_tier=3000, effective_rate=0.006, native=0.0, usd=fees_usd),
        slippage=SlippageCost(
            bridge_pct=0.0, bridge_native=0.0, bridge_usd=0.0,
            amm_pct=0.0, amm_native=0.0, amm_usd=slippage_usd,
            spot_price=buy, execution_price=buy, liquidity_depth=depth,
        ),
        bridging=BridgingCost('Across', zero, zero, zero, 10.0),
        mev=MevCost(2.0, 100000, 0.0, 0.0, 0.0, 0.0, 'LOW'),
    )
    total = breakdown.total_usd
    net = gross - total
    trade_value = request.trade_value_usd
    return ProfitSummary(
        request=request,
        breakdown=breakdown,
        native_price_usd=buy,
        spread_pct=spread,
        actionable_spread=spread >= 0.1,
        trade_value_usd=trade_value,
        gross_profit_usd=gross,
        total_costs_usd=total,
        net_profit_usd=net,
        profit_margin_pct=net / trade_value * 100,
        roi_pct=net / trade_value * 100,
        should_execute=net > 0,
    )


@pytest.fixture
def make_summary():
    """Builds a ProfitSummary from headline USD figures."""
    return _summary


@pytest.fixture
def make_context():
    def _context(depth='high', amount=1.0):
        return RiskContext(liquidity_depth=depth, amount_native=amount, chain='arbitrum', block_time_seconds=0.25)
    return _context
