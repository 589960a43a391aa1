#!/usr/bin/env python3
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Tuple

from analysis.errors import InvalidInput
from constants import (
    DEFAULT_FEE_TIER,
    DECISION_EXECUTE,
    FEE_TIERS,
    LIQUIDITY_DEPTHS,
    WEI_PER_NATIVE,
)


def _parse_positive_price(field: str, label: str, value) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidInput(field, f"Invalid {label}: must be a positive number")
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(field, f"Invalid {label}: must be a positive number") from None
    if not math.isfinite(price) or price <= 0:
        raise InvalidInput(field, f"Invalid {label}: must be a positive number")
    return price


@dataclass(frozen=True)
class TradeRequest:
    """Inputs for one estimation. Build through `from_inputs` to get validation."""
    amount: Decimal
    buy_price: float
    sell_price: float
    fee_tier: int = DEFAULT_FEE_TIER
    liquidity_depth: Optional[str] = None

    @classmethod
    def from_inputs(
        cls,
        amount,
        buy_price,
        sell_price,
        fee_tier=None,
        liquidity_depth: Optional[str] = None,
    ) -> "TradeRequest":
        if amount is None or isinstance(amount, bool):
            raise InvalidInput('amount', "Invalid amount: must be a positive number")
        try:
            parsed_amount = Decimal(str(amount).strip())
        except (InvalidOperation, ValueError):
            raise InvalidInput('amount', "Invalid amount: must be a positive number") from None
        if not parsed_amount.is_finite() or parsed_amount <= 0:
            raise InvalidInput('amount', "Invalid amount: must be a positive number")

        parsed_buy = _parse_positive_price('buyPrice', 'buy price', buy_price)
        parsed_sell = _parse_positive_price('sellPrice', 'sell price', sell_price)

        if fee_tier is None:
            parsed_tier = DEFAULT_FEE_TIER
        elif isinstance(fee_tier, bool) or not isinstance(fee_tier, int) or fee_tier not in FEE_TIERS:
            raise InvalidInput('feeTier', "Invalid feeTier: must be 500, 3000, or 10000")
        else:
            parsed_tier = fee_tier

        depth = None
        if liquidity_depth is not None:
            if not isinstance(liquidity_depth, str) or liquidity_depth.lower() not in LIQUIDITY_DEPTHS:
                raise InvalidInput('liquidityDepth', "Invalid liquidityDepth: must be low, medium, or high")
            depth = liquidity_depth.lower()

        request = cls(
            amount=parsed_amount,
            buy_price=parsed_buy,
            sell_price=parsed_sell,
            fee_tier=parsed_tier,
            liquidity_depth=depth,
        )
        request.check_size()
        return request

    def check_size(self) -> None:
        """Rejects sizes that round to zero wei or overflow/underflow the trade value."""
        if self.amount_wei <= 0:
            raise InvalidInput('amount', "Invalid amount: must be at least 1 wei")
        trade_value = self.trade_value_usd
        if not math.isfinite(trade_value) or trade_value <= 0:
            raise InvalidInput('amount', "Invalid amount: trade value must be a positive finite number")

    @property
    def amount_native(self) -> float:
        return float(self.amount)

    @property
    def amount_wei(self) -> int:
        return int((self.amount * WEI_PER_NATIVE).to_integral_value(rounding=ROUND_DOWN))

    @property
    def trade_value_usd(self) -> float:
        return self.amount_native * self.buy_price


@dataclass(frozen=True)
class PoolState:
    """AMM snapshot for the sell leg at the requested size."""
    spot_price: float
    execution_price: float
    liquidity: int
    liquidity_depth: str
    pool_address: Optional[str] = None


@dataclass(frozen=True)
class BridgeQuote:
    """Relayer fee quote. Percentages are of the bridged amount (0.05 == 0.05%)."""
    lp_fee_pct: float
    relayer_gas_fee_pct: float
    relayer_capital_fee_pct: float
    estimated_time_seconds: float
    price_impact_pct: float = 0.0
    protocol: str = 'Across'

    @property
    def total_fee_pct(self) -> float:
        return self.lp_fee_pct + self.relayer_gas_fee_pct + self.relayer_capital_fee_pct


@dataclass(frozen=True)
class GasLeg:
    chain: str
    gas_units: int
    gas_price_wei: int
    cost_wei: int
    cost_native: float
    cost_usd: float


@dataclass(frozen=True)
class GasCost:
    legs: Tuple[GasLeg, ...]

    @property
    def cost_wei(self) -> int:
        return sum(leg.cost_wei for leg in self.legs)

    @property
    def native(self) -> float:
        return self.cost_wei / WEI_PER_NATIVE

    @property
    def usd(self) -> float:
        return sum(leg.cost_usd for leg in self.legs)


@dataclass(frozen=True)
class SwapFeeCost:
    fee_tier: int
    effective_rate: float
    native: float
    usd: float


@dataclass(frozen=True)
class SlippageCost:
    """Bridge-side and AMM-side slippage for the round trip."""
    bridge_pct: float
    bridge_native: float
    bridge_usd: float
    amm_pct: float
    amm_native: float
    amm_usd: float
    spot_price: float
    execution_price: float
    liquidity_depth: str

    @property
    def total_pct(self) -> float:
        return self.bridge_pct + self.amm_pct

    @property
    def native(self) -> float:
        return self.bridge_native + self.amm_native

    @property
    def usd(self) -> float:
        return self.bridge_usd + self.amm_usd


@dataclass(frozen=True)
class BridgeFeeComponent:
    pct: float
    native: float
    usd: float


@dataclass(frozen=True)
class BridgingCost:
    protocol: str
    lp_fee: BridgeFeeComponent
    relayer_gas_fee: BridgeFeeComponent
    relayer_capital_fee: BridgeFeeComponent
    estimated_time_seconds: float

    @property
    def total_pct(self) -> float:
        return self.lp_fee.pct + self.relayer_gas_fee.pct + self.relayer_capital_fee.pct

    @property
    def native(self) -> float:
        return self.lp_fee.native + self.relayer_gas_fee.native + self.relayer_capital_fee.native

    @property
    def usd(self) -> float:
        return self.lp_fee.usd + self.relayer_gas_fee.usd + self.relayer_capital_fee.usd


@dataclass(frozen=True)
class MevCost:
    priority_fee_gwei: float
    gas_units: int
    priority_fee_native: float
    builder_tip_native: float
    native: float
    usd: float
    exposure_level: str  # value-based: 'LOW', 'MEDIUM' or 'HIGH'


@dataclass(frozen=True)
class CostBreakdown:
    gas: GasCost
    swap_fee: SwapFeeCost
    slippage: SlippageCost
    bridging: BridgingCost
    mev: MevCost

    @property
    def fees_usd(self) -> float:
        """Swap fees on both legs plus MEV protection."""
        return self.swap_fee.usd + self.mev.usd

    @property
    def total_usd(self) -> float:
        return self.gas.usd + self.fees_usd + self.slippage.usd + self.bridging.usd


@dataclass(frozen=True)
class ProfitSummary:
    request: TradeRequest
    breakdown: CostBreakdown
    native_price_usd: float
    spread_pct: float
    actionable_spread: bool
    trade_value_usd: float
    gross_profit_usd: float
    total_costs_usd: float
    net_profit_usd: float
    profit_margin_pct: float
    roi_pct: float
    should_execute: bool

    @property
    def recommendation(self) -> str:
        if self.should_execute:
            return f"EXECUTE - Net profit of ${self.net_profit_usd:.2f} expected"
        return f"DO NOT EXECUTE - Would result in loss of ${abs(self.net_profit_usd):.2f}"


@dataclass(frozen=True)
class RiskContext:
    """Signals the classifier uses beyond the cost numbers."""
    liquidity_depth: str
    amount_native: float
    chain: str
    block_time_seconds: float


@dataclass(frozen=True)
class RiskRatings:
    gas_risk: str
    slippage_risk: str
    mev_risk: str
    timing_risk: str
    profit_margin: str


@dataclass(frozen=True)
class RiskAssessment:
    ratings: RiskRatings
    decision: str
    reason: str
    confidence: float
    source: str  # 'rules' or 'ai'
    fallback_reason: Optional[str] = None
    states: Tuple[str, ...] = ()

    @property
    def should_execute(self) -> bool:
        return self.decision == DECISION_EXECUTE


@dataclass(frozen=True)
class EstimationResult:
    summary: ProfitSummary
    assessment: RiskAssessment
