#!/usr/bin/env python3
"""Pure cost functions for a Base -> Arbitrum ETH arbitrage round trip."""
import math
from typing import Iterable, List, NamedTuple, Tuple

from analysis.errors import InvalidInput
from analysis.models import (
    BridgeFeeComponent,
    BridgeQuote,
    BridgingCost,
    GasLeg,
    MevCost,
    SwapFeeCost,
    TradeRequest,
)
from constants import (
    DESTINATION_GAS_UNITS,
    FEE_TIERS,
    MEV_GAS_UNITS,
    ORIGIN_GAS_UNITS,
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
    WEI_PER_GWEI,
    WEI_PER_NATIVE,
)


class CostModelConfig(NamedTuple):
    """Fixed formula constants. None of these are fitted to market data."""
    fee_tiers: Tuple[int, ...] = FEE_TIERS
    origin_gas_units: int = ORIGIN_GAS_UNITS
    destination_gas_units: int = DESTINATION_GAS_UNITS
    mev_gas_units: int = MEV_GAS_UNITS
    mev_base_priority_fee_gwei: float = 2.0
    mev_priority_fee_scale_gwei: float = 10.0
    mev_priority_fee_cap_gwei: float = 3.0
    builder_tip_rate: float = 0.0003
    mev_high_exposure_usd: float = 10000.0
    mev_medium_exposure_usd: float = 1000.0
    min_actionable_spread_pct: float = 0.1


DEFAULT_COST_MODEL_CONFIG = CostModelConfig()


def _require_positive(field: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise InvalidInput(field, f"Invalid {field}: must be a positive number")


def _require_non_negative(field: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        raise InvalidInput(field, f"Invalid {field}: must be zero or greater")


def spread_pct(price_a: float, price_b: float) -> float:
    """Relative difference between two venue prices, always >= 0."""
    _require_positive('price', price_a)
    _require_positive('price', price_b)
    low = min(price_a, price_b)
    high = max(price_a, price_b)
    return (high - low) / low * 100


class CostModel:
    def __init__(self, config: CostModelConfig = DEFAULT_COST_MODEL_CONFIG):
        self.config = config

    def validate_fee_tier(self, fee_tier: int) -> None:
        if isinstance(fee_tier, bool) or fee_tier not in self.config.fee_tiers:
            allowed = ", ".join(str(tier) for tier in self.config.fee_tiers)
            raise InvalidInput('feeTier', f"Invalid feeTier: must be one of {allowed}")

    def validate_request(self, request: TradeRequest) -> None:
        """Re-checks a request against this model's constants before any work is scheduled."""
        _require_positive('amount', request.amount_native)
        _require_positive('buyPrice', request.buy_price)
        _require_positive('sellPrice', request.sell_price)
        self.validate_fee_tier(request.fee_tier)
        request.check_size()

    # --- Gas ---

    def gas_cost(self, gas_price_wei: int, gas_units: int, native_price_usd: float) -> float:
        """USD cost of `gas_units` at `gas_price_wei`. The wei product is exact."""
        return self.gas_leg('', gas_price_wei, gas_units, native_price_usd).cost_usd

    def gas_leg(self, chain: str, gas_price_wei: int, gas_units: int, native_price_usd: float) -> GasLeg:
        if isinstance(gas_price_wei, bool) or not isinstance(gas_price_wei, int) or gas_price_wei < 0:
            raise InvalidInput('gasPriceWei', "Invalid gasPriceWei: must be a non-negative integer")
        if isinstance(gas_units, bool) or not isinstance(gas_units, int) or gas_units <= 0:
            raise InvalidInput('gasUnits', "Invalid gasUnits: must be a positive integer")
        _require_positive('nativePriceUsd', native_price_usd)

        cost_wei = gas_price_wei * gas_units
        cost_native = cost_wei / WEI_PER_NATIVE
        return GasLeg(
            chain=chain,
            gas_units=gas_units,
            gas_price_wei=gas_price_wei,
            cost_wei=cost_wei,
            cost_native=cost_native,
            cost_usd=cost_native * native_price_usd,
        )

    # --- Swap fees ---

    def swap_fee_cost(self, amount: float, fee_tier: int, native_price_usd: float) -> SwapFeeCost:
        """Pool fee charged on both the buy and the sell swap."""
        _require_positive('amount', amount)
        _require_positive('nativePriceUsd', native_price_usd)
        self.validate_fee_tier(fee_tier)

        effective_rate = (fee_tier / 1_000_000) * 2
        native = amount * effective_rate
        return SwapFeeCost(
            fee_tier=fee_tier,
            effective_rate=effective_rate,
            native=native,
            usd=native * native_price_usd,
        )

    # --- Slippage ---

    def slippage_cost(self, amount: float, spot_price: float, execution_price: float) -> float:
        """Shortfall of execution against spot, in fiat. A better fill reports zero."""
        _require_positive('amount', amount)
        _require_positive('spotPrice', spot_price)
        _require_positive('executionPrice', execution_price)
        return max(0.0, amount * (spot_price - execution_price))

    def slippage_pct(self, spot_price: float, execution_price: float) -> float:
        _require_positive('spotPrice', spot_price)
        _require_positive('executionPrice', execution_price)
        return max(0.0, (spot_price - execution_price) / spot_price * 100)

    # --- Bridging ---

    def bridging_cost(self, amount: float, quote: BridgeQuote, native_price_usd: float) -> BridgingCost:
        _require_positive('amount', amount)
        _require_positive('nativePriceUsd', native_price_usd)
        for field, pct in (
            ('lpFeePct', quote.lp_fee_pct),
            ('relayerGasFeePct', quote.relayer_gas_fee_pct),
            ('relayerCapitalFeePct', quote.relayer_capital_fee_pct),
        ):
            _require_non_negative(field, pct)

        def component(pct: float) -> BridgeFeeComponent:
            native = amount * pct / 100
            return BridgeFeeComponent(pct=pct, native=native, usd=native * native_price_usd)

        return BridgingCost(
            protocol=quote.protocol,
            lp_fee=component(quote.lp_fee_pct),
            relayer_gas_fee=component(quote.relayer_gas_fee_pct),
            relayer_capital_fee=component(quote.relayer_capital_fee_pct),
            estimated_time_seconds=quote.estimated_time_seconds,
        )

    # --- MEV protection ---

    def mev_protection_cost(self, amount: float, native_price_usd: float) -> MevCost:
        """Priority fee that grows with size up to a cap, plus a flat builder tip."""
        _require_positive('amount', amount)
        _require_positive('nativePriceUsd', native_price_usd)
        cfg = self.config

        priority_fee_gwei = cfg.mev_base_priority_fee_gwei + min(
            amount * cfg.mev_priority_fee_scale_gwei, cfg.mev_priority_fee_cap_gwei
        )
        priority_fee_native = (priority_fee_gwei * cfg.mev_gas_units) / WEI_PER_GWEI
        builder_tip_native = amount * cfg.builder_tip_rate
        native = priority_fee_native + builder_tip_native

        trade_value_usd = amount * native_price_usd
        if trade_value_usd > cfg.mev_high_exposure_usd:
            exposure = RISK_HIGH
        elif trade_value_usd > cfg.mev_medium_exposure_usd:
            exposure = RISK_MEDIUM
        else:
            exposure = RISK_LOW

        return MevCost(
            priority_fee_gwei=priority_fee_gwei,
            gas_units=cfg.mev_gas_units,
            priority_fee_native=priority_fee_native,
            builder_tip_native=builder_tip_native,
            native=native,
            usd=native * native_price_usd,
            exposure_level=exposure,
        )

    def mev_comparison(self, amounts: Iterable[float], native_price_usd: float) -> List[MevCost]:
        amounts = list(amounts)
        if not amounts:
            raise InvalidInput('amounts', "Invalid amounts: must be a non-empty list")
        return [self.mev_protection_cost(amount, native_price_usd) for amount in amounts]

    # --- Spread ---

    def spread_pct(self, price_a: float, price_b: float) -> float:
        return spread_pct(price_a, price_b)

    def is_actionable_spread(self, spread: float) -> bool:
        return spread >= self.config.min_actionable_spread_pct
