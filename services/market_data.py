"""Market-data collaborators consumed by the profit aggregator.

Each source is an async callable surface so live (HTTP / JSON-RPC) and static
implementations are interchangeable. Live sources raise `UpstreamUnavailable`
instead of returning ``None``: a missing cost must fail the estimate.
"""
from __future__ import annotations

from decimal import Decimal
from typing import NamedTuple, Protocol

from analysis.errors import UpstreamUnavailable
from analysis.models import BridgeQuote, PoolState
from constants import DESTINATION_CHAIN, ORIGIN_CHAIN


class PriceOracle(Protocol):
    async def price(self, asset: str) -> float: ...


class GasPriceSource(Protocol):
    async def gas_price_wei(self, chain: str) -> int: ...


class PoolStateSource(Protocol):
    async def pool_state(self, amount: Decimal, fee_tier: int) -> PoolState: ...


class BridgeQuoteSource(Protocol):
    async def quote(self, amount: Decimal) -> BridgeQuote: ...


class StaticMarketData(NamedTuple):
    """Offline feed values; used for deterministic runs and tests."""
    native_price_usd: float = 3500.0
    origin_gas_price_wei: int = 5_000_000        # 0.005 gwei on Base
    destination_gas_price_wei: int = 10_000_000  # 0.01 gwei on Arbitrum
    amm_slippage_pct: float = 0.1
    pool_liquidity: int = 10 ** 18
    liquidity_depth: str = 'high'
    bridge_lp_fee_pct: float = 0.01
    bridge_relayer_gas_fee_pct: float = 0.02
    bridge_relayer_capital_fee_pct: float = 0.01
    bridge_estimated_time_seconds: float = 10.0
    bridge_price_impact_pct: float = 0.0


class StaticMarketDataSource:
    """Serves every collaborator interface from a `StaticMarketData` snapshot."""

    def __init__(self, data: StaticMarketData = StaticMarketData()):
        self.data = data

    async def price(self, asset: str) -> float:
        if asset.upper() not in ('ETH', 'WETH'):
            raise UpstreamUnavailable('static-oracle', f"no static price for {asset}")
        return self.data.native_price_usd

    async def gas_price_wei(self, chain: str) -> int:
        if chain == ORIGIN_CHAIN:
            return self.data.origin_gas_price_wei
        if chain == DESTINATION_CHAIN:
            return self.data.destination_gas_price_wei
        raise UpstreamUnavailable('static-gas', f"no static gas price for chain '{chain}'")

    async def pool_state(self, amount: Decimal, fee_tier: int) -> PoolState:
        spot = self.data.native_price_usd
        return PoolState(
            spot_price=spot,
            execution_price=spot * (1 - self.data.amm_slippage_pct / 100),
            liquidity=self.data.pool_liquidity,
            liquidity_depth=self.data.liquidity_depth,
        )

    async def quote(self, amount: Decimal) -> BridgeQuote:
        return BridgeQuote(
            lp_fee_pct=self.data.bridge_lp_fee_pct,
            relayer_gas_fee_pct=self.data.bridge_relayer_gas_fee_pct,
            relayer_capital_fee_pct=self.data.bridge_relayer_capital_fee_pct,
            estimated_time_seconds=self.data.bridge_estimated_time_seconds,
            price_impact_pct=self.data.bridge_price_impact_pct,
            protocol='Across (static)',
        )
