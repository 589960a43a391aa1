#!/usr/bin/env python3
import asyncio
import logging
from typing import Awaitable, List

from analysis.cost_model import CostModel
from analysis.errors import InvalidInput, UpstreamUnavailable
from analysis.models import (
    BridgeQuote,
    BridgingCost,
    CostBreakdown,
    GasCost,
    MevCost,
    ProfitSummary,
    SlippageCost,
    SwapFeeCost,
    TradeRequest,
)
from constants import DESTINATION_CHAIN, ORIGIN_CHAIN
from services.market_data import BridgeQuoteSource, GasPriceSource, PoolStateSource, PriceOracle

logger = logging.getLogger(__name__)


async def gather_or_cancel(*aws: Awaitable) -> List:
    """Join barrier: all results, or cancel every sibling and re-raise the first failure."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ProfitAggregator:
    """Fans out the five cost components for a request and folds them into a ProfitSummary."""

    def __init__(
        self,
        cost_model: CostModel,
        price_oracle: PriceOracle,
        gas_source: GasPriceSource,
        pool_source: PoolStateSource,
        bridge_source: BridgeQuoteSource,
        native_asset: str = 'ETH',
    ):
        self.cost_model = cost_model
        self.price_oracle = price_oracle
        self.gas_source = gas_source
        self.pool_source = pool_source
        self.bridge_source = bridge_source
        self.native_asset = native_asset

    async def estimate(self, request: TradeRequest) -> ProfitSummary:
        self.cost_model.validate_request(request)

        # Shared per-request lookups; several components await the same task.
        price_task = asyncio.ensure_future(self._guard('price-oracle', self.price_oracle.price(self.native_asset)))
        quote_task = asyncio.ensure_future(self._guard('bridge-quote', self.bridge_source.quote(request.amount)))
        shared = [price_task, quote_task]

        try:
            gas, swap_fee, slippage, bridging, mev = await gather_or_cancel(
                self._guard('gas', self._gas_cost(price_task)),
                self._guard('swap-fee', self._swap_fee_cost(request, price_task)),
                self._guard('slippage', self._slippage_cost(request, price_task, quote_task)),
                self._guard('bridging', self._bridging_cost(request, price_task, quote_task)),
                self._guard('mev', self._mev_cost(request, price_task)),
            )
            native_price = await price_task
        except BaseException:
            for task in shared:
                task.cancel()
            await asyncio.gather(*shared, return_exceptions=True)
            raise

        breakdown = CostBreakdown(gas=gas, swap_fee=swap_fee, slippage=slippage, bridging=bridging, mev=mev)
        summary = self._summarize(request, breakdown, native_price)
        logger.info(
            "Estimated %s %s buy=%.2f sell=%.2f gross=$%.4f costs=$%.4f net=$%.4f",
            request.amount, self.native_asset, request.buy_price, request.sell_price,
            summary.gross_profit_usd, summary.total_costs_usd, summary.net_profit_usd,
        )
        return summary

    def _summarize(self, request: TradeRequest, breakdown: CostBreakdown, native_price: float) -> ProfitSummary:
        amount = request.amount_native
        gross_profit = amount * (request.sell_price - request.buy_price)
        total_costs = breakdown.total_usd
        net_profit = gross_profit - total_costs
        trade_value = request.trade_value_usd
        margin_pct = (net_profit / trade_value) * 100
        spread = self.cost_model.spread_pct(request.buy_price, request.sell_price)

        return ProfitSummary(
            request=request,
            breakdown=breakdown,
            native_price_usd=native_price,
            spread_pct=spread,
            actionable_spread=self.cost_model.is_actionable_spread(spread),
            trade_value_usd=trade_value,
            gross_profit_usd=gross_profit,
            total_costs_usd=total_costs,
            net_profit_usd=net_profit,
            profit_margin_pct=margin_pct,
            roi_pct=margin_pct,
            should_execute=net_profit > 0,
        )

    @staticmethod
    async def _guard(source: str, aw: Awaitable):
        try:
            return await aw
        except UpstreamUnavailable:
            raise
        except InvalidInput as exc:
            # The request was validated up front, so this is bad data from a source.
            raise UpstreamUnavailable(source, f"returned unusable data ({exc.message})") from exc
        except Exception as exc:
            raise UpstreamUnavailable(source, str(exc) or exc.__class__.__name__) from exc

    async def _gas_cost(self, price_task: Awaitable[float]) -> GasCost:
        origin_price_wei, destination_price_wei = await gather_or_cancel(
            self.gas_source.gas_price_wei(ORIGIN_CHAIN),
            self.gas_source.gas_price_wei(DESTINATION_CHAIN),
        )
        native_price = await price_task
        cfg = self.cost_model.config
        legs = (
            self.cost_model.gas_leg(ORIGIN_CHAIN, origin_price_wei, cfg.origin_gas_units, native_price),
            self.cost_model.gas_leg(DESTINATION_CHAIN, destination_price_wei, cfg.destination_gas_units, native_price),
        )
        return GasCost(legs=legs)

    async def _swap_fee_cost(self, request: TradeRequest, price_task: Awaitable[float]) -> SwapFeeCost:
        native_price = await price_task
        return self.cost_model.swap_fee_cost(request.amount_native, request.fee_tier, native_price)

    async def _slippage_cost(
        self,
        request: TradeRequest,
        price_task: Awaitable[float],
        quote_task: Awaitable[BridgeQuote],
    ) -> SlippageCost:
        pool = await self.pool_source.pool_state(request.amount, request.fee_tier)
        quote = await quote_task
        native_price = await price_task
        amount = request.amount_native

        amm_usd = self.cost_model.slippage_cost(amount, pool.spot_price, pool.execution_price)
        amm_pct = self.cost_model.slippage_pct(pool.spot_price, pool.execution_price)

        bridge_pct = quote.price_impact_pct
        if bridge_pct < 0:
            raise UpstreamUnavailable('bridge-quote', "negative price impact in quote")
        bridge_native = amount * bridge_pct / 100

        return SlippageCost(
            bridge_pct=bridge_pct,
            bridge_native=bridge_native,
            bridge_usd=bridge_native * native_price,
            amm_pct=amm_pct,
            amm_native=amm_usd / native_price,
            amm_usd=amm_usd,
            spot_price=pool.spot_price,
            execution_price=pool.execution_price,
            liquidity_depth=pool.liquidity_depth,
        )

    async def _bridging_cost(
        self,
        request: TradeRequest,
        price_task: Awaitable[float],
        quote_task: Awaitable[BridgeQuote],
    ) -> BridgingCost:
        quote = await quote_task
        native_price = await price_task
        return self.cost_model.bridging_cost(request.amount_native, quote, native_price)

    async def _mev_cost(self, request: TradeRequest, price_task: Awaitable[float]) -> MevCost:
        native_price = await price_task
        return self.cost_model.mev_protection_cost(request.amount_native, native_price)
