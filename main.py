#!/usr/bin/env python3
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation

import aiohttp
import uvicorn

import constants
from config import load_config, AppConfig
from analysis.cost_model import CostModel
from analysis.errors import EstimationError, InvalidInput
from analysis.models import EstimationResult, TradeRequest
from analysis.orchestrator import DecisionOrchestrator
from analysis.profit_aggregator import ProfitAggregator
from analysis.risk_classifier import SOURCE_AI, build_risk_strategy
from api.handlers import build_simulation_payload, create_app
from services.across_client import AcrossBridgeQuoteSource
from services.coingecko_client import CoinGeckoClient
from services.gemini_client import GeminiClient
from services.market_data import StaticMarketData, StaticMarketDataSource
from services.rpc_client import JsonRpcClient, RpcGasPriceSource
from services.uniswap_pool_client import UniswapV3PoolSource

logger = logging.getLogger(__name__)


def build_market_sources(config: AppConfig, session: aiohttp.ClientSession):
    """Returns (price_oracle, gas_source, pool_source, bridge_source)."""
    if not config.live_data:
        static = StaticMarketDataSource(StaticMarketData(native_price_usd=config.native_price))
        return static, static, static, static

    rpc_clients = {
        'base': JsonRpcClient(session, chain='base', rpc_url=config.base_rpc_url, timeout=config.upstream_timeout),
        'arbitrum': JsonRpcClient(session, chain='arbitrum', rpc_url=config.arbitrum_rpc_url, timeout=config.upstream_timeout),
    }
    return (
        CoinGeckoClient(session, config.coingecko_api_key, timeout=config.upstream_timeout),
        RpcGasPriceSource(rpc_clients),
        UniswapV3PoolSource(rpc_clients[constants.DESTINATION_CHAIN]),
        AcrossBridgeQuoteSource(session, timeout=config.upstream_timeout),
    )


def build_orchestrator(config: AppConfig, session: aiohttp.ClientSession) -> DecisionOrchestrator:
    """Composition root: wires sources, cost model and the risk strategy once per process."""
    price_oracle, gas_source, pool_source, bridge_source = build_market_sources(config, session)
    aggregator = ProfitAggregator(CostModel(), price_oracle, gas_source, pool_source, bridge_source)

    gemini_client = None
    if config.ai_analysis_enabled and config.gemini_api_key:
        gemini_client = GeminiClient(session, config.gemini_api_key, model=config.gemini_model)
    return DecisionOrchestrator(aggregator, build_risk_strategy(config, gemini_client))


async def run_estimate(config: AppConfig, trade: TradeRequest) -> EstimationResult:
    async with aiohttp.ClientSession(headers={'User-Agent': 'ArbEstimator/1.0'}) as session:
        orchestrator = build_orchestrator(config, session)
        return await orchestrator.decide(trade)


def serve(config: AppConfig) -> None:
    @asynccontextmanager
    async def lifespan(app):
        # One shared session for the life of the server.
        session = aiohttp.ClientSession(headers={'User-Agent': 'ArbEstimator/1.0'})
        orchestrator = build_orchestrator(config, session)
        app.state.orchestrator = orchestrator
        app.state.ai_enabled = orchestrator.risk_strategy.name == SOURCE_AI
        try:
            yield
        finally:
            await session.close()

    app = create_app(live_data=config.live_data, lifespan=lifespan)
    print(f"{constants.C_GREEN}Serving POST /estimate on http://{config.host}:{config.port}{constants.C_RESET}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


def main(argv: list[str] | None = None) -> int:
    """The main synchronous entry point for the application."""
    config = load_config(argv)
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if config.mev_compare:
        return _print_mev_comparison(config)

    if config.serve:
        serve(config)
        return 0

    try:
        trade = TradeRequest.from_inputs(
            config.amount,
            config.buy_price,
            config.sell_price,
            fee_tier=config.fee_tier,
            liquidity_depth=config.liquidity_depth,
        )
        result = asyncio.run(run_estimate(config, trade))
    except InvalidInput as exc:
        print(f"{constants.C_RED}{exc.message}{constants.C_RESET}")
        return 2
    except EstimationError as exc:
        print(f"{constants.C_RED}Estimate failed: {exc}{constants.C_RESET}")
        return 1

    if config.json_output:
        print(json.dumps({"success": True, "simulation": build_simulation_payload(result)}, indent=2))
    else:
        _print_estimate(result)
    return 0


def _print_mev_comparison(config: AppConfig) -> int:
    try:
        amounts = [float(Decimal(value)) for value in config.mev_compare]
        costs = CostModel().mev_comparison(amounts, config.native_price)
    except (InvalidOperation, ValueError) as exc:
        message = exc.message if isinstance(exc, InvalidInput) else f"Invalid amount: {exc}"
        print(f"{constants.C_RED}{message}{constants.C_RESET}")
        return 2

    headers = ["Amount ETH", "Priority gwei", "Priority ETH", "Tip ETH", "Total ETH", "Total $", "Exposure"]
    rows = [
        [
            f"{amount:g}",
            f"{cost.priority_fee_gwei:.2f}",
            f"{cost.priority_fee_native:.6f}",
            f"{cost.builder_tip_native:.6f}",
            f"{cost.native:.6f}",
            f"{cost.usd:.2f}",
            cost.exposure_level,
        ]
        for amount, cost in zip(amounts, costs)
    ]
    print(f"MEV protection cost at ETH ${config.native_price:,.2f}")
    _print_table(headers, rows)
    return 0


def _print_estimate(result: EstimationResult) -> None:
    summary = result.summary
    assessment = result.assessment
    breakdown = summary.breakdown
    request = summary.request

    heading = f"{request.amount} ETH: buy ${request.buy_price:,.2f} on Base, sell ${request.sell_price:,.2f} on Arbitrum"
    print(f"{constants.C_BLUE}{heading}{constants.C_RESET}")
    print("=" * len(heading))

    rows = [
        ["Spread", f"{summary.spread_pct:.3f}%" + ("" if summary.actionable_spread else " (below actionable minimum)")],
        ["Gross profit", f"${summary.gross_profit_usd:,.4f}"],
        ["Gas", f"${breakdown.gas.usd:,.4f}"],
        ["Swap fees", f"${breakdown.swap_fee.usd:,.4f} (tier {breakdown.swap_fee.fee_tier})"],
        ["MEV protection", f"${breakdown.mev.usd:,.4f}"],
        ["Slippage", f"${breakdown.slippage.usd:,.4f} ({breakdown.slippage.total_pct:.3f}%)"],
        ["Bridging", f"${breakdown.bridging.usd:,.4f} via {breakdown.bridging.protocol}"],
        ["Total costs", f"${summary.total_costs_usd:,.4f}"],
        ["Net profit", f"${summary.net_profit_usd:,.4f}"],
        ["Margin / ROI", f"{summary.profit_margin_pct:.3f}%"],
    ]
    _print_table(["Item", "Value"], rows)

    ratings = assessment.ratings
    print()
    print(
        f"Risk: gas {ratings.gas_risk}, slippage {ratings.slippage_risk}, mev {ratings.mev_risk}, "
        f"timing {ratings.timing_risk}, margin {ratings.profit_margin}"
    )
    colour = constants.C_GREEN if assessment.should_execute else constants.C_RED
    print(f"{colour}{assessment.decision}{constants.C_RESET} ({assessment.confidence:.2f}, {assessment.source}): {assessment.reason}")
    if assessment.fallback_reason:
        print(f"{constants.C_YELLOW}AI fallback: {assessment.fallback_reason}{constants.C_RESET}")


def _print_table(headers: list[str], rows: list[list[str]]) -> None:
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(_format_line(headers))
    print("  ".join('-' * w for w in widths))
    for row in rows:
        print(_format_line(row))


if __name__ == "__main__":
    raise SystemExit(main())
