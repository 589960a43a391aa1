#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple
import constants

class AppConfig(NamedTuple):
    """Typed configuration object."""
    amount: str | None
    buy_price: float | None
    sell_price: float | None
    fee_tier: int
    liquidity_depth: str | None
    json_output: bool
    serve: bool
    host: str
    port: int
    mev_compare: list[str] | None
    live_data: bool
    native_price: float
    ai_analysis_enabled: bool
    ai_timeout: float
    upstream_timeout: float
    gemini_api_key: str | None
    gemini_model: str
    coingecko_api_key: str | None
    base_rpc_url: str
    arbitrum_rpc_url: str
    min_net_profit: float
    safe_net_profit: float
    max_spread: float
    low_liquidity_max_amount: float
    log_level: str


def _fail(message: str) -> None:
    print(f"{constants.C_RED}{message}{constants.C_RESET}")
    exit(1)


def load_config(argv: list[str] | None = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Estimate the net profit of a Base -> Arbitrum ETH arbitrage and decide EXECUTE or SKIP.",
        epilog="Example: ./main.py --amount 0.5 --buy-price 3000 --sell-price 3030 --fee-tier 500"
    )
    # --- Trade Arguments ---
    parser.add_argument('--amount', type=str, help='Trade size in ETH (e.g. 0.5).')
    parser.add_argument('--buy-price', type=float, help='ETH buy price in USD on the origin chain.')
    parser.add_argument('--sell-price', type=float, help='ETH sell price in USD on the destination chain.')
    parser.add_argument('--fee-tier', type=int, choices=constants.FEE_TIERS, default=constants.DEFAULT_FEE_TIER, help='Uniswap V3 fee tier (default: 3000).')
    parser.add_argument('--liquidity-depth', choices=constants.LIQUIDITY_DEPTHS, help='Override the pool liquidity classification.')
    parser.add_argument('--json', dest='json_output', action='store_true', help='Print the result as JSON instead of a table.')

    # --- Mode Arguments ---
    parser.add_argument('--serve', action='store_true', help='Run the HTTP estimation service.')
    parser.add_argument('--host', type=str, default='127.0.0.1', help='HTTP bind address (default: 127.0.0.1).')
    parser.add_argument('--port', type=int, default=8080, help='HTTP port (default: 8080).')
    parser.add_argument('--mev-compare', nargs='+', metavar='AMOUNT', help='Print MEV protection cost for several trade sizes and exit.')

    # --- Data Source Arguments ---
    parser.add_argument('--live-data', action='store_true', help='Use CoinGecko, chain RPCs, Uniswap and Across instead of static feed values.')
    parser.add_argument('--native-price', type=float, default=3500.0, help='Static ETH price in USD when --live-data is off (default: 3500).')
    parser.add_argument('--upstream-timeout', type=float, default=constants.UPSTREAM_DEFAULT_TIMEOUT, help='Per-request timeout in seconds for market-data calls (default: 10).')

    # --- AI Arguments ---
    parser.add_argument('--disable-ai-analysis', action='store_true', help='Use only the rule-based risk classifier.')
    parser.add_argument('--ai-timeout', type=float, default=constants.AI_DEFAULT_TIMEOUT, help='Seconds to wait for the AI risk decision (default: 8).')
    parser.add_argument('--gemini-model', type=str, default=constants.GEMINI_DEFAULT_MODEL, help=f'Gemini model name (default: {constants.GEMINI_DEFAULT_MODEL}).')

    # --- Risk Threshold Arguments ---
    parser.add_argument('--min-net-profit', type=float, default=2.0, help='Minimum net profit in USD to execute (default: 2.0).')
    parser.add_argument('--safe-net-profit', type=float, default=10.0, help='Net profit in USD above which the margin is safe (default: 10.0).')
    parser.add_argument('--max-spread', type=float, default=5.0, help='Spread percentage above which prices are treated as anomalous (default: 5.0).')
    parser.add_argument('--low-liquidity-max-amount', type=float, default=0.05, help='Largest ETH size allowed against a low-liquidity pool (default: 0.05).')

    parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: WARNING).')

    args = parser.parse_args(argv)

    if not args.serve and not args.mev_compare and (args.amount is None or args.buy_price is None or args.sell_price is None):
        parser.error('--amount, --buy-price and --sell-price are required unless --serve or --mev-compare is specified.')

    if args.ai_timeout <= 0:
        _fail("--ai-timeout must be greater than zero.")
    if args.upstream_timeout <= 0:
        _fail("--upstream-timeout must be greater than zero.")
    if args.native_price <= 0:
        _fail("--native-price must be greater than zero.")
    if args.min_net_profit < 0 or args.safe_net_profit < args.min_net_profit:
        _fail("--safe-net-profit must be at least --min-net-profit, and both must be non-negative.")

    # Load from environment
    gemini_api_key = os.environ.get(constants.GEMINI_API_KEY_ENV_VAR)
    coingecko_api_key = os.environ.get(constants.COINGECKO_API_KEY_ENV_VAR)
    base_rpc_url = os.environ.get(constants.BASE_RPC_URL_ENV_VAR) or constants.DEFAULT_RPC_URLS['base']
    arbitrum_rpc_url = os.environ.get(constants.ARBITRUM_RPC_URL_ENV_VAR) or constants.DEFAULT_RPC_URLS['arbitrum']

    ai_analysis_env = os.environ.get(constants.AI_ANALYSIS_ENABLED_ENV_VAR)
    ai_analysis_enabled = not args.disable_ai_analysis
    if ai_analysis_env is not None and not args.disable_ai_analysis:
        ai_analysis_enabled = ai_analysis_env.lower() not in {"0", "false", "no", "off"}

    if ai_analysis_enabled and not gemini_api_key and not args.json_output:
        print(f"{constants.C_YELLOW}{constants.GEMINI_API_KEY_ENV_VAR} not set; decisions will use the rule-based classifier.{constants.C_RESET}")

    return AppConfig(
        amount=args.amount,
        buy_price=args.buy_price,
        sell_price=args.sell_price,
        fee_tier=args.fee_tier,
        liquidity_depth=args.liquidity_depth,
        json_output=args.json_output,
        serve=args.serve,
        host=args.host,
        port=args.port,
        mev_compare=args.mev_compare,
        live_data=args.live_data,
        native_price=args.native_price,
        ai_analysis_enabled=ai_analysis_enabled,
        ai_timeout=args.ai_timeout,
        upstream_timeout=args.upstream_timeout,
        gemini_api_key=gemini_api_key,
        gemini_model=args.gemini_model,
        coingecko_api_key=coingecko_api_key,
        base_rpc_url=base_rpc_url,
        arbitrum_rpc_url=arbitrum_rpc_url,
        min_net_profit=args.min_net_profit,
        safe_net_profit=args.safe_net_profit,
        max_spread=args.max_spread,
        low_liquidity_max_amount=args.low_liquidity_max_amount,
        log_level=args.log_level,
    )
