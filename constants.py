#!/usr/bin/env python3
from typing import Dict, Tuple, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
COINGECKO_API_BASE_URL = 'https://api.coingecko.com/api/v3'
ACROSS_API_BASE_URL = 'https://app.across.to/api'
GEMINI_API_BASE_URL = 'https://generativelanguage.googleapis.com/v1beta/models'
GEMINI_DEFAULT_MODEL = 'gemini-2.5-flash'

# --- Environment Variable Names ---
GEMINI_API_KEY_ENV_VAR = 'GEMINI_API_KEY'
COINGECKO_API_KEY_ENV_VAR = 'COINGECKO_API_KEY'
AI_ANALYSIS_ENABLED_ENV_VAR = 'AI_ANALYSIS_ENABLED'
BASE_RPC_URL_ENV_VAR = 'BASE_RPC_URL'
ARBITRUM_RPC_URL_ENV_VAR = 'ARBITRUM_RPC_URL'

DEFAULT_RPC_URLS: Dict[str, str] = {
    'base': 'https://mainnet.base.org',
    'arbitrum': 'https://arb1.arbitrum.io/rpc',
}

# --- Chain Configuration ---
# Buy leg runs on the origin chain, sell leg on the destination chain.
ORIGIN_CHAIN = 'base'
DESTINATION_CHAIN = 'arbitrum'

CHAIN_CONFIG: Dict[str, Dict[str, Union[str, int, float]]] = {
    'base': {
        'chainId': 8453,
        'blockTimeSeconds': 2.0,
        'weth': '0x4200000000000000000000000000000000000006',
        'usdc': '0x833589fcd6edb6e08f4c7c32d4f71b54bda02913',
        'uniswapFactory': '0x33128a8fc17869897dce68ed026d694621f6fdfd',
        'uniswapQuoter': '0x3d4e44eb1374240ce5f1b871ab261cd16335b76a',
    },
    'arbitrum': {
        'chainId': 42161,
        'blockTimeSeconds': 0.25,
        'weth': '0x82af49447d8a07e3bd95bd0d56f35241523fbab1',
        'usdc': '0xaf88d065e77c8cc2239327c5edb3a432268e5831',
        'uniswapFactory': '0x1f98431c8ad98523631ae4a59f267346ea31f984',
        'uniswapQuoter': '0x61ffe014ba17989e743c5f6cb21bf9697530b21e',
    },
}

TOKEN_DECIMALS: Dict[str, int] = {
    'weth': 18,
    'usdc': 6,
}

# CoinGecko ids for the assets we price.
COINGECKO_ASSET_IDS: Dict[str, str] = {
    'ETH': 'ethereum',
    'WETH': 'ethereum',
}

# --- Uniswap V3 fee tiers (hundredths of a basis point) ---
FEE_TIER_LOW = 500       # 0.05%
FEE_TIER_MEDIUM = 3000   # 0.3%
FEE_TIER_HIGH = 10000    # 1%
FEE_TIERS: Tuple[int, ...] = (FEE_TIER_LOW, FEE_TIER_MEDIUM, FEE_TIER_HIGH)
DEFAULT_FEE_TIER = FEE_TIER_MEDIUM

# --- Gas Configuration ---
# Origin leg: wrap + buy swap + bridge deposit. Destination leg: sell swap + unwrap.
ORIGIN_GAS_UNITS = 350000
DESTINATION_GAS_UNITS = 150000
MEV_GAS_UNITS = 100000
WEI_PER_NATIVE = 10 ** 18
WEI_PER_GWEI = 10 ** 9

# --- Liquidity classification (raw Uniswap V3 liquidity) ---
LIQUIDITY_DEPTHS: Tuple[str, ...] = ('low', 'medium', 'high')
LIQUIDITY_LOW_THRESHOLD = 10 ** 15
LIQUIDITY_MEDIUM_THRESHOLD = 10 ** 18

# --- Decision vocabulary ---
DECISION_EXECUTE = 'EXECUTE'
DECISION_SKIP = 'SKIP'
DECISIONS: Tuple[str, ...] = (DECISION_EXECUTE, DECISION_SKIP)
RISK_LOW = 'LOW'
RISK_MEDIUM = 'MEDIUM'
RISK_HIGH = 'HIGH'
RISK_LEVELS: Tuple[str, ...] = (RISK_LOW, RISK_MEDIUM, RISK_HIGH)
MARGIN_THIN = 'thin'
MARGIN_ACCEPTABLE = 'acceptable'
MARGIN_SAFE = 'safe'
PROFIT_MARGINS: Tuple[str, ...] = (MARGIN_THIN, MARGIN_ACCEPTABLE, MARGIN_SAFE)

# --- Timeouts (seconds) ---
AI_DEFAULT_TIMEOUT = 8.0
UPSTREAM_DEFAULT_TIMEOUT = 10.0
PRICE_CACHE_TTL = 30.0
