#!/usr/bin/env python3
import asyncio
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional

from analysis.errors import UpstreamUnavailable
from analysis.models import PoolState
from constants import (
    CHAIN_CONFIG,
    DESTINATION_CHAIN,
    LIQUIDITY_LOW_THRESHOLD,
    LIQUIDITY_MEDIUM_THRESHOLD,
    TOKEN_DECIMALS,
    WEI_PER_NATIVE,
)
from services.rpc_client import JsonRpcClient

logger = logging.getLogger(__name__)

Q192 = 2 ** 192
ZERO_ADDRESS = '0x' + '0' * 40


def classify_liquidity(liquidity: int) -> str:
    """Buckets raw in-range pool liquidity."""
    if liquidity < LIQUIDITY_LOW_THRESHOLD:
        return 'low'
    if liquidity < LIQUIDITY_MEDIUM_THRESHOLD:
        return 'medium'
    return 'high'


def sqrt_price_x96_to_price(sqrt_price_x96: int, token0_decimals: int, token1_decimals: int) -> float:
    """Human price of token0 in units of token1."""
    raw = (sqrt_price_x96 * sqrt_price_x96) / Q192
    return raw * 10 ** (token0_decimals - token1_decimals)


def _encode_address(address: str) -> str:
    return address.lower().replace('0x', '').rjust(64, '0')


def _encode_uint(value: int) -> str:
    return format(value, '064x')


def _word(result: str, index: int) -> int:
    start = 2 + index * 64
    chunk = result[start:start + 64]
    if len(chunk) != 64:
        raise ValueError(f"result too short for word {index}")
    return int(chunk, 16)


class UniswapV3PoolSource:
    """PoolStateSource for the WETH/USDC Uniswap V3 pool on the sell-side chain."""

    _GET_POOL_SIG = "0x1698ee82"
    _SLOT0_SIG = "0x3850c7bd"
    _LIQUIDITY_SIG = "0x1a686502"
    _TOKEN0_SIG = "0x0dfe1681"
    _QUOTE_EXACT_INPUT_SINGLE_SIG = "0xc6a5026a"

    def __init__(self, rpc: JsonRpcClient, chain: str = DESTINATION_CHAIN, quote_token: str = 'usdc'):
        chain_config = CHAIN_CONFIG[chain]
        self.rpc = rpc
        self.chain = chain
        self.weth = str(chain_config['weth']).lower()
        self.quote_token = str(chain_config[quote_token]).lower()
        self.quote_decimals = TOKEN_DECIMALS[quote_token]
        self.factory = str(chain_config['uniswapFactory'])
        self.quoter = str(chain_config['uniswapQuoter'])
        self._pool_cache: Dict[int, str] = {}
        self._token0_cache: Dict[str, str] = {}

    @property
    def source(self) -> str:
        return f"uniswap-v3:{self.chain}"

    async def pool_state(self, amount: Decimal, fee_tier: int) -> PoolState:
        pool = await self._get_pool(fee_tier)
        amount_wei = int((amount * WEI_PER_NATIVE).to_integral_value(rounding=ROUND_DOWN))

        slot0, liquidity_hex, token0, amount_out = await asyncio.gather(
            self.rpc.eth_call(pool, self._SLOT0_SIG),
            self.rpc.eth_call(pool, self._LIQUIDITY_SIG),
            self._get_token0(pool),
            self._quote_exact_input(amount_wei, fee_tier),
        )

        try:
            sqrt_price_x96 = _word(slot0, 0)
            liquidity = _word(liquidity_hex, 0)
        except ValueError as e:
            raise UpstreamUnavailable(self.source, f"undecodable pool state: {e}") from e
        if sqrt_price_x96 == 0:
            raise UpstreamUnavailable(self.source, f"pool {pool} is not initialized")

        weth_decimals = TOKEN_DECIMALS['weth']
        if token0 == self.weth:
            spot = sqrt_price_x96_to_price(sqrt_price_x96, weth_decimals, self.quote_decimals)
        else:
            spot = 1 / sqrt_price_x96_to_price(sqrt_price_x96, self.quote_decimals, weth_decimals)

        execution_price = (amount_out / 10 ** self.quote_decimals) / float(amount)
        if execution_price <= 0:
            raise UpstreamUnavailable(self.source, "quoter returned zero output")

        depth = classify_liquidity(liquidity)
        logger.debug(
            "Pool %s fee=%s spot=%.4f exec=%.4f liquidity=%s (%s)",
            pool, fee_tier, spot, execution_price, liquidity, depth,
        )
        return PoolState(
            spot_price=spot,
            execution_price=execution_price,
            liquidity=liquidity,
            liquidity_depth=depth,
            pool_address=pool,
        )

    async def _get_pool(self, fee_tier: int) -> str:
        cached = self._pool_cache.get(fee_tier)
        if cached:
            return cached
        data = (
            self._GET_POOL_SIG
            + _encode_address(self.weth)
            + _encode_address(self.quote_token)
            + _encode_uint(fee_tier)
        )
        result = await self.rpc.eth_call(self.factory, data)
        pool = self._decode_address(result)
        if pool is None or pool == ZERO_ADDRESS:
            raise UpstreamUnavailable(self.source, f"no WETH pool for fee tier {fee_tier}")
        self._pool_cache[fee_tier] = pool
        return pool

    async def _get_token0(self, pool: str) -> str:
        cached = self._token0_cache.get(pool)
        if cached:
            return cached
        token0 = self._decode_address(await self.rpc.eth_call(pool, self._TOKEN0_SIG))
        if token0 is None:
            raise UpstreamUnavailable(self.source, f"could not resolve token0 of {pool}")
        self._token0_cache[pool] = token0
        return token0

    async def _quote_exact_input(self, amount_wei: int, fee_tier: int) -> int:
        data = (
            self._QUOTE_EXACT_INPUT_SINGLE_SIG
            + _encode_address(self.weth)
            + _encode_address(self.quote_token)
            + _encode_uint(amount_wei)
            + _encode_uint(fee_tier)
            + _encode_uint(0)  # sqrtPriceLimitX96
        )
        result = await self.rpc.eth_call(self.quoter, data)
        try:
            return _word(result, 0)
        except ValueError as e:
            raise UpstreamUnavailable(self.source, f"undecodable quote: {e}") from e

    @staticmethod
    def _decode_address(value: Optional[str]) -> Optional[str]:
        if not value or len(value) < 66:
            return None
        return '0x' + value[2:66][-40:].lower()
