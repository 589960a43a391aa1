#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import Optional, Dict, List, Tuple

import aiohttp
from constants import COINGECKO_API_BASE_URL, COINGECKO_ASSET_IDS, PRICE_CACHE_TTL, UPSTREAM_DEFAULT_TIMEOUT

from analysis.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


async def api_get(url: str, session: aiohttp.ClientSession, params: Optional[Dict] = None, headers: Optional[Dict] = None, retries: int = 3, timeout: float = UPSTREAM_DEFAULT_TIMEOUT, retry_delay: float = 2) -> Optional[Dict]:
    """Makes an async GET request with retries and timeout."""
    for attempt in range(retries):
        try:
            async with session.get(url, params=params, headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                logger.warning("API request failed after %d attempts: %s", retries, e)
    return None


class CoinGeckoClient:
    """PriceOracle backed by CoinGecko `simple/price`, with a short TTL cache."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: Optional[str] = None,
        cache_ttl: float = PRICE_CACHE_TTL,
        retries: int = 2,
        timeout: float = UPSTREAM_DEFAULT_TIMEOUT,
    ):
        self.session = session
        self.api_key = api_key
        self.headers = {'x-cg-demo-api-key': self.api_key} if self.api_key else {}
        self.cache_ttl = cache_ttl
        self.retries = retries
        self.timeout = timeout
        self._cache: Dict[str, Tuple[float, float]] = {}

    async def get_price(self, coin_ids: List[str], vs_currencies: List[str]) -> Optional[Dict]:
        url = f"{COINGECKO_API_BASE_URL}/simple/price"
        params = {'ids': ",".join(coin_ids), 'vs_currencies': ",".join(vs_currencies)}
        return await api_get(url, self.session, params=params, headers=self.headers, retries=self.retries, timeout=self.timeout)

    async def price(self, asset: str) -> float:
        coin_id = COINGECKO_ASSET_IDS.get(asset.upper())
        if coin_id is None:
            raise UpstreamUnavailable('coingecko', f"no CoinGecko id for {asset}")

        now = time.monotonic()
        cached = self._cache.get(coin_id)
        if cached and now - cached[1] <= self.cache_ttl:
            return cached[0]

        prices = await self.get_price(coin_ids=[coin_id], vs_currencies=['usd'])
        try:
            value = prices[coin_id]['usd']
        except (KeyError, TypeError) as e:
            raise UpstreamUnavailable('coingecko', f"could not parse {asset} price from response") from e
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise UpstreamUnavailable('coingecko', f"invalid {asset} price {value!r}")

        self._cache[coin_id] = (float(value), now)
        return float(value)
