#!/usr/bin/env python3
import asyncio
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional

import aiohttp

from analysis.errors import UpstreamUnavailable
from analysis.models import BridgeQuote
from constants import (
    ACROSS_API_BASE_URL,
    CHAIN_CONFIG,
    DESTINATION_CHAIN,
    ORIGIN_CHAIN,
    UPSTREAM_DEFAULT_TIMEOUT,
    WEI_PER_NATIVE,
)

logger = logging.getLogger(__name__)

# Across reports fee percentages as 1e18-scaled fractions.
PCT_SCALE = 10 ** 16


async def api_get(url: str, session: aiohttp.ClientSession, params: Optional[Dict] = None, timeout: float = UPSTREAM_DEFAULT_TIMEOUT) -> Optional[Dict]:
    """Makes an async GET request; None on any transport failure."""
    try:
        async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            return await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("Across API request failed: %s", e)
        return None


def _fee_pct(payload: Dict, key: str) -> float:
    try:
        raw = int(payload[key]['pct'])
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamUnavailable('across', f"missing or invalid {key}.pct") from e
    if raw < 0:
        raise UpstreamUnavailable('across', f"negative {key}.pct")
    return raw / PCT_SCALE


class AcrossBridgeQuoteSource:
    """BridgeQuoteSource backed by Across `suggested-fees` for Base WETH -> Arbitrum WETH."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str = ACROSS_API_BASE_URL,
        origin_chain: str = ORIGIN_CHAIN,
        destination_chain: str = DESTINATION_CHAIN,
        timeout: float = UPSTREAM_DEFAULT_TIMEOUT,
    ):
        self.session = session
        self.url = f"{base_url}/suggested-fees"
        self.origin = CHAIN_CONFIG[origin_chain]
        self.destination = CHAIN_CONFIG[destination_chain]
        self.timeout = timeout

    async def quote(self, amount: Decimal) -> BridgeQuote:
        amount_wei = int((amount * WEI_PER_NATIVE).to_integral_value(rounding=ROUND_DOWN))
        params = {
            'inputToken': self.origin['weth'],
            'outputToken': self.destination['weth'],
            'originChainId': str(self.origin['chainId']),
            'destinationChainId': str(self.destination['chainId']),
            'amount': str(amount_wei),
        }
        data = await api_get(self.url, self.session, params=params, timeout=self.timeout)
        if data is None:
            raise UpstreamUnavailable('across', "suggested-fees request failed")
        if not isinstance(data, dict):
            raise UpstreamUnavailable('across', "suggested-fees returned a non-object response")
        if data.get('isAmountTooLow'):
            raise UpstreamUnavailable('across', f"amount {amount} is below the bridge minimum")

        fill_time = data.get('estimatedFillTimeSec')
        if isinstance(fill_time, bool) or not isinstance(fill_time, (int, float)) or fill_time < 0:
            fill_time = 0.0

        quote = BridgeQuote(
            lp_fee_pct=_fee_pct(data, 'lpFee'),
            relayer_gas_fee_pct=_fee_pct(data, 'relayerGasFee'),
            relayer_capital_fee_pct=_fee_pct(data, 'relayerCapitalFee'),
            estimated_time_seconds=float(fill_time),
            protocol='Across',
        )
        logger.debug("Across quote for %s ETH: %.4f%% total fee, fill ~%ss", amount, quote.total_fee_pct, fill_time)
        return quote
