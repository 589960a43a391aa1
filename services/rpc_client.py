#!/usr/bin/env python3
import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from analysis.errors import UpstreamUnavailable
from constants import UPSTREAM_DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """Minimal read-only JSON-RPC client for one EVM chain."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        chain: str,
        rpc_url: str,
        timeout: float = UPSTREAM_DEFAULT_TIMEOUT,
    ) -> None:
        self._session = session
        self.chain = chain
        self._rpc_url = rpc_url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._id_lock = asyncio.Lock()
        self._next_request_id = 1

    @property
    def source(self) -> str:
        return f"rpc:{self.chain}"

    async def gas_price_wei(self) -> int:
        result = await self.call("eth_gasPrice", [])
        return self._decode_quantity(result, "eth_gasPrice")

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        result = await self.call("eth_call", [{"to": to, "data": data}, block])
        if not isinstance(result, str) or not result.startswith("0x") or len(result) < 3:
            raise UpstreamUnavailable(self.source, f"empty eth_call result from {to}")
        return result

    async def call(self, method: str, params: list):
        request_id = await self._get_request_id()
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        try:
            async with self._session.post(self._rpc_url, json=payload, timeout=self._timeout) as response:
                response.raise_for_status()
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("%s %s failed: %s", self.source, method, e)
            raise UpstreamUnavailable(self.source, f"{method} request failed: {e or e.__class__.__name__}") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable(self.source, f"{method} returned a non-object response")
        if 'error' in data:
            raise UpstreamUnavailable(self.source, f"{method} error: {data['error']}")
        return data.get('result')

    async def _get_request_id(self) -> int:
        async with self._id_lock:
            request_id = self._next_request_id
            self._next_request_id += 1
        return request_id

    def _decode_quantity(self, value: Optional[str], method: str) -> int:
        try:
            return int(value, 16)
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailable(self.source, f"{method} returned {value!r}") from e


class RpcGasPriceSource:
    """GasPriceSource backed by `eth_gasPrice` on each chain's RPC."""

    def __init__(self, clients: Dict[str, JsonRpcClient]):
        self.clients = clients

    async def gas_price_wei(self, chain: str) -> int:
        client = self.clients.get(chain)
        if client is None:
            raise UpstreamUnavailable('rpc', f"no RPC endpoint configured for chain '{chain}'")
        return await client.gas_price_wei()
