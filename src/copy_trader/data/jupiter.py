import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from copy_trader.core.errors import ExecutionError
from copy_trader.core.types import Quote

DEFAULT_API_URL = "https://quote-api.jup.ag/v6"


class JupiterClient:
    """Quote and swap-transaction client for the Jupiter v6 HTTP API"""

    def __init__(self,
                 api_url: str = DEFAULT_API_URL,
                 timeout: float = 10.0,
                 logger: Optional[logging.Logger] = None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def get_quote(self, mint_in: str, mint_out: str, amount: int, slippage_bps: int) -> Quote:
        """Best route for `amount` base units of `mint_in`; raises ExecutionError on API errors"""
        params = {
            "inputMint": mint_in,
            "outputMint": mint_out,
            "amount": str(int(amount)),
            "slippageBps": str(int(slippage_bps)),
        }
        data = await self._request("GET", "/quote", params=params)
        if data.get("error"):
            raise ExecutionError(f"Quote rejected: {data.get('message') or data['error']}")

        try:
            return Quote(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                min_out_amount=int(data.get("otherAmountThreshold") or data["outAmount"]),
                slippage_bps=int(data.get("slippageBps", slippage_bps)),
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ExecutionError(f"Malformed quote response: {str(e)}") from e

    async def get_swap_transaction(self, quote: Quote, user_public_key: str, priority_fee_lamports: int) -> str:
        """Base64 serialized versioned transaction for `quote`"""
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "prioritizationFeeLamports": priority_fee_lamports,
        }
        data = await self._request("POST", "/swap", json_body=body)
        swap_transaction = data.get("swapTransaction")
        if not swap_transaction:
            raise ExecutionError(f"Swap transaction missing from response: {data.get('error', data)}")
        return swap_transaction

    async def _request(self,
                       method: str,
                       path: str,
                       params: Optional[Dict[str, str]] = None,
                       json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            session = await self._get_session()
            async with session.request(method, f"{self.api_url}{path}", params=params, json=json_body) as response:
                data = await response.json(content_type=None)
                if response.status >= 400 and not isinstance(data, dict):
                    raise ExecutionError(f"Jupiter {path} returned HTTP {response.status}")
                return data if isinstance(data, dict) else {"error": "unexpected response"}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExecutionError(f"Jupiter {path} request failed: {str(e)}") from e
        except ValueError as e:
            raise ExecutionError(f"Jupiter {path} returned invalid JSON: {str(e)}") from e

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
