import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from copy_trader.core.transaction import ParsedTransaction
from copy_trader.core.types import AccountInfo

MAX_ACCOUNTS_PER_CALL = 100


class RpcClient:
    """
    Shared connection to one Solana RPC node: a solana-py AsyncClient for
    typed calls and an aiohttp session for raw JSON-RPC requests.
    """

    def __init__(self,
                 rpc_url: str,
                 commitment: str = "confirmed",
                 timeout: float = 10.0,
                 logger: Optional[logging.Logger] = None):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.client = AsyncClient(rpc_url, commitment=Commitment(commitment), timeout=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def post_rpc(self, method: str, params: List[Any]) -> Optional[Dict[str, Any]]:
        """Raw JSON-RPC call; returns the response body or None when the request fails"""
        self._request_id += 1
        body = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            session = await self._get_session()
            async with session.post(self.rpc_url, json=body) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"RPC {method} failed: {str(e)}")
            return None
        except json.JSONDecodeError as e:
            self.logger.warning(f"RPC {method} returned invalid JSON: {str(e)}")
            return None

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        await self.client.close()


class RpcAccountReader:
    def __init__(self, rpc: RpcClient, logger: Optional[logging.Logger] = None):
        self.rpc = rpc
        self.logger = logger or rpc.logger

    async def get_account(self, address: str) -> Optional[AccountInfo]:
        try:
            response = await self.rpc.client.get_account_info(Pubkey.from_string(address), encoding="base64")
        except Exception as e:
            self.logger.warning(f"get_account_info({address}) failed: {str(e)}")
            return None
        return _to_account_info(response.value)

    async def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountInfo]]:
        results: List[Optional[AccountInfo]] = []
        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_CALL):
            chunk = addresses[start:start + MAX_ACCOUNTS_PER_CALL]
            try:
                pubkeys = [Pubkey.from_string(a) for a in chunk]
                response = await self.rpc.client.get_multiple_accounts(pubkeys, encoding="base64")
                results.extend(_to_account_info(account) for account in response.value)
            except Exception as e:
                self.logger.warning(f"get_multiple_accounts failed for {len(chunk)} accounts: {str(e)}")
                results.extend([None] * len(chunk))
        return results


def _to_account_info(account) -> Optional[AccountInfo]:
    if account is None:
        return None
    return AccountInfo(owner=str(account.owner), data=bytes(account.data), lamports=account.lamports)


class RpcTransactionFetcher:
    def __init__(self, rpc: RpcClient, logger: Optional[logging.Logger] = None):
        self.rpc = rpc
        self.logger = logger or rpc.logger

    async def get_parsed_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        response = await self.rpc.post_rpc("getTransaction", [
            signature,
            {
                "encoding": "jsonParsed",
                "commitment": self.rpc.commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ])
        if not response:
            return None
        if "error" in response:
            self.logger.warning(f"getTransaction {signature} error: {response['error']}")
            return None

        result = response.get("result")
        if not result or "meta" not in result:
            return None
        return ParsedTransaction.from_rpc(signature, result)

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest first, as the node returns them"""
        response = await self.rpc.post_rpc("getSignaturesForAddress", [
            address,
            {"limit": limit, "commitment": self.rpc.commitment},
        ])
        if not response or "error" in response:
            if response:
                self.logger.warning(f"getSignaturesForAddress error: {response['error']}")
            return []
        return response.get("result") or []
