import asyncio
import logging
import time
from typing import Any, List, Optional

from .ledger_watcher import NotificationCallback
from .rpc import RpcTransactionFetcher


class SignaturePoller:
    """
    Pull-based ledger watcher. Every `interval` seconds fetches the latest
    `limit` signatures of the address and dispatches them oldest first.
    Signatures are not deduplicated here; the consumer owns that.
    """

    def __init__(self,
                 fetcher: RpcTransactionFetcher,
                 address: str,
                 logger: Any = None,
                 interval: float = 5.0,
                 limit: int = 10,
                 start_time: Optional[float] = None):
        self.fetcher = fetcher
        self.address = address
        self.interval = interval
        self.limit = limit
        self.start_time = start_time if start_time is not None else time.time()
        self.logger = logger or logging.getLogger(__name__)
        self.callbacks: List[NotificationCallback] = []
        self.is_running = False
        self._stopping = asyncio.Event()

    def add_callback(self, callback: NotificationCallback):
        self.callbacks.append(callback)

    def subscribe(self, address: str, callback: NotificationCallback):
        self.address = address
        self.add_callback(callback)

    async def start(self):
        self.is_running = True
        self._stopping.clear()
        self.logger.info(f"Polling signatures of {self.address} every {self.interval}s (limit {self.limit})")
        while self.is_running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Signature poll failed: {str(e)}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self):
        self.is_running = False
        self._stopping.set()

    async def poll_once(self) -> int:
        """Dispatch one batch; returns how many signatures were handed on"""
        entries = await self.fetcher.get_signatures_for_address(self.address, self.limit)
        dispatched = 0
        for entry in reversed(entries):
            signature = entry.get("signature")
            if not signature:
                continue
            block_time = entry.get("blockTime")
            if block_time is not None and block_time < self.start_time:
                continue
            results = await asyncio.gather(
                *(callback(None, entry.get("err"), signature) for callback in self.callbacks),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    self.logger.error(f"Callback failed for {signature}: {str(result)}")
            dispatched += 1
        return dispatched
