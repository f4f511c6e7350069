from datetime import datetime
from typing import Any, Optional
import logging
import uuid

from copy_trader.core.types import DexVenue, SwapOutcome
from copy_trader.data.jupiter import JupiterClient

NETWORK_FEE_LAMPORTS = 5000  # Base signature fee


class DryRunExecutor:
    """
    Simulated SwapExecutor. Output comes from a live quote when a quote client
    is configured, 1:1 otherwise. Nothing is signed or sent.
    """

    def __init__(self,
                 quote_client: Optional[JupiterClient] = None,
                 slippage_bps: int = 500,
                 logger: Any = None):
        self.quote_client = quote_client
        self.slippage_bps = slippage_bps
        self.logger = logger or logging.getLogger(__name__)
        self.history = []

    async def swap(self,
                   dex: DexVenue,
                   pool_or_route: Optional[str],
                   mint_in: str,
                   mint_out: str,
                   amount_in: int) -> SwapOutcome:
        try:
            amount_out = amount_in
            if self.quote_client is not None:
                quote = await self.quote_client.get_quote(mint_in, mint_out, amount_in, self.slippage_bps)
                amount_out = quote.out_amount

            signature = f"dry-run-{uuid.uuid4().hex}"
            self.history.append({
                "timestamp": datetime.now(),
                "dex": dex.value,
                "pool": pool_or_route,
                "mint_in": mint_in,
                "mint_out": mint_out,
                "amount_in": amount_in,
                "amount_out": amount_out,
                "signature": signature,
            })
            self.logger.info(f"DRY RUN swap on {dex.value}: {amount_in} {mint_in} -> {amount_out} {mint_out}")
            return SwapOutcome(success=True, signature=signature, amount_out=amount_out, fee=NETWORK_FEE_LAMPORTS)

        except Exception as e:
            self.logger.error(f"Simulated swap failed: {str(e)}")
            return SwapOutcome(success=False, error=str(e))
