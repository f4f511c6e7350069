import asyncio
import base64
from typing import Optional, Tuple
from logging import Logger

from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from copy_trader.core.balances import BalanceDiffEngine
from copy_trader.core.constants import WSOL_MINT
from copy_trader.core.errors import ExecutionError
from copy_trader.core.types import DexVenue, SwapOutcome
from copy_trader.data.jupiter import JupiterClient
from copy_trader.data.rpc import RpcClient, RpcTransactionFetcher
from .dry_run_executor import NETWORK_FEE_LAMPORTS


class LiveRunExecutor:
    """
    Executes swaps through the aggregator: quote, build, sign, submit once,
    wait for confirmation. The aggregator routes through the same pools the
    followed wallet used, so the venue and pool are informational here.
    """

    def __init__(self,
                 wallet: Keypair,
                 rpc: RpcClient,
                 jupiter: JupiterClient,
                 logger: Logger,
                 slippage_bps: int = 500,
                 priority_fee_lamports: int = 100_000,
                 confirm_timeout: float = 30.0,
                 max_retries: int = 3,
                 fetcher: Optional[RpcTransactionFetcher] = None):
        self.wallet = wallet
        self.rpc = rpc
        self.client = rpc.client
        self.jupiter = jupiter
        self.logger = logger
        self.slippage_bps = slippage_bps
        self.priority_fee_lamports = priority_fee_lamports
        self.confirm_timeout = confirm_timeout
        self.max_retries = max_retries
        self.fetcher = fetcher
        self.engine = BalanceDiffEngine()

    @property
    def public_key(self) -> str:
        return str(self.wallet.pubkey())

    async def swap(self,
                   dex: DexVenue,
                   pool_or_route: Optional[str],
                   mint_in: str,
                   mint_out: str,
                   amount_in: int) -> SwapOutcome:
        try:
            quote, transaction = await self._build(mint_in, mint_out, amount_in)
        except ExecutionError as e:
            self.logger.error(f"Error building swap {mint_in} -> {mint_out}: {str(e)}")
            return SwapOutcome(success=False, error=str(e))

        # Submitted exactly once; nothing below retries the send
        try:
            response = await self.client.send_raw_transaction(
                bytes(transaction),
                opts=TxOpts(skip_preflight=True, preflight_commitment=Confirmed, max_retries=5),
            )
            signature = response.value
        except Exception as e:
            self.logger.error(f"Error submitting swap transaction: {str(e)}")
            return SwapOutcome(success=False, error=str(e))

        self.logger.info(f"Swap transaction sent ({dex.value}, pool {pool_or_route}): {signature}")
        confirmed, error = await self._confirm(signature)
        if not confirmed:
            return SwapOutcome(success=False, signature=str(signature), error=error)

        amount_out, fee = await self._settlement(str(signature), mint_out)
        return SwapOutcome(
            success=True,
            signature=str(signature),
            amount_out=amount_out if amount_out is not None else quote.out_amount,
            fee=fee,
        )

    async def _build(self, mint_in: str, mint_out: str, amount_in: int):
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                quote = await self.jupiter.get_quote(mint_in, mint_out, amount_in, self.slippage_bps)
                encoded = await self.jupiter.get_swap_transaction(quote, self.public_key, self.priority_fee_lamports)
                return quote, self.sign(encoded)
            except ExecutionError as e:
                last_error = e
                self.logger.warning(f"Swap build attempt {attempt}/{self.max_retries} failed: {str(e)}")
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5 * attempt)
        raise ExecutionError(str(last_error))

    def sign(self, encoded_transaction: str) -> VersionedTransaction:
        """Deserialize the aggregator's base64 transaction and sign it with the wallet"""
        try:
            raw = VersionedTransaction.from_bytes(base64.b64decode(encoded_transaction))
            return VersionedTransaction(raw.message, [self.wallet])
        except Exception as e:
            raise ExecutionError(f"Invalid swap transaction: {str(e)}") from e

    async def _confirm(self, signature: Signature):
        try:
            response = await asyncio.wait_for(
                self.client.confirm_transaction(signature, commitment=Confirmed, sleep_seconds=0.5),
                timeout=self.confirm_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.error(f"Confirmation of {signature} timed out after {self.confirm_timeout}s")
            return False, "confirmation timeout"
        except Exception as e:
            self.logger.error(f"Confirmation of {signature} failed: {str(e)}")
            return False, str(e)

        status = response.value[0] if response.value else None
        if status is None:
            return False, "signature status unavailable"
        if status.err is not None:
            self.logger.error(f"Swap {signature} failed on chain: {status.err}")
            return False, str(status.err)
        return True, None

    async def _settlement(self, signature: str, mint_out: str) -> Tuple[Optional[int], int]:
        """
        Received amount and fee paid, read from the confirmed transaction.
        Without it the amount is None and the fee is the base plus priority fee.
        """
        estimated_fee = NETWORK_FEE_LAMPORTS + self.priority_fee_lamports
        if self.fetcher is None:
            return None, estimated_fee
        try:
            tx = await self.fetcher.get_parsed_transaction(signature)
        except Exception as e:
            self.logger.warning(f"Could not fetch confirmed swap {signature}: {str(e)}")
            return None, estimated_fee
        if tx is None:
            return None, estimated_fee

        if mint_out == WSOL_MINT:
            # Unwrapped to native SOL by the aggregator
            delta = tx.lamport_delta(self.public_key) - tx.fee
            return (delta if delta > 0 else None), tx.fee
        delta = self.engine.diff(tx.pre_token_balances, tx.post_token_balances, mint_out, owner=self.public_key)
        return (delta.base_amount if delta.delta > 0 else None), tx.fee
