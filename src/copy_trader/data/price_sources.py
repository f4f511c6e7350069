import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from copy_trader.core.balances import to_ui_amount
from copy_trader.core.constants import NATIVE_DECIMALS, WSOL_MINT
from copy_trader.core.layouts import PoolState, decode_pool, decode_token_account_amount
from copy_trader.core.pool_locator import AccountReader
from copy_trader.core.position_tracker import Position
from copy_trader.core.types import DexVenue
from .jupiter import JupiterClient

# Venues whose reserves follow x * y = k
CONSTANT_PRODUCT_VENUES = frozenset({DexVenue.RAYDIUM_AMM_V4, DexVenue.RAYDIUM_CPMM, DexVenue.PUMP_SWAP})


def constant_product_out(amount_in: int, reserve_in: int, reserve_out: int, slippage_pct: float = 0) -> int:
    """Output of selling `amount_in` into an x*y=k pool, reduced by the slippage allowance"""
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    out = Decimal(amount_in) * Decimal(reserve_out) / (Decimal(reserve_in) + Decimal(amount_in))
    out = out * (Decimal(100) - Decimal(str(slippage_pct))) / Decimal(100)
    return int(out)


class ReservePriceSource:
    """
    Expected exit proceeds from the pool's current vault balances. Positions
    without a constant-product pool go to `fallback` when one is given.
    """

    def __init__(self,
                 reader: AccountReader,
                 slippage_pct: float = 5.0,
                 fallback: Any = None,
                 native_mint: str = WSOL_MINT,
                 logger: Optional[logging.Logger] = None):
        self.reader = reader
        self.slippage_pct = slippage_pct
        self.fallback = fallback
        self.native_mint = native_mint
        self.logger = logger or logging.getLogger(__name__)
        self._pools: Dict[str, PoolState] = {}

    async def expected_proceeds(self, position: Position) -> Optional[Decimal]:
        if position.pool_address is None or position.dex not in CONSTANT_PRODUCT_VENUES:
            return await self._fallback(position)

        pool = await self._pool(position.dex, position.pool_address)
        if pool is None or not pool.has_native(self.native_mint) or position.mint not in pool.mints:
            return await self._fallback(position)

        reserves = await self.get_reserves(pool, position.mint)
        if reserves is None:
            return None
        reserve_in, reserve_out = reserves
        out = constant_product_out(position.quantity, reserve_in, reserve_out, self.slippage_pct)
        return to_ui_amount(out, NATIVE_DECIMALS)

    async def get_reserves(self, pool: PoolState, mint_in: str) -> Optional[Tuple[int, int]]:
        """(reserve of mint_in, reserve of the other mint) in base units"""
        vault_in = pool.vault_for(mint_in)
        vault_out = pool.vault_for(pool.other_mint(mint_in))
        accounts = await self.reader.get_multiple_accounts([vault_in, vault_out])
        if len(accounts) != 2 or any(account is None for account in accounts):
            self.logger.warning(f"Vault accounts of pool {pool.address} unavailable")
            return None
        return (
            decode_token_account_amount(accounts[0].data, vault_in),
            decode_token_account_amount(accounts[1].data, vault_out),
        )

    async def _pool(self, venue: DexVenue, address: str) -> Optional[PoolState]:
        if address in self._pools:
            return self._pools[address]
        account = await self.reader.get_account(address)
        if account is None:
            self.logger.warning(f"Pool account {address} unavailable")
            return None
        pool = decode_pool(venue, address, account.data)
        self._pools[address] = pool
        return pool

    async def _fallback(self, position: Position) -> Optional[Decimal]:
        if self.fallback is None:
            return None
        return await self.fallback.expected_proceeds(position)


class QuotePriceSource:
    """Expected exit proceeds from a live aggregator quote (minimum out after slippage)"""

    def __init__(self,
                 jupiter: JupiterClient,
                 slippage_pct: float = 5.0,
                 native_mint: str = WSOL_MINT,
                 logger: Optional[logging.Logger] = None):
        self.jupiter = jupiter
        self.slippage_bps = int(round(slippage_pct * 100))
        self.native_mint = native_mint
        self.logger = logger or logging.getLogger(__name__)

    async def expected_proceeds(self, position: Position) -> Optional[Decimal]:
        if position.quantity <= 0:
            return None
        quote = await self.jupiter.get_quote(position.mint, self.native_mint, position.quantity, self.slippage_bps)
        out = quote.min_out_amount or quote.out_amount
        return to_ui_amount(out, NATIVE_DECIMALS)
