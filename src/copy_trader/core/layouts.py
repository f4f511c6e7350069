"""
Fixed binary layouts of the on-chain accounts the bot reads.

Each pool program has exactly one layout, described with `construct` and
decoded through `decode_pool`, which returns a typed `PoolState`. Anchor
programs are checked against their 8-byte account discriminator and every
layout against its minimum size, so a program upgrade that changes the
account shape surfaces as a `DecodeError` instead of garbage mints.
"""
import hashlib
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from construct import (
    Adapter, Array, Bytes, BytesInteger, ConstructError,
    Int8ul, Int16ul, Int32sl, Int64ul, Struct,
)
from solders.pubkey import Pubkey

from .constants import WSOL_MINT
from .errors import DecodeError
from .types import DexVenue


class PubkeyAdapter(Adapter):
    def _decode(self, obj, context, path):
        return str(Pubkey.from_bytes(obj))

    def _encode(self, obj, context, path):
        return bytes(Pubkey.from_string(obj))


PUBKEY = PubkeyAdapter(Bytes(32))
U128 = BytesInteger(16, swapped=True)


def anchor_discriminator(account_name: str) -> bytes:
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:8]


RAYDIUM_AMM_V4_LAYOUT = Struct(
    "status" / Int64ul,
    "nonce" / Int64ul,
    "max_order" / Int64ul,
    "depth" / Int64ul,
    "base_decimal" / Int64ul,
    "quote_decimal" / Int64ul,
    "state" / Int64ul,
    "reset_flag" / Int64ul,
    "min_size" / Int64ul,
    "vol_max_cut_ratio" / Int64ul,
    "amount_wave_ratio" / Int64ul,
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "min_price_multiplier" / Int64ul,
    "max_price_multiplier" / Int64ul,
    "system_decimal_value" / Int64ul,
    "min_separate_numerator" / Int64ul,
    "min_separate_denominator" / Int64ul,
    "trade_fee_numerator" / Int64ul,
    "trade_fee_denominator" / Int64ul,
    "pnl_numerator" / Int64ul,
    "pnl_denominator" / Int64ul,
    "swap_fee_numerator" / Int64ul,
    "swap_fee_denominator" / Int64ul,
    "base_need_take_pnl" / Int64ul,
    "quote_need_take_pnl" / Int64ul,
    "quote_total_pnl" / Int64ul,
    "base_total_pnl" / Int64ul,
    "pool_open_time" / Int64ul,
    "punish_pc_amount" / Int64ul,
    "punish_coin_amount" / Int64ul,
    "orderbook_to_init_time" / Int64ul,
    "swap_base_in_amount" / U128,
    "swap_quote_out_amount" / U128,
    "swap_base2quote_fee" / Int64ul,
    "swap_quote_in_amount" / U128,
    "swap_base_out_amount" / U128,
    "swap_quote2base_fee" / Int64ul,
    "base_vault" / PUBKEY,
    "quote_vault" / PUBKEY,
    "base_mint" / PUBKEY,
    "quote_mint" / PUBKEY,
    "lp_mint" / PUBKEY,
    "open_orders" / PUBKEY,
    "market_id" / PUBKEY,
    "market_program_id" / PUBKEY,
    "target_orders" / PUBKEY,
    "withdraw_queue" / PUBKEY,
    "lp_vault" / PUBKEY,
    "owner" / PUBKEY,
    "lp_reserve" / Int64ul,
    "padding" / Array(3, Int64ul),
)

RAYDIUM_CPMM_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "amm_config" / PUBKEY,
    "pool_creator" / PUBKEY,
    "token_0_vault" / PUBKEY,
    "token_1_vault" / PUBKEY,
    "lp_mint" / PUBKEY,
    "token_0_mint" / PUBKEY,
    "token_1_mint" / PUBKEY,
    "token_0_program" / PUBKEY,
    "token_1_program" / PUBKEY,
    "observation_key" / PUBKEY,
    "auth_bump" / Int8ul,
    "status" / Int8ul,
    "lp_mint_decimals" / Int8ul,
    "mint_0_decimals" / Int8ul,
    "mint_1_decimals" / Int8ul,
)

RAYDIUM_CLMM_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "bump" / Int8ul,
    "amm_config" / PUBKEY,
    "owner" / PUBKEY,
    "token_mint_0" / PUBKEY,
    "token_mint_1" / PUBKEY,
    "token_vault_0" / PUBKEY,
    "token_vault_1" / PUBKEY,
    "observation_key" / PUBKEY,
    "mint_decimals_0" / Int8ul,
    "mint_decimals_1" / Int8ul,
    "tick_spacing" / Int16ul,
    "liquidity" / U128,
    "sqrt_price_x64" / U128,
    "tick_current" / Int32sl,
)

PUMP_SWAP_POOL_LAYOUT = Struct(
    "discriminator" / Bytes(8),
    "pool_bump" / Int8ul,
    "index" / Int16ul,
    "creator" / PUBKEY,
    "base_mint" / PUBKEY,
    "quote_mint" / PUBKEY,
    "lp_mint" / PUBKEY,
    "pool_base_token_account" / PUBKEY,
    "pool_quote_token_account" / PUBKEY,
    "lp_supply" / Int64ul,
)

SPL_TOKEN_ACCOUNT_LAYOUT = Struct(
    "mint" / PUBKEY,
    "owner" / PUBKEY,
    "amount" / Int64ul,
)

@dataclass(frozen=True)
class PoolState:
    venue: DexVenue
    address: str
    mint_a: str
    mint_b: str
    vault_a: str
    vault_b: str
    decimals_a: Optional[int] = None
    decimals_b: Optional[int] = None

    @property
    def mints(self):
        return (self.mint_a, self.mint_b)

    def has_native(self, native_mint: str = WSOL_MINT) -> bool:
        return native_mint in self.mints

    def non_native_mint(self, native_mint: str = WSOL_MINT) -> str:
        """Mint of the non-native leg (mint_a when neither or both are native)"""
        if self.mint_a == native_mint and self.mint_b != native_mint:
            return self.mint_b
        return self.mint_a

    def other_mint(self, mint: str) -> str:
        return self.mint_b if mint == self.mint_a else self.mint_a

    def vault_for(self, mint: str) -> str:
        if mint == self.mint_a:
            return self.vault_a
        if mint == self.mint_b:
            return self.vault_b
        raise KeyError(mint)

    def decimals_for(self, mint: str) -> Optional[int]:
        if mint == self.mint_a:
            return self.decimals_a
        if mint == self.mint_b:
            return self.decimals_b
        return None


@dataclass(frozen=True)
class PoolLayout:
    venue: DexVenue
    struct: Struct
    build: Callable[[str, object], PoolState]
    discriminator: Optional[bytes] = None
    exact_sizes: Optional[FrozenSet[int]] = None

    @property
    def min_size(self) -> int:
        return self.struct.sizeof()


def _raydium_amm_v4(address: str, parsed) -> PoolState:
    return PoolState(
        venue=DexVenue.RAYDIUM_AMM_V4,
        address=address,
        mint_a=parsed.base_mint,
        mint_b=parsed.quote_mint,
        vault_a=parsed.base_vault,
        vault_b=parsed.quote_vault,
        decimals_a=int(parsed.base_decimal),
        decimals_b=int(parsed.quote_decimal),
    )


def _raydium_cpmm(address: str, parsed) -> PoolState:
    return PoolState(
        venue=DexVenue.RAYDIUM_CPMM,
        address=address,
        mint_a=parsed.token_0_mint,
        mint_b=parsed.token_1_mint,
        vault_a=parsed.token_0_vault,
        vault_b=parsed.token_1_vault,
        decimals_a=parsed.mint_0_decimals,
        decimals_b=parsed.mint_1_decimals,
    )


def _raydium_clmm(address: str, parsed) -> PoolState:
    return PoolState(
        venue=DexVenue.RAYDIUM_CLMM,
        address=address,
        mint_a=parsed.token_mint_0,
        mint_b=parsed.token_mint_1,
        vault_a=parsed.token_vault_0,
        vault_b=parsed.token_vault_1,
        decimals_a=parsed.mint_decimals_0,
        decimals_b=parsed.mint_decimals_1,
    )


def _pump_swap(address: str, parsed) -> PoolState:
    return PoolState(
        venue=DexVenue.PUMP_SWAP,
        address=address,
        mint_a=parsed.base_mint,
        mint_b=parsed.quote_mint,
        vault_a=parsed.pool_base_token_account,
        vault_b=parsed.pool_quote_token_account,
    )


POOL_LAYOUTS: Dict[DexVenue, PoolLayout] = {
    DexVenue.RAYDIUM_AMM_V4: PoolLayout(
        venue=DexVenue.RAYDIUM_AMM_V4,
        struct=RAYDIUM_AMM_V4_LAYOUT,
        build=_raydium_amm_v4,
        exact_sizes=frozenset({752}),
    ),
    DexVenue.RAYDIUM_CPMM: PoolLayout(
        venue=DexVenue.RAYDIUM_CPMM,
        struct=RAYDIUM_CPMM_LAYOUT,
        build=_raydium_cpmm,
        discriminator=anchor_discriminator("PoolState"),
    ),
    DexVenue.RAYDIUM_CLMM: PoolLayout(
        venue=DexVenue.RAYDIUM_CLMM,
        struct=RAYDIUM_CLMM_LAYOUT,
        build=_raydium_clmm,
        discriminator=anchor_discriminator("PoolState"),
    ),
    DexVenue.PUMP_SWAP: PoolLayout(
        venue=DexVenue.PUMP_SWAP,
        struct=PUMP_SWAP_POOL_LAYOUT,
        build=_pump_swap,
        discriminator=anchor_discriminator("Pool"),
    ),
}


def decode_pool(venue: DexVenue, address: str, data: bytes) -> PoolState:
    """Decode a pool account of `venue` into a PoolState, or raise DecodeError"""
    layout = POOL_LAYOUTS.get(venue)
    if layout is None:
        raise DecodeError(f"No pool layout for venue {venue.value}", address, len(data), data[:16].hex())

    if layout.exact_sizes is not None and len(data) not in layout.exact_sizes:
        raise DecodeError(
            f"Unexpected {venue.value} layout version: {len(data)} bytes, expected {sorted(layout.exact_sizes)}",
            address, len(data), data[:16].hex(),
        )
    if len(data) < layout.min_size:
        raise DecodeError(
            f"Truncated {venue.value} pool account: {len(data)} bytes, need {layout.min_size}",
            address, len(data), data[:16].hex(),
        )
    if layout.discriminator is not None and data[:8] != layout.discriminator:
        raise DecodeError(f"Account discriminator mismatch for {venue.value}", address, len(data), data[:16].hex())

    try:
        parsed = layout.struct.parse(data)
    except (ConstructError, ValueError) as e:
        raise DecodeError(f"Failed to decode {venue.value} pool: {e}", address, len(data), data[:16].hex()) from e
    return layout.build(address, parsed)


def decode_token_account_amount(data: bytes, address: Optional[str] = None) -> int:
    """Raw `amount` of an SPL token account"""
    if len(data) < SPL_TOKEN_ACCOUNT_LAYOUT.sizeof():
        raise DecodeError(f"Truncated token account: {len(data)} bytes", address, len(data), data[:16].hex())
    return SPL_TOKEN_ACCOUNT_LAYOUT.parse(data).amount
