from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


class DexVenue(str, Enum):
    RAYDIUM_AMM_V4 = "raydium_amm_v4"
    RAYDIUM_CPMM = "raydium_cpmm"
    RAYDIUM_CLMM = "raydium_clmm"
    PUMP_SWAP = "pump_swap"
    JUPITER = "jupiter"


class SwapClassification(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    SWAP = "Swap"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class TokenLeg:
    """One side of a swap, amount in the mint's base units"""
    mint: str
    amount: int
    decimals: int
    symbol: Optional[str] = None

    @property
    def ui_amount(self) -> Decimal:
        return Decimal(self.amount).scaleb(-self.decimals)

    def label(self) -> str:
        return self.symbol or self.mint


@dataclass(frozen=True)
class SwapResult:
    signature: str
    dex: DexVenue
    classification: SwapClassification
    from_leg: TokenLeg
    to_leg: TokenLeg
    pool_address: Optional[str] = None
    wallet: Optional[str] = None
    low_confidence: bool = False

    @property
    def is_buy(self) -> bool:
        return self.classification == SwapClassification.BUY

    @property
    def is_sell(self) -> bool:
        return self.classification == SwapClassification.SELL

    @property
    def traded_mint(self) -> str:
        """The non-native mint of a Buy or Sell"""
        return self.to_leg.mint if self.is_buy else self.from_leg.mint

    @property
    def traded_leg(self) -> TokenLeg:
        return self.to_leg if self.is_buy else self.from_leg

    @property
    def native_leg(self) -> TokenLeg:
        return self.from_leg if self.is_buy else self.to_leg

    def as_dict(self) -> dict:
        return {
            "signature": self.signature,
            "dex": self.dex.value,
            "type": self.classification.value,
            "pool_address": self.pool_address,
            "wallet": self.wallet,
            "from": {
                "token_address": self.from_leg.mint,
                "amount": str(self.from_leg.ui_amount),
                "symbol": self.from_leg.symbol,
                "decimals": self.from_leg.decimals,
            },
            "to": {
                "token_address": self.to_leg.mint,
                "amount": str(self.to_leg.ui_amount),
                "symbol": self.to_leg.symbol,
                "decimals": self.to_leg.decimals,
            },
        }


@dataclass(frozen=True)
class AccountInfo:
    owner: str
    data: bytes
    lamports: int = 0


@dataclass
class SwapOutcome:
    """Terminal result of a SwapExecutor call; amounts in base units"""
    success: bool
    signature: Optional[str] = None
    amount_out: int = 0
    fee: int = 0
    error: Optional[str] = None


@dataclass
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    min_out_amount: int
    slippage_bps: int
    raw: dict = field(default_factory=dict, repr=False)
