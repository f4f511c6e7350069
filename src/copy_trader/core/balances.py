import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple, Union

from .constants import DEFAULT_DECIMALS, WSOL_MINT
from .errors import CircularSwapError, UnknownDirectionError
from .transaction import TokenBalance
from .types import SwapClassification

Number = Union[int, float, str, Decimal]


def to_base_units(ui_amount: Number, decimals: int) -> int:
    """Scale a human amount to the mint's smallest unit, rounding half up"""
    value = Decimal(str(ui_amount)).scaleb(decimals)
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def to_ui_amount(amount: int, decimals: int) -> Decimal:
    return Decimal(int(amount)).scaleb(-decimals)


@dataclass(frozen=True)
class BalanceDelta:
    mint: str
    delta: Decimal
    decimals: int
    low_confidence: bool = False

    @property
    def base_amount(self) -> int:
        """Absolute size of the delta in base units"""
        return abs(to_base_units(self.delta, self.decimals))

    @property
    def is_zero(self) -> bool:
        return self.delta == 0

    def negated(self) -> "BalanceDelta":
        return BalanceDelta(self.mint, -self.delta, self.decimals, self.low_confidence)

    def with_decimals(self, decimals: int) -> "BalanceDelta":
        """Re-quantize once the mint's real decimals are known"""
        delta = self.delta.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
        return BalanceDelta(self.mint, delta, decimals, low_confidence=False)

    @classmethod
    def from_base_units(cls, mint: str, amount: int, decimals: int, low_confidence: bool = False) -> "BalanceDelta":
        return cls(mint, to_ui_amount(amount, decimals), decimals, low_confidence)


class BalanceDiffEngine:
    """Signed per-mint balance changes from pre/post token balance snapshots"""

    def __init__(self, default_decimals: int = DEFAULT_DECIMALS, logger: Optional[logging.Logger] = None):
        self.default_decimals = default_decimals
        self.logger = logger or logging.getLogger(__name__)

    def diff(self,
             pre_balances: Iterable[TokenBalance],
             post_balances: Iterable[TokenBalance],
             mint: str,
             owner: Optional[str] = None) -> BalanceDelta:
        """
        post - pre for `mint`, summed over every record owned by `owner`
        (all owners when `owner` is None). Missing records count as zero.
        """
        pre_balances = list(pre_balances)
        post_balances = list(post_balances)

        pre_total = self._sum(pre_balances, mint, owner)
        post_total = self._sum(post_balances, mint, owner)

        decimals = self._resolve_decimals(pre_balances + post_balances, mint, owner)
        low_confidence = decimals is None
        if low_confidence:
            self.logger.debug(f"Decimals unresolved for {mint}, rounding to {self.default_decimals}")
            decimals = self.default_decimals

        delta = (post_total - pre_total).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
        return BalanceDelta(mint=mint, delta=delta, decimals=decimals, low_confidence=low_confidence)

    @staticmethod
    def _sum(balances, mint: str, owner: Optional[str]) -> Decimal:
        total = Decimal(0)
        for balance in balances:
            if balance.mint != mint:
                continue
            if owner is not None and balance.owner != owner:
                continue
            total += balance.ui_amount
        return total

    @staticmethod
    def _resolve_decimals(balances, mint: str, owner: Optional[str]) -> Optional[int]:
        # Prefer the filtered owner's record, any record of the mint otherwise
        fallback = None
        for balance in balances:
            if balance.mint != mint or balance.decimals is None:
                continue
            if owner is None or balance.owner == owner:
                return balance.decimals
            fallback = balance.decimals
        return fallback


def classify_direction(first: BalanceDelta,
                       second: BalanceDelta,
                       native_mint: str = WSOL_MINT) -> Tuple[SwapClassification, BalanceDelta, BalanceDelta]:
    """
    Order two leg deltas into (classification, from, to).

    The negative leg is `from` and the positive leg is `to`. Native asset as
    `from` is a Buy, as `to` a Sell, anything else a Swap.
    """
    if first.mint == second.mint:
        raise CircularSwapError(f"Both legs use mint {first.mint}")

    if first.delta < 0 < second.delta:
        from_delta, to_delta = first, second
    elif second.delta < 0 < first.delta:
        from_delta, to_delta = second, first
    else:
        raise UnknownDirectionError(
            f"Inconsistent leg deltas: {first.mint}={first.delta}, {second.mint}={second.delta}"
        )

    if from_delta.mint == native_mint:
        classification = SwapClassification.BUY
    elif to_delta.mint == native_mint:
        classification = SwapClassification.SELL
    else:
        classification = SwapClassification.SWAP
    return classification, from_delta, to_delta
