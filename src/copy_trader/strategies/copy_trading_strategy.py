from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional
import logging

from copy_trader.core.position_tracker import Position
from copy_trader.core.types import SwapResult


@dataclass
class Signal:
    is_valid: bool
    reason: str = ""
    wallet_address: Optional[str] = None
    transaction_hash: Optional[str] = None


class CopyTradingStrategy:
    def __init__(self,
                 target_wallet: str,
                 min_trade_size_sol: float = 0.0,
                 profit_multiplier: float = 1.25,
                 logger: Any = None):
        self.target_wallet = target_wallet
        self.min_trade_size = Decimal(str(min_trade_size_sol))
        self.profit_multiplier = Decimal(str(profit_multiplier))
        self.logger = logger or logging.getLogger(__name__)

    def generate_signal(self, result: SwapResult, already_held: bool = False) -> Signal:
        """
        Entry decision for a classified Buy by the followed wallet
        """
        if not result.is_buy:
            return Signal(is_valid=False, reason=f"Not a buy ({result.classification.value})",
                          transaction_hash=result.signature)

        trade_size = result.native_leg.ui_amount
        if trade_size < self.min_trade_size:
            return Signal(
                is_valid=False,
                reason="Below minimum trade size",
                wallet_address=result.wallet,
                transaction_hash=result.signature,
            )

        if already_held:
            return Signal(
                is_valid=False,
                reason="Token already purchased",
                wallet_address=result.wallet,
                transaction_hash=result.signature,
            )

        return Signal(is_valid=True, wallet_address=result.wallet, transaction_hash=result.signature)

    def exit_target(self, position: Position) -> Decimal:
        return position.entry_amount * self.profit_multiplier

    def check_exit(self, position: Position, proceeds: Decimal, trade_wallet: Optional[str] = None) -> Signal:
        """Exit when expected proceeds beat the target, or when the followed wallet sells"""
        if trade_wallet is not None and trade_wallet == (position.wallet_followed or self.target_wallet):
            return Signal(is_valid=True, reason="Followed wallet sold", wallet_address=trade_wallet)

        if proceeds is not None and Decimal(proceeds) > self.exit_target(position):
            return Signal(is_valid=True, reason="Profit target reached", wallet_address=position.wallet_followed)

        return Signal(is_valid=False, wallet_address=position.wallet_followed)
