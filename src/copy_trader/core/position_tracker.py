from dataclasses import dataclass, field, replace
import asyncio
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import AlreadyOpenError, NotClosingError, NotOpenError
from .types import DexVenue


class PositionStatus(str, Enum):
    OPEN = "Open"
    CLOSING = "Closing"
    CLOSED = "Closed"


@dataclass
class Position:
    """An open mirrored position; native amounts in SOL, quantity in token base units"""
    mint: str
    entry_amount: Decimal
    entry_fee: Decimal
    dex: DexVenue
    decimals: int
    quantity: int
    pool_address: Optional[str] = None
    symbol: Optional[str] = None
    wallet_followed: Optional[str] = None
    entry_signature: Optional[str] = None
    entry_time: datetime = field(default_factory=datetime.now)
    status: PositionStatus = PositionStatus.OPEN

    @property
    def cost_basis(self) -> Decimal:
        return self.entry_amount + self.entry_fee

    def realized_profit_pct(self, proceeds: Decimal) -> Decimal:
        """(proceeds - entry - fee) / (entry + fee) * 100"""
        if self.cost_basis == 0:
            return Decimal(0)
        return (Decimal(proceeds) - self.entry_amount - self.entry_fee) / self.cost_basis * 100


class PositionTracker:
    """
    Open positions keyed by mint. The methods below are the only way to
    mutate the table; `begin_close` is the serialization point that keeps a
    mint to a single in-flight exit.
    """

    def __init__(self, logger: Any):
        self.logger = logger
        self.positions: Dict[str, Position] = {}
        self.position_lock = asyncio.Lock()

    async def open(self,
                   mint: str,
                   entry_amount: Decimal,
                   fee: Decimal,
                   dex: DexVenue,
                   pool_address: Optional[str],
                   decimals: int,
                   symbol: Optional[str],
                   quantity: int,
                   wallet_followed: Optional[str] = None,
                   entry_signature: Optional[str] = None) -> Position:
        async with self.position_lock:
            if mint in self.positions:
                raise AlreadyOpenError(mint, f"Position already open for {mint}")
            position = Position(
                mint=mint,
                entry_amount=Decimal(entry_amount),
                entry_fee=Decimal(fee),
                dex=dex,
                pool_address=pool_address,
                decimals=decimals,
                symbol=symbol,
                quantity=quantity,
                wallet_followed=wallet_followed,
                entry_signature=entry_signature,
            )
            self.positions[mint] = position
            self.logger.info(f"Opened position {mint}: {entry_amount} SOL for {quantity} base units on {dex.value}")
            return replace(position)

    async def begin_close(self, mint: str) -> Position:
        async with self.position_lock:
            position = self.positions.get(mint)
            if position is None or position.status != PositionStatus.OPEN:
                raise NotOpenError(mint, f"No open position to close for {mint}")
            position.status = PositionStatus.CLOSING
            return replace(position)

    async def finalize_close(self, mint: str) -> Position:
        async with self.position_lock:
            position = self.positions.get(mint)
            if position is None or position.status != PositionStatus.CLOSING:
                raise NotClosingError(mint, f"Position {mint} is not closing")
            del self.positions[mint]
            position.status = PositionStatus.CLOSED
            self.logger.info(f"Closed position {mint}")
            return position

    async def abort_close(self, mint: str) -> None:
        async with self.position_lock:
            position = self.positions.get(mint)
            if position is not None and position.status == PositionStatus.CLOSING:
                position.status = PositionStatus.OPEN
                self.logger.warning(f"Exit aborted for {mint}, position reopened")

    async def snapshot(self) -> List[Position]:
        """Copies of open positions in opening order, safe to use without the lock"""
        async with self.position_lock:
            return [replace(p) for p in self.positions.values() if p.status == PositionStatus.OPEN]

    async def get(self, mint: str) -> Optional[Position]:
        async with self.position_lock:
            position = self.positions.get(mint)
            return replace(position) if position is not None else None

    async def has(self, mint: str) -> bool:
        async with self.position_lock:
            return mint in self.positions

    async def count(self) -> int:
        async with self.position_lock:
            return len(self.positions)
