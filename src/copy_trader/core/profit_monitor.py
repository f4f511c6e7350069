import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Protocol

from .balances import to_ui_amount
from .constants import NATIVE_DECIMALS, WSOL_MINT
from .errors import NotOpenError
from .position_tracker import Position, PositionTracker
from .types import DexVenue, SwapOutcome
from copy_trader.strategies.copy_trading_strategy import CopyTradingStrategy


class PriceSource(Protocol):
    async def expected_proceeds(self, position: Position) -> Optional[Decimal]:
        """SOL received for selling the whole position, net of slippage; None when unavailable"""
        ...


class SwapExecutor(Protocol):
    async def swap(self,
                   dex: DexVenue,
                   pool_or_route: Optional[str],
                   mint_in: str,
                   mint_out: str,
                   amount_in: int) -> SwapOutcome:
        ...


@dataclass
class ExitResult:
    mint: str
    success: bool
    proceeds: Decimal = Decimal(0)
    profit_pct: Decimal = Decimal(0)
    signature: Optional[str] = None
    error: Optional[str] = None


class ProfitMonitor:
    """
    Periodic exit check over open positions. Each cycle snapshots the
    tracker, prices every position concurrently and closes the ones whose
    expected proceeds beat `entry_amount * profit_multiplier`.
    """

    def __init__(self,
                 tracker: PositionTracker,
                 price_source: PriceSource,
                 executor: SwapExecutor,
                 logger: Any,
                 profit_multiplier: float = 1.25,
                 check_interval: float = 1.0,
                 trade_log: Any = None,
                 strategy: Optional[CopyTradingStrategy] = None,
                 native_mint: str = WSOL_MINT):
        self.tracker = tracker
        self.price_source = price_source
        self.executor = executor
        self.logger = logger
        self.strategy = strategy or CopyTradingStrategy(target_wallet="", profit_multiplier=profit_multiplier, logger=logger)
        self.check_interval = check_interval
        self.trade_log = trade_log
        self.native_mint = native_mint
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        """Wake the loop and let the current cycle, and any sale in it, finish"""
        self._stopping.set()
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self):
        self.logger.info(f"Profit monitor started: target {self.strategy.profit_multiplier}x, every {self.check_interval}s")
        while not self._stopping.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Profit check cycle failed: {str(e)}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.check_interval)
            except asyncio.TimeoutError:
                pass
        self.logger.info("Profit monitor stopped")

    async def run_cycle(self) -> List[ExitResult]:
        positions = await self.tracker.snapshot()
        if not positions:
            return []
        results = await asyncio.gather(
            *(self.check_position(position) for position in positions),
            return_exceptions=True,
        )
        exits = []
        for position, result in zip(positions, results):
            if isinstance(result, Exception):
                self.logger.error(f"Profit check for {position.mint} failed: {str(result)}")
            elif result is not None:
                exits.append(result)
        return exits

    async def check_position(self, position: Position) -> Optional[ExitResult]:
        try:
            proceeds = await self.price_source.expected_proceeds(position)
        except Exception as e:
            self.logger.warning(f"Price unavailable for {position.mint}: {str(e)}")
            return None
        if proceeds is None:
            return None

        target = self.strategy.exit_target(position)
        self.logger.debug(f"{position.mint}: expected {proceeds} SOL, target {target} SOL")
        signal = self.strategy.check_exit(position, proceeds)
        if not signal.is_valid:
            return None

        self.logger.info(f"Profit target hit for {position.mint}: {proceeds} > {target} SOL")
        return await self.close(position.mint, proceeds, reason=signal.reason)

    async def close(self, mint: str, expected_proceeds: Decimal, reason: str) -> Optional[ExitResult]:
        """
        Sell the whole position. `begin_close` runs before the swap so a
        mint never has two exits in flight; a failed swap reopens it.
        """
        try:
            position = await self.tracker.begin_close(mint)
        except NotOpenError:
            self.logger.debug(f"Exit for {mint} already in flight or position gone")
            return None

        # A submitted sale always reaches finalize_close or abort_close,
        # even when the caller is cancelled meanwhile
        return await asyncio.shield(self._sell(position, expected_proceeds, reason))

    async def _sell(self, position: Position, expected_proceeds: Decimal, reason: str) -> ExitResult:
        mint = position.mint
        try:
            outcome = await self.executor.swap(
                position.dex, position.pool_address, mint, self.native_mint, position.quantity
            )
        except Exception as e:
            outcome = SwapOutcome(success=False, error=str(e))

        if not outcome.success:
            await self.tracker.abort_close(mint)
            self.logger.error(f"Sale failed for {mint}: {outcome.error}")
            self._record("Error", position, expected_proceeds, f"Sale failed: {outcome.error}", outcome.signature)
            return ExitResult(mint=mint, success=False, error=outcome.error)

        proceeds = Decimal(expected_proceeds)
        if outcome.amount_out > 0:
            proceeds = to_ui_amount(outcome.amount_out, NATIVE_DECIMALS)

        await self.tracker.finalize_close(mint)
        profit_pct = position.realized_profit_pct(proceeds)
        self.logger.info(f"Sold {mint} for {proceeds} SOL, realized profit {profit_pct:.2f}%")
        self._record("Bot Sell", position, proceeds, f"{reason} ({profit_pct:.2f}%)", outcome.signature)
        return ExitResult(
            mint=mint,
            success=True,
            proceeds=proceeds,
            profit_pct=profit_pct,
            signature=outcome.signature,
        )

    def _record(self, action: str, position: Position, amount: Decimal, reason: str, signature: Optional[str]):
        if self.trade_log is None:
            return
        self.trade_log.record(
            action=action,
            token=position.mint,
            amount=amount,
            reason=reason,
            dex=position.dex.value,
            signature=signature,
            entry_amount=position.entry_amount,
            entry_fee=position.entry_fee,
        )
