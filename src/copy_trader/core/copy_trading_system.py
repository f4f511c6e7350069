"""
Notification driver: turns ledger notifications about the followed wallet
into mirrored buys and exits.

    notification -> dedup window -> fetch -> classify -> strategy filter
        Buy  -> SwapExecutor (SOL -> token) -> PositionTracker.open
        Sell -> ProfitMonitor.close for a held mint

Each notification is handled in isolation: whatever fails is logged with a
reason and the next notification proceeds normally.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .balances import to_base_units, to_ui_amount
from .classifier import SwapClassifier
from .constants import NATIVE_DECIMALS, WSOL_MINT
from .errors import AlreadyOpenError
from .position_tracker import PositionTracker
from .profit_monitor import ProfitMonitor, SwapExecutor
from .signature_window import ProcessedSignatureWindow
from .types import SwapOutcome, SwapResult
from copy_trader.strategies.copy_trading_strategy import CopyTradingStrategy


class CopyTradingSystem:
    def __init__(self,
                 target_wallet: str,
                 classifier: SwapClassifier,
                 fetcher: Any,
                 executor: SwapExecutor,
                 tracker: PositionTracker,
                 strategy: CopyTradingStrategy,
                 window: ProcessedSignatureWindow,
                 logger: Any,
                 trade_amount_sol: float,
                 monitor: Optional[ProfitMonitor] = None,
                 watcher: Any = None,
                 trade_log: Any = None,
                 skip_pre_start: bool = True,
                 start_time: Optional[float] = None,
                 native_mint: str = WSOL_MINT):
        self.target_wallet = target_wallet
        self.classifier = classifier
        self.fetcher = fetcher
        self.executor = executor
        self.tracker = tracker
        self.strategy = strategy
        self.window = window
        self.logger = logger
        self.trade_amount = Decimal(str(trade_amount_sol))
        self.monitor = monitor
        self.watcher = watcher
        self.trade_log = trade_log
        self.skip_pre_start = skip_pre_start
        self.start_time = start_time if start_time is not None else time.time()
        self.native_mint = native_mint

        self.is_accepting_new_trades = True
        self.position_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    async def start(self):
        """Start the exit monitor and block on the ledger watcher"""
        self.logger.critical(
            f"Copy trading system starting: following {self.target_wallet}, "
            f"{self.trade_amount} SOL per trade"
        )
        if self.monitor is not None:
            self.monitor.start()
        if self.watcher is not None:
            self.watcher.subscribe(self.target_wallet, self.on_notification)
            await self.watcher.start()

    async def stop(self):
        """Stop intake, then let in-flight notifications (and their swaps) finish"""
        self.logger.critical("Initiating copy trading system shutdown")
        self.is_accepting_new_trades = False
        if self.watcher is not None:
            await self.watcher.stop()
        if self._inflight:
            self.logger.info(f"Waiting for {self._inflight} in-flight notification(s)")
            await self._idle.wait()
        if self.monitor is not None:
            await self.monitor.stop()

        open_positions = await self.tracker.snapshot()
        for position in open_positions:
            self.logger.info(f"Open position left: {position.mint}, entry {position.entry_amount} SOL")
        self.logger.info("Copy trading system stopped")

    async def on_notification(self, log_lines: Optional[List[str]], err: Any, signature: str):
        """LedgerWatcher callback; never raises"""
        self._inflight += 1
        self._idle.clear()
        try:
            await self.process_notification(log_lines, err, signature)
        except Exception as e:
            self.logger.error(f"Error processing {signature}: {str(e)}", exc_info=True)
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def process_notification(self, log_lines: Optional[List[str]], err: Any, signature: str):
        if not self.is_accepting_new_trades:
            return
        if err:
            self.logger.debug(f"Ignoring failed transaction {signature}: {err}")
            return
        if not self.window.mark_if_new(signature):
            self.logger.debug(f"Already processed {signature}")
            return

        # Cheap log check before paying for a transaction fetch
        if log_lines is not None and self.classifier.identifier.identify(log_lines) is None:
            self.logger.debug(f"No supported DEX activity in {signature}")
            return

        try:
            tx = await self.fetcher.get_parsed_transaction(signature)
        except Exception as e:
            self.logger.warning(f"Failed to fetch {signature}: {str(e)}")
            return
        if tx is None:
            self.logger.warning(f"Transaction {signature} not available")
            return
        if tx.err:
            self.logger.debug(f"Ignoring failed transaction {signature}: {tx.err}")
            return
        if self.skip_pre_start and tx.block_time is not None and tx.block_time < self.start_time:
            self.logger.info(f"Skipping {signature}: Transaction predates bot start")
            return

        classification = await self.classifier.classify(tx)
        if not classification.ok:
            self.logger.info(f"Skipping {signature}: {classification.state.value} ({classification.reason})")
            return

        await self.handle_swap(classification.result)

    async def handle_swap(self, result: SwapResult):
        mint = result.traded_mint
        self.logger.info(
            f"{result.classification.value} by {result.wallet} on {result.dex.value}: "
            f"{result.from_leg.ui_amount} {result.from_leg.label()} -> "
            f"{result.to_leg.ui_amount} {result.to_leg.label()} ({result.signature})"
        )

        if result.is_buy:
            await self._handle_buy(result)
        elif result.is_sell:
            self._record("Sell Detected", mint, result.native_leg.ui_amount, "", result)
            await self._handle_sell(result)
        else:
            self._record("Skipped", result.from_leg.mint, result.from_leg.ui_amount,
                         "Token-to-token swap not mirrored", result)

    @asynccontextmanager
    async def _mint_lock(self, mint: str):
        """Serialise work on one mint; the lock is dropped once nobody holds or awaits it"""
        lock = self.position_locks.setdefault(mint, asyncio.Lock())
        self._lock_users[mint] = self._lock_users.get(mint, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[mint] -= 1
            if self._lock_users[mint] == 0:
                del self._lock_users[mint]
                del self.position_locks[mint]

    async def _handle_buy(self, result: SwapResult):
        mint = result.traded_mint
        async with self._mint_lock(mint):
            held = await self.tracker.has(mint)
            signal = self.strategy.generate_signal(result, already_held=held)
            if not signal.is_valid:
                self.logger.info(f"Skipping buy of {mint}: {signal.reason}")
                self._record("Skipped", mint, result.native_leg.ui_amount, signal.reason, result)
                return

            self._record("Buy Detected", mint, result.native_leg.ui_amount, "", result)

            amount_in = to_base_units(self.trade_amount, NATIVE_DECIMALS)
            outcome = await self._execute(result, self.native_mint, mint, amount_in)
            if not outcome.success:
                self.logger.error(f"Purchase failed for {mint}: {outcome.error}")
                self._record("Error", mint, self.trade_amount, f"Purchase failed: {outcome.error}", result)
                return

            if outcome.amount_out <= 0:
                self.logger.error(f"Purchase failed for {mint}: confirmed without a received amount ({outcome.signature})")
                self._record("Error", mint, self.trade_amount, "Purchase failed: no tokens received", result,
                             signature=outcome.signature)
                return

            try:
                await self.tracker.open(
                    mint=mint,
                    entry_amount=self.trade_amount,
                    fee=to_ui_amount(outcome.fee, NATIVE_DECIMALS),
                    dex=result.dex,
                    pool_address=result.pool_address,
                    decimals=result.traded_leg.decimals,
                    symbol=result.traded_leg.symbol,
                    quantity=outcome.amount_out,
                    wallet_followed=result.wallet,
                    entry_signature=outcome.signature,
                )
            except AlreadyOpenError:
                self.logger.error(f"Position for {mint} appeared during purchase; keeping the existing one")
                return
            self._record("Bot Buy", mint, self.trade_amount, f"Mirrored {result.signature}", result,
                         signature=outcome.signature)

    async def _handle_sell(self, result: SwapResult):
        mint = result.traded_mint
        async with self._mint_lock(mint):
            position = await self.tracker.get(mint)
            if position is None:
                self.logger.info(f"Ignoring sell of {mint}: not currently held")
                return

            signal = self.strategy.check_exit(position, None, trade_wallet=result.wallet)
            if not signal.is_valid:
                return
            if self.monitor is None:
                self.logger.warning(f"No exit path configured, keeping {mint}")
                return

            expected = await self._expected_proceeds(position)
            exit_result = await self.monitor.close(mint, expected, reason=signal.reason)
            if exit_result is not None and not exit_result.success:
                self.logger.error(f"Sale failed for {mint}; position stays open for the next check")

    async def _expected_proceeds(self, position) -> Decimal:
        try:
            proceeds = await self.monitor.price_source.expected_proceeds(position)
        except Exception as e:
            self.logger.warning(f"Price unavailable for {position.mint}: {str(e)}")
            proceeds = None
        return proceeds if proceeds is not None else Decimal(0)

    async def _execute(self, result: SwapResult, mint_in: str, mint_out: str, amount_in: int) -> SwapOutcome:
        try:
            return await self.executor.swap(result.dex, result.pool_address, mint_in, mint_out, amount_in)
        except Exception as e:
            return SwapOutcome(success=False, error=str(e))

    def _record(self, action: str, token: str, amount, reason: str, result: SwapResult,
                signature: Optional[str] = None):
        if self.trade_log is None:
            return
        self.trade_log.record(
            action=action,
            token=token,
            amount=amount,
            reason=reason,
            dex=result.dex.value,
            signature=signature or result.signature,
            wallet=result.wallet,
        )
