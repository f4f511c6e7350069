import argparse
import asyncio
import signal
import sys
import uuid
from typing import List, Optional

from copy_trader.core.classifier import SwapClassifier
from copy_trader.core.copy_trading_system import CopyTradingSystem
from copy_trader.core.errors import ConfigError
from copy_trader.core.position_tracker import PositionTracker
from copy_trader.core.profit_monitor import ProfitMonitor
from copy_trader.core.signature_window import ProcessedSignatureWindow
from copy_trader.data.jupiter import JupiterClient
from copy_trader.data.ledger_watcher import LogsSubscriber
from copy_trader.data.price_sources import QuotePriceSource, ReservePriceSource
from copy_trader.data.rpc import RpcAccountReader, RpcClient, RpcTransactionFetcher
from copy_trader.data.signature_poller import SignaturePoller
from copy_trader.execution.dry_run_executor import DryRunExecutor
from copy_trader.execution.live_run_executor import LiveRunExecutor
from copy_trader.strategies.copy_trading_strategy import CopyTradingStrategy
from copy_trader.utils.config import Config
from copy_trader.utils.logger import TradingLogger
from copy_trader.utils.trade_log import TradeLog


class InitCopyTrader:
    def __init__(self, config: Config, logger: TradingLogger):
        self.config = config
        self.logger = logger
        self.system: Optional[CopyTradingSystem] = None
        self._closeables = []
        self._shutdown_requested = False
        self._shutdown_task: Optional[asyncio.Task] = None

    def build(self) -> CopyTradingSystem:
        config = self.config
        logger = self.logger
        slippage_bps = int(round(config.exit.slippage_pct * 100))

        rpc = RpcClient(
            config.network.rpc_url,
            commitment=config.network.commitment,
            timeout=config.network.request_timeout_seconds,
            logger=logger.child("rpc"),
        )
        jupiter = JupiterClient(
            config.execution.jupiter_api_url,
            timeout=config.network.request_timeout_seconds,
            logger=logger.child("jupiter"),
        )
        self._closeables = [rpc, jupiter]

        reader = RpcAccountReader(rpc)
        fetcher = RpcTransactionFetcher(rpc)

        if config.execution.dry_run:
            executor = DryRunExecutor(jupiter, slippage_bps=slippage_bps, logger=logger)
        else:
            executor = LiveRunExecutor(
                wallet=config.load_keypair(),
                rpc=rpc,
                jupiter=jupiter,
                logger=logger,
                slippage_bps=slippage_bps,
                priority_fee_lamports=config.execution.priority_fee_lamports,
                confirm_timeout=config.network.confirm_timeout_seconds,
                max_retries=config.execution.max_retries,
                fetcher=fetcher,
            )

        quote_source = QuotePriceSource(jupiter, config.exit.slippage_pct, logger=logger.child("quotes"))
        if config.exit.price_source == "reserves":
            price_source = ReservePriceSource(
                reader, config.exit.slippage_pct, fallback=quote_source, logger=logger.child("reserves")
            )
        else:
            price_source = quote_source

        db_service = None
        if config.storage.db_url:
            from copy_trader.db.service import DatabaseService
            db_service = DatabaseService(run_id=uuid.uuid4().hex[:12], db_url=config.storage.db_url)

        target = config.copy.target_wallet
        trade_log = TradeLog(config.storage.trade_log_path, target, logger, db_service=db_service)
        strategy = CopyTradingStrategy(
            target_wallet=target,
            min_trade_size_sol=config.copy.min_trade_size_sol,
            profit_multiplier=config.exit.profit_multiplier,
            logger=logger,
        )
        tracker = PositionTracker(logger)
        monitor = ProfitMonitor(
            tracker=tracker,
            price_source=price_source,
            executor=executor,
            logger=logger,
            check_interval=config.exit.check_interval_seconds,
            trade_log=trade_log,
            strategy=strategy,
        )

        if config.copy.watch_mode == "poll":
            watcher = SignaturePoller(
                fetcher, target, logger=logger,
                interval=config.copy.poll_interval_seconds,
                limit=config.copy.poll_signature_limit,
            )
        else:
            watcher = LogsSubscriber(config.network.ws_url, target, logger=logger, commitment=config.network.commitment)

        self.system = CopyTradingSystem(
            target_wallet=target,
            classifier=SwapClassifier(reader, target, logger=logger.child("classifier")),
            fetcher=fetcher,
            executor=executor,
            tracker=tracker,
            strategy=strategy,
            window=ProcessedSignatureWindow(config.copy.signature_window_size),
            logger=logger,
            trade_amount_sol=config.copy.trade_amount_sol,
            monitor=monitor,
            watcher=watcher,
            trade_log=trade_log,
            skip_pre_start=config.copy.skip_pre_start_transactions,
        )
        return self.system

    def handle_shutdown(self, signum):
        self.logger.info(f"Received signal {signum}. Starting graceful shutdown...")
        if not self._shutdown_requested:
            self._shutdown_requested = True
            self._shutdown_task = asyncio.get_running_loop().create_task(self.shutdown())

    async def run(self):
        system = self.build()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.handle_shutdown, sig)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self.handle_shutdown(s))

        try:
            await system.start()
        finally:
            if self._shutdown_task is not None:
                await self._shutdown_task
            elif not self._shutdown_requested:
                self._shutdown_requested = True
                await self.shutdown()

    async def shutdown(self):
        if self.system is not None:
            try:
                await self.system.stop()
            except Exception as e:
                self.logger.error(f"Error during shutdown: {str(e)}")
        for resource in self._closeables:
            try:
                await resource.close()
            except Exception as e:
                self.logger.error(f"Error closing {type(resource).__name__}: {str(e)}")
        self._closeables = []


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Mirror the swaps of a Solana wallet")
    parser.add_argument("-c", "--config", default="config.yaml", help="YAML config file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = Config(args.config).validate()
    except ConfigError as e:
        print(f"Configuration error: {str(e)}", file=sys.stderr)
        return 1

    logger = TradingLogger(
        "copy_trader",
        log_dir=config.logging.log_dir,
        console_output=config.logging.console_output,
        level=config.logging.level,
    )
    logger.info(f"Starting copy trader (dry_run={config.execution.dry_run})")
    logger.debug(f"Settings: {config.as_dict()}")

    try:
        asyncio.run(InitCopyTrader(config, logger).run())
    except ConfigError as e:
        logger.critical(f"Configuration error: {str(e)}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info("Copy trader shutdown complete")
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
