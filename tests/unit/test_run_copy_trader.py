"""Unit tests for process wiring"""
import asyncio
import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from copy_trader.data.ledger_watcher import LogsSubscriber
from copy_trader.data.price_sources import QuotePriceSource, ReservePriceSource
from copy_trader.data.signature_poller import SignaturePoller
from copy_trader.execution.dry_run_executor import DryRunExecutor
from copy_trader.run_copy_trader import InitCopyTrader, main
from copy_trader.utils.config import ENV_OVERRIDES, PRIVATE_KEY_VARS, Config
from copy_trader.utils.logger import TradingLogger


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in list(ENV_OVERRIDES) + list(PRIVATE_KEY_VARS):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config(tmp_path, target_wallet):
    config = Config(config_path=None, load_env=False)
    config.network.rpc_url = "https://rpc.example.com"
    config.network.ws_url = "wss://rpc.example.com"
    config.copy.target_wallet = target_wallet
    config.copy.trade_amount_sol = 0.1
    config.storage.trade_log_path = str(tmp_path / "trade_log.csv")
    config.logging.log_dir = str(tmp_path / "logs")
    return config.validate()


def test_missing_configuration_exits_with_error(clean_env, capsys):
    assert main(["--config", "missing.yaml"]) == 1
    assert "RPC_URL" in capsys.readouterr().err


class TestBuild:
    @pytest.mark.asyncio
    async def test_dry_run_websocket_wiring(self, config):
        logger = TradingLogger("copy_trader.wiring", log_dir=config.logging.log_dir, console_output=False)
        init = InitCopyTrader(config, logger)

        system = init.build()

        assert isinstance(system.executor, DryRunExecutor)
        assert isinstance(system.watcher, LogsSubscriber)
        assert isinstance(system.monitor.price_source, ReservePriceSource)
        assert isinstance(system.monitor.price_source.fallback, QuotePriceSource)
        assert system.window.capacity == config.copy.signature_window_size
        await init.shutdown()

    @pytest.mark.asyncio
    async def test_poll_mode_with_quote_prices(self, config):
        config.copy.watch_mode = "poll"
        config.exit.price_source = "quote"
        logger = TradingLogger("copy_trader.wiring", log_dir=config.logging.log_dir, console_output=False)
        init = InitCopyTrader(config, logger)

        system = init.build()

        assert isinstance(system.watcher, SignaturePoller)
        assert isinstance(system.monitor.price_source, QuotePriceSource)
        await init.shutdown()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_signal_shutdown_is_awaited_before_run_returns(self, config):
        logger = TradingLogger("copy_trader.wiring", log_dir=config.logging.log_dir, console_output=False)
        init = InitCopyTrader(config, logger)
        stopped = []

        async def slow_stop():
            await asyncio.sleep(0.05)
            stopped.append(True)

        async def start_then_signal():
            init.handle_shutdown(signal.SIGTERM)

        system = MagicMock()
        system.start = AsyncMock(side_effect=start_then_signal)
        system.stop = AsyncMock(side_effect=slow_stop)
        resource = MagicMock()
        resource.close = AsyncMock()

        def build():
            init.system = system
            init._closeables = [resource]
            return system

        init.build = build
        loop = asyncio.get_running_loop()
        try:
            await init.run()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

        assert stopped == [True]
        system.stop.assert_awaited_once()
        resource.close.assert_awaited_once()
