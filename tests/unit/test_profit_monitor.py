"""Unit tests for ProfitMonitor"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from copy_trader.core.constants import WSOL_MINT
from copy_trader.core.position_tracker import PositionTracker
from copy_trader.core.profit_monitor import ProfitMonitor
from copy_trader.core.types import DexVenue, SwapOutcome


@pytest.fixture
def tracker(logger):
    return PositionTracker(logger)


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.swap = AsyncMock(return_value=SwapOutcome(success=True, signature="exit-sig", amount_out=0))
    return executor


def price_source(prices):
    """Expected proceeds per mint; an Exception value is raised"""
    async def expected_proceeds(position):
        value = prices[position.mint]
        if isinstance(value, Exception):
            raise value
        return value

    source = MagicMock()
    source.expected_proceeds = AsyncMock(side_effect=expected_proceeds)
    return source


async def open_position(tracker, mint, entry="1.0", fee="0.02"):
    await tracker.open(
        mint=mint, entry_amount=Decimal(entry), fee=Decimal(fee), dex=DexVenue.RAYDIUM_AMM_V4,
        pool_address="Pool", decimals=6, symbol=None, quantity=5_000_000,
    )


class TestProfitCheck:
    @pytest.mark.asyncio
    async def test_closes_position_above_target(self, tracker, executor, logger, mock_trade_log):
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("1.3")}), executor, logger,
                                profit_multiplier=1.25, trade_log=mock_trade_log)

        exits = await monitor.run_cycle()

        assert len(exits) == 1
        assert exits[0].success is True
        assert round(exits[0].profit_pct, 2) == Decimal("27.45")
        assert await tracker.get("MintA") is None
        executor.swap.assert_awaited_once_with(DexVenue.RAYDIUM_AMM_V4, "Pool", "MintA", WSOL_MINT, 5_000_000)
        assert mock_trade_log.record.call_args.kwargs["action"] == "Bot Sell"

    @pytest.mark.asyncio
    async def test_keeps_position_at_or_below_target(self, tracker, executor, logger):
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("1.25")}), executor, logger)

        assert await monitor.run_cycle() == []
        executor.swap.assert_not_awaited()
        assert await tracker.has("MintA")

    @pytest.mark.asyncio
    async def test_executed_amount_wins_over_estimate(self, tracker, executor, logger):
        executor.swap.return_value = SwapOutcome(success=True, signature="exit-sig", amount_out=1_400_000_000)
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("1.3")}), executor, logger)

        exits = await monitor.run_cycle()

        assert exits[0].proceeds == Decimal("1.4")

    @pytest.mark.asyncio
    async def test_failed_sale_reopens_position(self, tracker, executor, logger, mock_trade_log):
        executor.swap.return_value = SwapOutcome(success=False, error="slippage exceeded")
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("2")}), executor, logger,
                                trade_log=mock_trade_log)

        exits = await monitor.run_cycle()

        assert exits[0].success is False
        assert [p.mint for p in await tracker.snapshot()] == ["MintA"]
        assert mock_trade_log.record.call_args.kwargs["action"] == "Error"

    @pytest.mark.asyncio
    async def test_executor_exception_reopens_position(self, tracker, executor, logger):
        executor.swap.side_effect = TimeoutError("confirmation timeout")
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("2")}), executor, logger)

        exits = await monitor.run_cycle()

        assert exits[0].error == "confirmation timeout"
        assert await tracker.has("MintA")

    @pytest.mark.asyncio
    async def test_one_failing_price_does_not_stop_the_others(self, tracker, executor, logger):
        await open_position(tracker, "Broken")
        await open_position(tracker, "Healthy")
        await open_position(tracker, "Unpriced")
        prices = {"Broken": ConnectionError("rate limited"), "Healthy": Decimal("3"), "Unpriced": None}
        monitor = ProfitMonitor(tracker, price_source(prices), executor, logger)

        exits = await monitor.run_cycle()

        assert [e.mint for e in exits] == ["Healthy"]
        assert await tracker.has("Broken")
        assert await tracker.has("Unpriced")


class TestExitMutualExclusion:
    @pytest.mark.asyncio
    async def test_concurrent_closes_sell_once(self, tracker, logger):
        release = asyncio.Event()

        async def slow_swap(*args):
            await release.wait()
            return SwapOutcome(success=True, signature="exit-sig", amount_out=2 * 10 ** 9)

        executor = MagicMock()
        executor.swap = AsyncMock(side_effect=slow_swap)
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("2")}), executor, logger)

        first = asyncio.create_task(monitor.close("MintA", Decimal("2"), "Profit target reached"))
        await asyncio.sleep(0)
        second = await monitor.close("MintA", Decimal("2"), "Followed wallet sold")
        release.set()

        assert second is None
        assert (await first).success is True
        assert executor.swap.await_count == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, tracker, executor, logger):
        await open_position(tracker, "MintA")
        source = price_source({"MintA": Decimal("1")})
        monitor = ProfitMonitor(tracker, source, executor, logger, check_interval=0.01)

        monitor.start()
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert monitor.running is False
        assert source.expected_proceeds.await_count >= 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, tracker, executor, logger):
        monitor = ProfitMonitor(tracker, price_source({}), executor, logger)
        await monitor.stop()
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_stop_waits_for_sale_in_flight(self, tracker, logger):
        swap_started = asyncio.Event()

        async def slow_swap(*args):
            swap_started.set()
            await asyncio.sleep(0.2)
            return SwapOutcome(success=True, signature="exit-sig", amount_out=2 * 10 ** 9)

        executor = MagicMock()
        executor.swap = AsyncMock(side_effect=slow_swap)
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({"MintA": Decimal("2")}), executor, logger, check_interval=0.01)

        monitor.start()
        await asyncio.wait_for(swap_started.wait(), timeout=1)
        await monitor.stop()

        assert await tracker.get("MintA") is None
        assert await tracker.snapshot() == []

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_strand_position(self, tracker, logger):
        swap_started = asyncio.Event()
        release = asyncio.Event()

        async def slow_swap(*args):
            swap_started.set()
            await release.wait()
            return SwapOutcome(success=False, error="slippage exceeded")

        executor = MagicMock()
        executor.swap = AsyncMock(side_effect=slow_swap)
        await open_position(tracker, "MintA")
        monitor = ProfitMonitor(tracker, price_source({}), executor, logger)

        closing = asyncio.create_task(monitor.close("MintA", Decimal("2"), "Profit target reached"))
        await swap_started.wait()
        closing.cancel()
        release.set()
        with pytest.raises(asyncio.CancelledError):
            await closing
        await asyncio.sleep(0.01)

        # The failed sale still reopened the position
        assert [p.mint for p in await tracker.snapshot()] == ["MintA"]
