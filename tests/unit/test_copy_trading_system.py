"""Unit tests for the notification driver"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from copy_trader.core.classifier import Classification, ClassificationState
from copy_trader.core.constants import WSOL_MINT
from copy_trader.core.copy_trading_system import CopyTradingSystem
from copy_trader.core.dex import DexIdentifier
from copy_trader.core.position_tracker import PositionTracker
from copy_trader.core.profit_monitor import ProfitMonitor
from copy_trader.core.signature_window import ProcessedSignatureWindow
from copy_trader.core.transaction import ParsedTransaction
from copy_trader.core.types import DexVenue, SwapClassification, SwapOutcome
from copy_trader.strategies.copy_trading_strategy import CopyTradingStrategy

TARGET = "TargetWallet"
MINT = "TokenMint"


@pytest.fixture
def fetcher():
    fetcher = MagicMock()
    fetcher.get_parsed_transaction = AsyncMock(
        side_effect=lambda signature: ParsedTransaction(signature=signature, block_time=2_000_000_000)
    )
    return fetcher


@pytest.fixture
def classifier():
    classifier = MagicMock()
    classifier.identifier = DexIdentifier()
    classifier.classify = AsyncMock()
    return classifier


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.swap = AsyncMock(return_value=SwapOutcome(success=True, signature="bot-sig", amount_out=9_000_000, fee=5000))
    return executor


@pytest.fixture
def system(classifier, fetcher, executor, logger, mock_trade_log):
    tracker = PositionTracker(logger)
    strategy = CopyTradingStrategy(TARGET, min_trade_size_sol=0.5, profit_multiplier=1.25, logger=logger)
    price_source = MagicMock()
    price_source.expected_proceeds = AsyncMock(return_value=Decimal("0.9"))
    monitor = ProfitMonitor(tracker, price_source, executor, logger, trade_log=mock_trade_log, strategy=strategy)
    return CopyTradingSystem(
        target_wallet=TARGET,
        classifier=classifier,
        fetcher=fetcher,
        executor=executor,
        tracker=tracker,
        strategy=strategy,
        window=ProcessedSignatureWindow(10),
        logger=logger,
        trade_amount_sol=0.1,
        monitor=monitor,
        trade_log=mock_trade_log,
        start_time=1_000_000_000,
    )


def classified(result):
    return Classification(result.signature, ClassificationState.CLASSIFIED, dex=result.dex, result=result)


def recorded_actions(trade_log):
    return [(c.kwargs["action"], c.kwargs["reason"]) for c in trade_log.record.call_args_list]


class TestNotificationFiltering:
    @pytest.mark.asyncio
    async def test_same_signature_is_classified_once(self, system, classifier, make_swap_result):
        classifier.classify.return_value = classified(make_swap_result(MINT, wallet=TARGET))

        await system.on_notification(None, None, "sig-1")
        await system.on_notification(None, None, "sig-1")

        assert classifier.classify.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_transaction_is_ignored(self, system, fetcher, classifier):
        await system.on_notification(None, {"InstructionError": [0, "Custom"]}, "sig-err")

        fetcher.get_parsed_transaction.assert_not_awaited()
        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_logs_without_a_dex_skip_the_fetch(self, system, fetcher):
        await system.on_notification(["Program 11111111111111111111111111111111 invoke [1]"], None, "sig-plain")

        fetcher.get_parsed_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transaction_before_start_is_skipped(self, system, fetcher, classifier):
        fetcher.get_parsed_transaction.side_effect = None
        fetcher.get_parsed_transaction.return_value = ParsedTransaction(signature="sig-old", block_time=999)

        await system.on_notification(None, None, "sig-old")

        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_failure_does_not_raise(self, system, fetcher, classifier):
        fetcher.get_parsed_transaction.side_effect = ConnectionError("rpc down")

        await system.on_notification(None, None, "sig-x")

        classifier.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unclassified_transaction_is_dropped(self, system, classifier, executor):
        classifier.classify.return_value = Classification("sig-x", ClassificationState.NOT_FOUND, "No pool")

        await system.on_notification(None, None, "sig-x")

        executor.swap.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stopped_system_ignores_notifications(self, system, fetcher):
        await system.stop()

        await system.on_notification(None, None, "sig-late")

        fetcher.get_parsed_transaction.assert_not_awaited()


class TestBuyMirroring:
    @pytest.mark.asyncio
    async def test_buy_opens_position(self, system, classifier, executor, mock_trade_log, make_swap_result):
        classifier.classify.return_value = classified(make_swap_result(MINT, native_amount=Decimal("2"), wallet=TARGET))

        await system.on_notification(None, None, "sig-1")

        executor.swap.assert_awaited_once_with(DexVenue.RAYDIUM_AMM_V4, "PoolAddress", WSOL_MINT, MINT, 100_000_000)
        position = await system.tracker.get(MINT)
        assert position.entry_amount == Decimal("0.1")
        assert position.entry_fee == Decimal("0.000005")
        assert position.quantity == 9_000_000
        assert [a for a, _ in recorded_actions(mock_trade_log)] == ["Buy Detected", "Bot Buy"]

    @pytest.mark.asyncio
    async def test_small_buy_is_skipped(self, system, classifier, executor, mock_trade_log, make_swap_result):
        classifier.classify.return_value = classified(make_swap_result(MINT, native_amount=Decimal("0.3")))

        await system.on_notification(None, None, "sig-1")

        executor.swap.assert_not_awaited()
        assert ("Skipped", "Below minimum trade size") in recorded_actions(mock_trade_log)

    @pytest.mark.asyncio
    async def test_repeat_buy_of_held_token_is_skipped(self, system, classifier, executor, mock_trade_log,
                                                       make_swap_result):
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-1")),
            classified(make_swap_result(MINT, signature="sig-2")),
        ]

        await system.on_notification(None, None, "sig-1")
        await system.on_notification(None, None, "sig-2")

        assert executor.swap.await_count == 1
        assert ("Skipped", "Token already purchased") in recorded_actions(mock_trade_log)

    @pytest.mark.asyncio
    async def test_concurrent_buys_of_same_mint_open_once(self, system, classifier, executor, make_swap_result):
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-1")),
            classified(make_swap_result(MINT, signature="sig-2")),
        ]

        await asyncio.gather(
            system.on_notification(None, None, "sig-1"),
            system.on_notification(None, None, "sig-2"),
        )

        assert executor.swap.await_count == 1
        assert await system.tracker.count() == 1

    @pytest.mark.asyncio
    async def test_failed_purchase_opens_nothing(self, system, classifier, executor, mock_trade_log,
                                                 make_swap_result):
        executor.swap.return_value = SwapOutcome(success=False, error="blockhash expired")
        classifier.classify.return_value = classified(make_swap_result(MINT))

        await system.on_notification(None, None, "sig-1")

        assert await system.tracker.has(MINT) is False
        assert recorded_actions(mock_trade_log)[-1] == ("Error", "Purchase failed: blockhash expired")

    @pytest.mark.asyncio
    async def test_purchase_without_received_tokens_is_a_failure(self, system, classifier, executor,
                                                                 mock_trade_log, make_swap_result):
        executor.swap.return_value = SwapOutcome(success=True, signature="bot-sig", amount_out=0, fee=5000)
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-1")),
            classified(make_swap_result(MINT, signature="sig-2")),
        ]

        await system.on_notification(None, None, "sig-1")

        assert await system.tracker.has(MINT) is False
        assert recorded_actions(mock_trade_log)[-1] == ("Error", "Purchase failed: no tokens received")

        # The mint stays buyable
        executor.swap.return_value = SwapOutcome(success=True, signature="bot-sig-2", amount_out=9_000_000, fee=5000)
        await system.on_notification(None, None, "sig-2")
        assert (await system.tracker.get(MINT)).quantity == 9_000_000

    @pytest.mark.asyncio
    async def test_skipped_buy_writes_a_single_row(self, system, classifier, mock_trade_log, make_swap_result):
        classifier.classify.return_value = classified(make_swap_result(MINT, native_amount=Decimal("0.3")))

        await system.on_notification(None, None, "sig-1")

        assert recorded_actions(mock_trade_log) == [("Skipped", "Below minimum trade size")]

    @pytest.mark.asyncio
    async def test_mint_locks_are_released(self, system, classifier, make_swap_result):
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-1")),
            classified(make_swap_result(MINT, signature="sig-2")),
            classified(make_swap_result("OtherMint", native_amount=Decimal("0.3"), signature="sig-3")),
        ]

        await asyncio.gather(
            system.on_notification(None, None, "sig-1"),
            system.on_notification(None, None, "sig-2"),
        )
        await system.on_notification(None, None, "sig-3")

        assert system.position_locks == {}
        assert await system.tracker.count() == 1

    @pytest.mark.asyncio
    async def test_token_to_token_swap_is_not_mirrored(self, system, classifier, executor, mock_trade_log,
                                                      make_swap_result):
        classifier.classify.return_value = classified(
            make_swap_result(MINT, classification=SwapClassification.SWAP)
        )

        await system.on_notification(None, None, "sig-1")

        executor.swap.assert_not_awaited()
        assert recorded_actions(mock_trade_log) == [("Skipped", "Token-to-token swap not mirrored")]


class TestSellMirroring:
    @pytest.mark.asyncio
    async def test_sell_of_unheld_token_is_ignored(self, system, classifier, executor, make_swap_result):
        classifier.classify.return_value = classified(
            make_swap_result(MINT, classification=SwapClassification.SELL, wallet=TARGET)
        )

        await system.on_notification(None, None, "sig-sell")

        executor.swap.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_followed_sell_closes_held_position(self, system, classifier, executor, mock_trade_log,
                                                      make_swap_result):
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-buy", wallet=TARGET)),
            classified(make_swap_result(MINT, classification=SwapClassification.SELL, signature="sig-sell",
                                        wallet=TARGET)),
        ]
        await system.on_notification(None, None, "sig-buy")
        executor.swap.return_value = SwapOutcome(success=True, signature="exit-sig", amount_out=0)

        await system.on_notification(None, None, "sig-sell")

        assert executor.swap.await_args.args == (DexVenue.RAYDIUM_AMM_V4, "PoolAddress", MINT, WSOL_MINT, 9_000_000)
        assert await system.tracker.has(MINT) is False
        action, reason = recorded_actions(mock_trade_log)[-1]
        assert action == "Bot Sell"
        assert reason.startswith("Followed wallet sold")

    @pytest.mark.asyncio
    async def test_failed_sale_keeps_position_open(self, system, classifier, executor, make_swap_result):
        classifier.classify.side_effect = [
            classified(make_swap_result(MINT, signature="sig-buy", wallet=TARGET)),
            classified(make_swap_result(MINT, classification=SwapClassification.SELL, signature="sig-sell",
                                        wallet=TARGET)),
        ]
        await system.on_notification(None, None, "sig-buy")
        executor.swap.return_value = SwapOutcome(success=False, error="confirmation timeout")

        await system.on_notification(None, None, "sig-sell")

        assert [p.mint for p in await system.tracker.snapshot()] == [MINT]


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_purchase(self, system, classifier, executor, make_swap_result):
        release = asyncio.Event()

        async def slow_swap(*args):
            await release.wait()
            return SwapOutcome(success=True, signature="bot-sig", amount_out=1)

        executor.swap.side_effect = slow_swap
        classifier.classify.return_value = classified(make_swap_result(MINT))
        notification = asyncio.create_task(system.on_notification(None, None, "sig-1"))
        await asyncio.sleep(0.01)

        stopping = asyncio.create_task(system.stop())
        await asyncio.sleep(0.01)
        assert not stopping.done()

        release.set()
        await asyncio.wait_for(stopping, timeout=1)
        await notification
        assert await system.tracker.has(MINT)
