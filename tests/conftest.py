"""
Pytest fixtures for copy trader tests
"""
import logging
import struct
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from solders.pubkey import Pubkey

from copy_trader.core.constants import WSOL_MINT
from copy_trader.core.layouts import anchor_discriminator
from copy_trader.core.transaction import Instruction, ParsedTransaction, TokenBalance
from copy_trader.core.types import AccountInfo, DexVenue, SwapClassification, SwapResult, TokenLeg


class FakeAccountReader:
    """In-memory AccountReader; records every address it was asked for"""

    def __init__(self, accounts=None, fail=False):
        self.accounts = dict(accounts or {})
        self.fail = fail
        self.requested = []

    async def get_account(self, address):
        self.requested.append(address)
        if self.fail:
            raise ConnectionError("rpc unavailable")
        return self.accounts.get(address)

    async def get_multiple_accounts(self, addresses):
        self.requested.extend(addresses)
        if self.fail:
            raise ConnectionError("rpc unavailable")
        return [self.accounts.get(address) for address in addresses]


def _key(address):
    return bytes(Pubkey.from_string(address))


@pytest.fixture
def logger():
    return logging.getLogger("copy_trader.tests")


@pytest.fixture
def new_address():
    """Factory for fresh, valid base58 addresses"""
    return lambda: str(Pubkey.new_unique())


@pytest.fixture
def target_wallet():
    return str(Pubkey.new_unique())


@pytest.fixture
def make_reader():
    return FakeAccountReader


@pytest.fixture
def token_balance():
    def _balance(account, mint, owner, amount, decimals, index=0):
        return TokenBalance(
            account_index=index,
            account=account,
            mint=mint,
            owner=owner,
            amount=amount,
            decimals=decimals,
            ui_amount=Decimal(amount).scaleb(-decimals) if decimals is not None else Decimal(amount),
        )
    return _balance


@pytest.fixture
def amm_v4_data():
    """752-byte Raydium AMM v4 pool account with the given vaults and mints"""
    def _data(base_mint, quote_mint, base_vault, quote_vault, base_decimals=6, quote_decimals=9):
        data = bytearray(752)
        struct.pack_into("<Q", data, 32, base_decimals)
        struct.pack_into("<Q", data, 40, quote_decimals)
        data[336:368] = _key(base_vault)
        data[368:400] = _key(quote_vault)
        data[400:432] = _key(base_mint)
        data[432:464] = _key(quote_mint)
        return bytes(data)
    return _data


@pytest.fixture
def cpmm_data():
    """Raydium CPMM PoolState account with the anchor discriminator"""
    def _data(mint_0, mint_1, vault_0, vault_1, decimals_0=9, decimals_1=6, discriminator=None):
        data = bytearray(637)
        data[0:8] = discriminator if discriminator is not None else anchor_discriminator("PoolState")
        data[72:104] = _key(vault_0)
        data[104:136] = _key(vault_1)
        data[168:200] = _key(mint_0)
        data[200:232] = _key(mint_1)
        data[331] = decimals_0
        data[332] = decimals_1
        return bytes(data)
    return _data


@pytest.fixture
def token_account_data():
    def _data(mint, owner, amount):
        return _key(mint) + _key(owner) + struct.pack("<Q", amount) + bytes(93)
    return _data


@pytest.fixture
def pool_swap_tx(new_address, token_balance):
    """
    Factory for a single-pool swap seen from the pool side. `native_change`
    and `token_change` are the trader's changes in base units.
    """
    def _tx(program_id, pool, trader, mint, base_vault, quote_vault, authority,
            native_change, token_change, token_decimals=6, signature="sig-pool-swap"):
        native_pre, token_pre = 100 * 10 ** 9, 1_000_000 * 10 ** token_decimals
        trader_token_account = new_address()
        pre = [
            token_balance(base_vault, mint, authority, token_pre, token_decimals, 1),
            token_balance(quote_vault, WSOL_MINT, authority, native_pre, 9, 2),
            token_balance(trader_token_account, mint, trader, max(-token_change, 0), token_decimals, 3),
        ]
        post = [
            token_balance(base_vault, mint, authority, token_pre - token_change, token_decimals, 1),
            token_balance(quote_vault, WSOL_MINT, authority, native_pre - native_change, 9, 2),
            token_balance(trader_token_account, mint, trader, max(token_change, 0), token_decimals, 3),
        ]
        return ParsedTransaction(
            signature=signature,
            account_keys=[trader, base_vault, quote_vault, trader_token_account, pool, program_id],
            instructions=[Instruction(program_id=program_id, accounts=(pool, base_vault, quote_vault, trader))],
            logs=[
                f"Program {program_id} invoke [1]",
                "Program log: Instruction: Transfer",
                f"Program {program_id} success",
            ],
            pre_token_balances=pre,
            post_token_balances=post,
            pre_balances=[10 * 10 ** 9, 0, 0, 0, 0, 0],
            post_balances=[10 * 10 ** 9 - 5000, 0, 0, 0, 0, 0],
            fee=5000,
            block_time=2_000_000_000,
        )
    return _tx


@pytest.fixture
def make_swap_result():
    def _result(mint, native_amount=Decimal("1"), classification=SwapClassification.BUY,
                wallet="TargetWallet", signature="sig-1", dex=DexVenue.RAYDIUM_AMM_V4,
                token_amount=1_000_000, pool_address="PoolAddress"):
        native = TokenLeg(WSOL_MINT, int(Decimal(native_amount).scaleb(9)), 9, "SOL")
        token = TokenLeg(mint, token_amount, 6)
        if classification == SwapClassification.SELL:
            from_leg, to_leg = token, native
        else:
            from_leg, to_leg = native, token
        return SwapResult(
            signature=signature,
            dex=dex,
            classification=classification,
            from_leg=from_leg,
            to_leg=to_leg,
            pool_address=pool_address,
            wallet=wallet,
        )
    return _result


@pytest.fixture
def mock_trade_log():
    trade_log = MagicMock()
    trade_log.record = MagicMock(return_value={})
    return trade_log


@pytest.fixture
def account():
    def _account(owner, data=b""):
        return AccountInfo(owner=owner, data=data)
    return _account
