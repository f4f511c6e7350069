import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

from .constants import NON_POOL_ACCOUNTS
from .dex import VENUE_PROGRAMS
from .layouts import POOL_LAYOUTS, PoolState, decode_pool
from .transaction import Instruction
from .types import AccountInfo, DexVenue


class AccountReader(Protocol):
    async def get_account(self, address: str) -> Optional[AccountInfo]:
        ...

    async def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountInfo]]:
        ...


@dataclass(frozen=True)
class PoolLocation:
    """Pool accounts found in a transaction, in instruction/account order"""
    pools: Tuple[PoolState, ...]

    @property
    def primary(self) -> PoolState:
        return self.pools[0]

    @property
    def last(self) -> PoolState:
        return self.pools[-1]

    @property
    def is_multi_hop(self) -> bool:
        return len(self.pools) > 1


def looks_like_pool(venue: DexVenue, data: bytes) -> bool:
    """
    Cheap identity check before decoding. Pool programs own other accounts
    too (configs, observations, target orders) which must be skipped rather
    than treated as corrupt pools.
    """
    layout = POOL_LAYOUTS[venue]
    if layout.discriminator is not None:
        return data[:8] == layout.discriminator
    if layout.exact_sizes is not None:
        return len(data) in layout.exact_sizes
    return True


class PoolLocator:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    async def locate(self,
                     instructions: Sequence[Instruction],
                     reader: AccountReader,
                     venue: DexVenue,
                     multi_pool: bool = True) -> Optional[PoolLocation]:
        """
        Walk instruction accounts in order and return the pool account(s)
        owned by the venue's program. The earliest match is the primary pool;
        with `multi_pool` the walk continues to collect every hop of a route.

        Returns None when nothing matches or an account read fails. A pool
        whose data passes the identity check but cannot be decoded raises
        DecodeError.
        """
        program_id = VENUE_PROGRAMS[venue]
        visited = set(NON_POOL_ACCOUNTS)
        pools: List[PoolState] = []

        for instruction in instructions:
            if not instruction.accounts:
                continue

            candidates = []
            for address in instruction.accounts:
                if address not in visited:
                    visited.add(address)
                    candidates.append(address)
            if not candidates:
                continue

            try:
                accounts = await reader.get_multiple_accounts(candidates)
            except Exception as e:
                self.logger.warning(f"Account read failed while locating {venue.value} pool: {str(e)}")
                return None

            for address, account in zip(candidates, accounts):
                if account is None or account.owner != program_id:
                    continue
                if not looks_like_pool(venue, account.data):
                    self.logger.debug(f"Skipping {venue.value} program account {address}: not a pool layout")
                    continue

                pools.append(decode_pool(venue, address, account.data))
                if not multi_pool:
                    return PoolLocation(pools=tuple(pools))

        if not pools:
            return None
        return PoolLocation(pools=tuple(pools))
