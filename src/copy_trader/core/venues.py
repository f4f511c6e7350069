"""
Per-venue strategies for turning a parsed transaction into swap legs.

Every venue answers the same three questions: is this transaction mine
(`identify`), where did the swap happen (`locate`), and which two balance
changes make up the trade (`extract_legs`). Pool venues answer with the pool
account and its vault balances; the aggregator answers with the first and
last token transfers of its route.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from .balances import BalanceDelta, BalanceDiffEngine
from .constants import NATIVE_DECIMALS, WSOL_MINT
from .dex import VENUE_PROGRAMS, invoked_programs
from .errors import CircularSwapError, InsufficientTransferData, UnknownDirectionError
from .layouts import PoolState
from .pool_locator import AccountReader, PoolLocation, PoolLocator
from .transaction import ParsedTransaction
from .transfer_tracer import TransferEvent, TransferTracer
from .types import DexVenue

LegPair = Tuple[BalanceDelta, BalanceDelta]


@dataclass(frozen=True)
class Route:
    venue: DexVenue
    pools: Tuple[PoolState, ...] = ()
    transfers: Tuple[TransferEvent, ...] = ()

    @property
    def pool_address(self) -> Optional[str]:
        return self.pools[0].address if self.pools else None


class Venue(ABC):
    venue: DexVenue

    def __init__(self, native_mint: str = WSOL_MINT, logger: Optional[logging.Logger] = None):
        self.native_mint = native_mint
        self.logger = logger or logging.getLogger(__name__)

    @property
    def program_id(self) -> str:
        return VENUE_PROGRAMS[self.venue]

    def identify(self, log_lines: Sequence[str]) -> bool:
        return self.program_id in invoked_programs(log_lines)

    @abstractmethod
    async def locate(self, tx: ParsedTransaction, reader: AccountReader, target: str) -> Optional[Route]:
        pass

    @abstractmethod
    def extract_legs(self, tx: ParsedTransaction, route: Route, target: str) -> LegPair:
        """Two signed deltas from the target's point of view"""
        pass


class PoolVenue(Venue):
    def __init__(self,
                 venue: DexVenue,
                 locator: Optional[PoolLocator] = None,
                 engine: Optional[BalanceDiffEngine] = None,
                 native_mint: str = WSOL_MINT,
                 logger: Optional[logging.Logger] = None):
        super().__init__(native_mint, logger)
        self.venue = venue
        self.locator = locator or PoolLocator(self.logger)
        self.engine = engine or BalanceDiffEngine(logger=self.logger)

    async def locate(self, tx: ParsedTransaction, reader: AccountReader, target: str) -> Optional[Route]:
        location: Optional[PoolLocation] = await self.locator.locate(tx.instructions, reader, self.venue)
        if location is None:
            return None
        return Route(venue=self.venue, pools=location.pools)

    def leg_mints(self, route: Route) -> Tuple[str, str]:
        first, last = route.pools[0], route.pools[-1]
        if len(route.pools) == 1:
            mint_x, mint_y = first.mint_a, first.mint_b
        else:
            # Multi-hop: the intermediate hop is never user facing
            mint_x = first.non_native_mint(self.native_mint)
            mint_y = last.non_native_mint(self.native_mint)
        if mint_x == mint_y:
            raise CircularSwapError(f"Route through {route.pool_address} starts and ends in {mint_x}")
        return mint_x, mint_y

    def extract_legs(self, tx: ParsedTransaction, route: Route, target: str) -> LegPair:
        mint_x, mint_y = self.leg_mints(route)
        first, last = route.pools[0], route.pools[-1]

        legs = self._pool_perspective(tx, first, last, mint_x, mint_y)
        if legs is None or not _opposed(*legs):
            self.logger.debug(f"Pool vault deltas inconclusive for {tx.signature}, using wallet balances")
            legs = self._wallet_perspective(tx, target, mint_x, mint_y)

        if not _opposed(*legs):
            raise UnknownDirectionError(
                f"No opposing balance changes for {mint_x}/{mint_y} in {tx.signature}"
            )
        return tuple(self._with_pool_decimals(leg, route) for leg in legs)

    def _pool_perspective(self, tx, first: PoolState, last: PoolState, mint_x: str, mint_y: str) -> Optional[LegPair]:
        """Vault deltas filtered by the pool authority, negated to the trader's side"""
        accounts = tx.token_accounts()
        authorities = []
        for pool, mint in ((first, mint_x), (last, mint_y)):
            try:
                vault = accounts.get(pool.vault_for(mint))
            except KeyError:
                vault = None
            if vault is None or vault.owner is None:
                return None
            authorities.append(vault.owner)

        leg_x = self.engine.diff(tx.pre_token_balances, tx.post_token_balances, mint_x, owner=authorities[0])
        leg_y = self.engine.diff(tx.pre_token_balances, tx.post_token_balances, mint_y, owner=authorities[1])
        return leg_x.negated(), leg_y.negated()

    def _wallet_perspective(self, tx, target: str, mint_x: str, mint_y: str) -> LegPair:
        legs = []
        for mint in (mint_x, mint_y):
            leg = self.engine.diff(tx.pre_token_balances, tx.post_token_balances, mint, owner=target)
            if leg.is_zero and mint == self.native_mint:
                # Native SOL wrapped and unwrapped inside the same transaction
                leg = BalanceDelta.from_base_units(mint, tx.lamport_delta(target), NATIVE_DECIMALS)
            legs.append(leg)
        return legs[0], legs[1]

    @staticmethod
    def _with_pool_decimals(leg: BalanceDelta, route: Route) -> BalanceDelta:
        if not leg.low_confidence:
            return leg
        for pool in route.pools:
            decimals = pool.decimals_for(leg.mint)
            if decimals is not None:
                return leg.with_decimals(decimals)
        return leg


class AggregatorVenue(Venue):
    venue = DexVenue.JUPITER

    def __init__(self,
                 tracer: Optional[TransferTracer] = None,
                 native_mint: str = WSOL_MINT,
                 logger: Optional[logging.Logger] = None):
        super().__init__(native_mint, logger)
        self.tracer = tracer or TransferTracer(self.logger)

    async def locate(self, tx: ParsedTransaction, reader: AccountReader, target: str) -> Optional[Route]:
        try:
            first, last = self.tracer.trace(tx, self.program_id, target)
        except InsufficientTransferData as e:
            self.logger.info(f"Aggregator route not traceable: {str(e)}")
            return None
        return Route(venue=self.venue, transfers=(first, last))

    def extract_legs(self, tx: ParsedTransaction, route: Route, target: str) -> LegPair:
        first, last = route.transfers
        if first.mint is None or last.mint is None:
            raise InsufficientTransferData(f"Unresolved transfer mint in {tx.signature}")

        decimals = tx.mint_decimals()
        legs = []
        for event, sign in ((first, -1), (last, 1)):
            resolved = event.decimals if event.decimals is not None else decimals.get(event.mint)
            low_confidence = resolved is None
            leg = BalanceDelta.from_base_units(
                event.mint, sign * event.amount, resolved if resolved is not None else NATIVE_DECIMALS, low_confidence
            )
            legs.append(leg)
        return legs[0], legs[1]


def _opposed(a: BalanceDelta, b: BalanceDelta) -> bool:
    return (a.delta < 0 < b.delta) or (b.delta < 0 < a.delta)


def default_venues(native_mint: str = WSOL_MINT, logger: Optional[logging.Logger] = None) -> Dict[DexVenue, Venue]:
    engine = BalanceDiffEngine(logger=logger)
    locator = PoolLocator(logger)
    venues: Dict[DexVenue, Venue] = {DexVenue.JUPITER: AggregatorVenue(native_mint=native_mint, logger=logger)}
    for venue in (DexVenue.RAYDIUM_AMM_V4, DexVenue.RAYDIUM_CPMM, DexVenue.RAYDIUM_CLMM, DexVenue.PUMP_SWAP):
        venues[venue] = PoolVenue(venue, locator=locator, engine=engine, native_mint=native_mint, logger=logger)
    return venues
