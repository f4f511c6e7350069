import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .balances import BalanceDelta, classify_direction
from .constants import KNOWN_SYMBOLS, WSOL_MINT
from .dex import DexIdentifier
from .errors import (
    CircularSwapError, DecodeError, InsufficientTransferData,
    PoolNotFoundError, UnknownDirectionError,
)
from .pool_locator import AccountReader
from .transaction import ParsedTransaction
from .types import DexVenue, SwapResult, TokenLeg
from .venues import Venue, default_venues


class ClassificationState(str, Enum):
    NO_DEX = "no_dex"
    NOT_FOUND = "not_found"
    CLASSIFIED = "classified"
    ERRORED = "errored"
    REJECTED = "rejected"


@dataclass
class Classification:
    """Terminal state of one classification attempt"""
    signature: str
    state: ClassificationState
    reason: str = ""
    dex: Optional[DexVenue] = None
    result: Optional[SwapResult] = None

    @property
    def ok(self) -> bool:
        return self.state == ClassificationState.CLASSIFIED


class SwapClassifier:
    """
    Turns a fetched transaction into a SwapResult: identify the venue from the
    logs, locate the pool or route, extract the two legs and order them.
    """

    def __init__(self,
                 account_reader: AccountReader,
                 target_wallet: str,
                 identifier: Optional[DexIdentifier] = None,
                 venues: Optional[Dict[DexVenue, Venue]] = None,
                 native_mint: str = WSOL_MINT,
                 logger: Optional[logging.Logger] = None):
        self.reader = account_reader
        self.target_wallet = target_wallet
        self.identifier = identifier or DexIdentifier()
        self.native_mint = native_mint
        self.logger = logger or logging.getLogger(__name__)
        self.venues = venues or default_venues(native_mint, self.logger)

    async def classify(self, tx: ParsedTransaction) -> Classification:
        signature = tx.signature
        dex = self.identifier.identify(tx.logs)
        if dex is None:
            return Classification(signature, ClassificationState.NO_DEX, "No supported DEX in logs")

        venue = self.venues.get(dex)
        if venue is None:
            return Classification(signature, ClassificationState.NO_DEX, f"No handler for {dex.value}", dex)

        try:
            route = await venue.locate(tx, self.reader, self.target_wallet)
            if route is None:
                raise PoolNotFoundError(f"No {dex.value} pool or route found")

            legs = venue.extract_legs(tx, route, target=self.target_wallet)
            classification, from_delta, to_delta = classify_direction(*legs, native_mint=self.native_mint)
        except (PoolNotFoundError, InsufficientTransferData) as e:
            self.logger.info(f"{signature}: {str(e)}")
            return Classification(signature, ClassificationState.NOT_FOUND, str(e), dex)
        except (CircularSwapError, UnknownDirectionError) as e:
            self.logger.info(f"{signature}: rejected, {str(e)}")
            return Classification(signature, ClassificationState.REJECTED, str(e), dex)
        except DecodeError as e:
            self.logger.error(
                f"{signature}: failed to decode {dex.value} account {e.address} "
                f"({e.data_length} bytes, prefix {e.data_prefix}): {str(e)}"
            )
            return Classification(signature, ClassificationState.ERRORED, str(e), dex)
        except Exception as e:
            self.logger.error(f"{signature}: classification failed: {str(e)}", exc_info=True)
            return Classification(signature, ClassificationState.ERRORED, str(e), dex)

        result = SwapResult(
            signature=signature,
            dex=dex,
            classification=classification,
            from_leg=self._leg(from_delta),
            to_leg=self._leg(to_delta),
            pool_address=route.pool_address,
            wallet=self.target_wallet,
            low_confidence=from_delta.low_confidence or to_delta.low_confidence,
        )
        self.logger.debug(f"Classified {signature}: {result.as_dict()}")
        return Classification(signature, ClassificationState.CLASSIFIED, dex=dex, result=result)

    @staticmethod
    def _leg(delta: BalanceDelta) -> TokenLeg:
        return TokenLeg(
            mint=delta.mint,
            amount=delta.base_amount,
            decimals=delta.decimals,
            symbol=KNOWN_SYMBOLS.get(delta.mint),
        )
