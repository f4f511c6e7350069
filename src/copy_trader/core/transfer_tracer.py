import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .constants import TOKEN_PROGRAMS
from .errors import InsufficientTransferData
from .transaction import Instruction, ParsedTransaction

TRANSFER_TYPES = ("transfer", "transferChecked")


@dataclass(frozen=True)
class TransferEvent:
    source: str
    destination: str
    authority: Optional[str]
    amount: int
    mint: Optional[str]
    decimals: Optional[int]
    parent_index: Optional[int]


class TransferTracer:
    """
    Recovers the user-facing legs of an aggregator route from the token
    transfers executed inside the aggregator's instruction span.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def trace(self,
              tx: ParsedTransaction,
              aggregator_program_id: str,
              target: str) -> Tuple[TransferEvent, TransferEvent]:
        span = self._aggregator_span(tx, aggregator_program_id)
        if span is None:
            raise InsufficientTransferData(f"Aggregator {aggregator_program_id} not invoked in {tx.signature}")

        start, end = span
        transfers = [
            self._to_event(tx, ix)
            for ix in tx.inner_instructions
            if ix.parent_index is not None and start <= ix.parent_index <= end and self._is_transfer(ix)
        ]

        if len(transfers) < 2:
            raise InsufficientTransferData(
                f"Found {len(transfers)} transfer(s) in aggregator span of {tx.signature}, need 2"
            )

        first, last = transfers[0], transfers[-1]
        if last.authority == target:
            # Trailing transfer signed by the target is an unwrap/return artifact
            if len(transfers) < 3:
                raise InsufficientTransferData(
                    f"Only one usable transfer in {tx.signature} after dropping self-authority return leg"
                )
            last = transfers[-2]
        return first, last

    @staticmethod
    def _aggregator_span(tx: ParsedTransaction, program_id: str) -> Optional[Tuple[int, int]]:
        indices = [i for i, ix in enumerate(tx.instructions) if ix.program_id == program_id]
        # Aggregator reached through CPI from another top-level program
        indices += [
            ix.parent_index for ix in tx.inner_instructions
            if ix.program_id == program_id and ix.parent_index is not None
        ]
        if not indices:
            return None
        return min(indices), max(indices)

    @staticmethod
    def _is_transfer(ix: Instruction) -> bool:
        return ix.program_id in TOKEN_PROGRAMS and ix.parsed_type in TRANSFER_TYPES

    @staticmethod
    def _to_event(tx: ParsedTransaction, ix: Instruction) -> TransferEvent:
        info = ix.parsed_info
        source = info.get("source", "")
        destination = info.get("destination", "")

        token_amount = info.get("tokenAmount") or {}
        amount = int(info.get("amount") or token_amount.get("amount") or 0)
        decimals = token_amount.get("decimals")

        mint = info.get("mint")
        if mint is None:
            accounts = tx.token_accounts()
            for address in (source, destination):
                if address in accounts:
                    mint = accounts[address].mint
                    break
        if decimals is None and mint is not None:
            decimals = tx.mint_decimals().get(mint)

        return TransferEvent(
            source=source,
            destination=destination,
            authority=info.get("authority") or info.get("multisigAuthority"),
            amount=amount,
            mint=mint,
            decimals=decimals,
            parent_index=ix.parent_index,
        )
