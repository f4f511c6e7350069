import re
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import (
    JUPITER_V6_PROGRAM, PUMP_SWAP_PROGRAM, RAYDIUM_AMM_V4_PROGRAM,
    RAYDIUM_CLMM_PROGRAM, RAYDIUM_CPMM_PROGRAM, TRANSFER_LOG_MARKERS,
)
from .types import DexVenue

VENUE_PROGRAMS: Dict[DexVenue, str] = {
    DexVenue.JUPITER: JUPITER_V6_PROGRAM,
    DexVenue.RAYDIUM_AMM_V4: RAYDIUM_AMM_V4_PROGRAM,
    DexVenue.RAYDIUM_CPMM: RAYDIUM_CPMM_PROGRAM,
    DexVenue.RAYDIUM_CLMM: RAYDIUM_CLMM_PROGRAM,
    DexVenue.PUMP_SWAP: PUMP_SWAP_PROGRAM,
}

# Aggregator first: a routed swap also invokes every pool program it touches
DEFAULT_PRIORITY: List[DexVenue] = [
    DexVenue.JUPITER,
    DexVenue.RAYDIUM_AMM_V4,
    DexVenue.RAYDIUM_CPMM,
    DexVenue.RAYDIUM_CLMM,
    DexVenue.PUMP_SWAP,
]

_INVOKE_RE = re.compile(r"^Program (\w+) invoke \[\d+\]")


def invoked_programs(log_lines: Iterable[str]) -> List[str]:
    """Program ids with an invocation log line, in first-seen order"""
    seen = []
    for line in log_lines:
        match = _INVOKE_RE.match(line or "")
        if match and match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def has_transfer_log(log_lines: Iterable[str]) -> bool:
    return any(line and line.startswith(TRANSFER_LOG_MARKERS) for line in log_lines)


class DexIdentifier:
    """Names the DEX venue behind a transaction from its log output"""

    def __init__(self, priority: Optional[Sequence[DexVenue]] = None):
        self.priority = list(priority or DEFAULT_PRIORITY)

    def identify(self, log_lines: Optional[Sequence[str]]) -> Optional[DexVenue]:
        if not log_lines:
            return None
        # A token transfer only counts together with a venue invocation
        if not has_transfer_log(log_lines):
            return None
        invoked = set(invoked_programs(log_lines))
        for venue in self.priority:
            if VENUE_PROGRAMS[venue] in invoked:
                return venue
        return None
