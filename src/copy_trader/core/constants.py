# Native asset
WSOL_MINT = "So11111111111111111111111111111111111111112"
NATIVE_DECIMALS = 9
LAMPORTS_PER_SOL = 1_000_000_000
NATIVE_SYMBOL = "SOL"

# Fallback precision when a mint's decimals cannot be resolved
DEFAULT_DECIMALS = 9

# DEX programs
RAYDIUM_AMM_V4_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_CPMM_PROGRAM = "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C"
RAYDIUM_CLMM_PROGRAM = "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK"
PUMP_SWAP_PROGRAM = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"
JUPITER_V6_PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

# System programs
SYSTEM_PROGRAM = "11111111111111111111111111111111"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PeqnmGMhd5xV8bH3dq"
ASSOCIATED_TOKEN_PROGRAM = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"
SYSVAR_RENT = "SysvarRent111111111111111111111111111111111"

TOKEN_PROGRAMS = frozenset({TOKEN_PROGRAM, TOKEN_2022_PROGRAM})

# Accounts that can never be a pool; skipped without an RPC read
NON_POOL_ACCOUNTS = frozenset({
    SYSTEM_PROGRAM,
    TOKEN_PROGRAM,
    TOKEN_2022_PROGRAM,
    ASSOCIATED_TOKEN_PROGRAM,
    COMPUTE_BUDGET_PROGRAM,
    SYSVAR_RENT,
    WSOL_MINT,
    RAYDIUM_AMM_V4_PROGRAM,
    RAYDIUM_CPMM_PROGRAM,
    RAYDIUM_CLMM_PROGRAM,
    PUMP_SWAP_PROGRAM,
    JUPITER_V6_PROGRAM,
})

# Log markers
TRANSFER_LOG_MARKERS = (
    "Program log: Instruction: Transfer",
    "Program log: Instruction: TransferChecked",
)

KNOWN_SYMBOLS = {
    WSOL_MINT: NATIVE_SYMBOL,
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
}
