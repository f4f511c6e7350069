"""Copy-trading bot that mirrors a target wallet's DEX swaps on Solana."""

__version__ = "0.1.0"
