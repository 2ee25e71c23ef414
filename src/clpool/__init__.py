"""
clpool - Concentrated Liquidity Pool Engine

An exact-integer automated market maker where liquidity providers supply
capital over bounded price ranges.

Main Components:
- Math: Q64.96 sqrt prices, tick/price conversion, swap steps
- Ledgers: Ticks, initialization bitmap, positions, oracle observations
- Pool: Mint, burn, collect, swap, flash and administration
- Factory: Pool registry with deterministic addresses
"""

__version__ = "0.1.0"
__author__ = "clpool Development Team"

__all__ = []
