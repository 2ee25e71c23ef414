"""
clpool DeFi Protocols.

- Concentrated Liquidity: capital-efficient AMM over tick ranges
- Oracle: time-weighted tick and liquidity accumulators
- Math: exact fixed-point price and amount calculations
- Journal: shared undo log making pool operations atomic
"""

from .concentrated_liquidity import (
    ConcentratedLiquidityFactory,
    ConcentratedLiquidityPool,
    FeeTier,
    PoolState,
    ProtocolFees,
    Slot0,
    compute_pool_address,
)
from .journal import Journal, shared_journal
from .oracle import Observation
from .position import PositionInfo
from .tick import TickInfo
from .token import Token

__all__ = [
    # Concentrated Liquidity
    "ConcentratedLiquidityPool",
    "ConcentratedLiquidityFactory",
    "FeeTier",
    "PoolState",
    "ProtocolFees",
    "Slot0",
    "compute_pool_address",
    # Ledgers
    "TickInfo",
    "PositionInfo",
    "Observation",
    # Assets and transactions
    "Token",
    "Journal",
    "shared_journal",
]
