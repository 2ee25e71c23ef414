"""
Position ledger.

Positions are keyed by (owner, tick_lower, tick_upper). A position is created
on the first update of its key and never deleted: once its liquidity is
withdrawn it can still hold owed amounts until they are collected.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Tuple

from ..exceptions import PositionError
from .liquidity_math import add_delta
from .safe_math import Q128, mul_div, wrap_uint128, wrap_uint256

PositionKey = Tuple[str, int, int]


@dataclass(frozen=True)
class PositionInfo:
    """
    Liquidity position within a price range.

    Represents an owner's share of liquidity between two ticks.
    """
    liquidity: int = 0
    fee_growth_inside_0_last_x128: int = 0
    fee_growth_inside_1_last_x128: int = 0
    tokens_owed_0: int = 0
    tokens_owed_1: int = 0

    def is_in_range(self, tick_lower: int, tick_upper: int, current_tick: int) -> bool:
        return self.liquidity > 0 and tick_lower <= current_tick < tick_upper


EMPTY_POSITION = PositionInfo()


def key(owner: str, tick_lower: int, tick_upper: int) -> PositionKey:
    return owner, tick_lower, tick_upper


def get(positions: Dict[PositionKey, PositionInfo], owner: str, tick_lower: int, tick_upper: int) -> PositionInfo:
    """Position for the key, or an empty position if it was never touched."""
    return positions.get(key(owner, tick_lower, tick_upper), EMPTY_POSITION)


def update(
    positions: Dict[PositionKey, PositionInfo],
    position_key: PositionKey,
    liquidity_delta: int,
    fee_growth_inside_0_x128: int,
    fee_growth_inside_1_x128: int,
) -> PositionInfo:
    """
    Credit accumulated fees to a position and apply a liquidity delta.

    Fees owed = prior liquidity * (fee growth inside - last snapshot), rounded
    down. Owed amounts are uint128 and wrap on overflow: fees must be
    collected before that width is exhausted.

    Raises:
        PositionError: ``NP`` when poking (zero delta) a position without liquidity
        MathError: ``LS`` when the delta would make liquidity negative
    """
    current = positions.get(position_key, EMPTY_POSITION)

    if liquidity_delta == 0:
        if current.liquidity <= 0:
            raise PositionError("Cannot poke a position with no liquidity", {"position": position_key}, code="NP")
        liquidity_next = current.liquidity
    else:
        liquidity_next = add_delta(current.liquidity, liquidity_delta)

    tokens_owed_0 = mul_div(
        wrap_uint256(fee_growth_inside_0_x128 - current.fee_growth_inside_0_last_x128),
        current.liquidity,
        Q128,
    )
    tokens_owed_1 = mul_div(
        wrap_uint256(fee_growth_inside_1_x128 - current.fee_growth_inside_1_last_x128),
        current.liquidity,
        Q128,
    )

    updated = replace(
        current,
        liquidity=liquidity_next,
        fee_growth_inside_0_last_x128=fee_growth_inside_0_x128,
        fee_growth_inside_1_last_x128=fee_growth_inside_1_x128,
        tokens_owed_0=wrap_uint128(current.tokens_owed_0 + tokens_owed_0),
        tokens_owed_1=wrap_uint128(current.tokens_owed_1 + tokens_owed_1),
    )
    positions[position_key] = updated
    return updated


def credit(
    positions: Dict[PositionKey, PositionInfo],
    position_key: PositionKey,
    amount0: int,
    amount1: int,
) -> PositionInfo:
    """Add withdrawn principal to a position's owed amounts."""
    current = positions.get(position_key, EMPTY_POSITION)
    updated = replace(
        current,
        tokens_owed_0=wrap_uint128(current.tokens_owed_0 + amount0),
        tokens_owed_1=wrap_uint128(current.tokens_owed_1 + amount1),
    )
    positions[position_key] = updated
    return updated


def debit(
    positions: Dict[PositionKey, PositionInfo],
    position_key: PositionKey,
    amount0: int,
    amount1: int,
) -> PositionInfo:
    """Remove collected amounts from a position's owed amounts."""
    current = positions.get(position_key, EMPTY_POSITION)
    updated = replace(
        current,
        tokens_owed_0=current.tokens_owed_0 - amount0,
        tokens_owed_1=current.tokens_owed_1 - amount1,
    )
    positions[position_key] = updated
    return updated
