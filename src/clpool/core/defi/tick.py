"""
Tick ledger.

A sparse mapping ``tick index -> TickInfo``. A tick exists only while some
position references it (``liquidity_gross > 0``). ``TickInfo`` records are
immutable; every update stores a replacement, so undoing an update only
needs the previous record.

"Outside" accumulators follow the convention that, when a tick is first
initialized, everything that happened so far happened below it if the tick
is at or below the current tick, and above it otherwise. Crossing a tick
flips each accumulator to ``global - outside``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Tuple

from ..exceptions import MathError
from .liquidity_math import add_delta
from .safe_math import to_int128, wrap_int56, wrap_uint160, wrap_uint256, wrap_uint32


@dataclass(frozen=True)
class TickInfo:
    """Information stored for each initialized tick."""
    liquidity_gross: int = 0  # Total liquidity referencing this tick
    liquidity_net: int = 0    # Liquidity added when crossed left to right
    fee_growth_outside_0_x128: int = 0
    fee_growth_outside_1_x128: int = 0
    tick_cumulative_outside: int = 0
    seconds_per_liquidity_outside_x128: int = 0
    seconds_outside: int = 0
    initialized: bool = False


EMPTY_TICK = TickInfo()


def get_fee_growth_inside(
    ticks: Dict[int, TickInfo],
    tick_lower: int,
    tick_upper: int,
    tick_current: int,
    fee_growth_global_0_x128: int,
    fee_growth_global_1_x128: int,
) -> Tuple[int, int]:
    """
    Fee growth per unit of liquidity strictly inside [tick_lower, tick_upper).

    Works for uninitialized bounds (their outside values are zero). All
    subtraction wraps modulo 2^256; only differences of the result are
    meaningful.
    """
    lower = ticks.get(tick_lower, EMPTY_TICK)
    upper = ticks.get(tick_upper, EMPTY_TICK)

    if tick_current >= tick_lower:
        below_0 = lower.fee_growth_outside_0_x128
        below_1 = lower.fee_growth_outside_1_x128
    else:
        below_0 = fee_growth_global_0_x128 - lower.fee_growth_outside_0_x128
        below_1 = fee_growth_global_1_x128 - lower.fee_growth_outside_1_x128

    if tick_current < tick_upper:
        above_0 = upper.fee_growth_outside_0_x128
        above_1 = upper.fee_growth_outside_1_x128
    else:
        above_0 = fee_growth_global_0_x128 - upper.fee_growth_outside_0_x128
        above_1 = fee_growth_global_1_x128 - upper.fee_growth_outside_1_x128

    return (
        wrap_uint256(fee_growth_global_0_x128 - below_0 - above_0),
        wrap_uint256(fee_growth_global_1_x128 - below_1 - above_1),
    )


def update(
    ticks: Dict[int, TickInfo],
    tick: int,
    tick_current: int,
    liquidity_delta: int,
    fee_growth_global_0_x128: int,
    fee_growth_global_1_x128: int,
    seconds_per_liquidity_cumulative_x128: int,
    tick_cumulative: int,
    time: int,
    upper: bool,
    max_liquidity: int,
) -> bool:
    """
    Apply a liquidity delta to one boundary tick.

    Returns:
        True if the tick flipped between initialized and uninitialized
        (the caller must flip the bitmap bit)

    Raises:
        MathError: ``LO`` if gross liquidity would exceed ``max_liquidity``
    """
    info = ticks.get(tick, EMPTY_TICK)

    liquidity_gross_before = info.liquidity_gross
    liquidity_gross_after = add_delta(liquidity_gross_before, liquidity_delta)

    if liquidity_gross_after > max_liquidity:
        raise MathError(
            "Tick liquidity cap exceeded",
            {"tick": tick, "liquidity_gross": liquidity_gross_after, "max": max_liquidity},
            code="LO",
        )

    flipped = (liquidity_gross_after == 0) != (liquidity_gross_before == 0)

    if liquidity_gross_before == 0:
        # By convention all growth before initialization happened below the tick
        if tick <= tick_current:
            info = replace(
                info,
                fee_growth_outside_0_x128=fee_growth_global_0_x128,
                fee_growth_outside_1_x128=fee_growth_global_1_x128,
                seconds_per_liquidity_outside_x128=seconds_per_liquidity_cumulative_x128,
                tick_cumulative_outside=tick_cumulative,
                seconds_outside=time,
            )
        info = replace(info, initialized=True)

    # Net liquidity is added when crossing left to right, removed when crossing the upper bound
    if upper:
        liquidity_net = to_int128(info.liquidity_net - liquidity_delta)
    else:
        liquidity_net = to_int128(info.liquidity_net + liquidity_delta)

    ticks[tick] = replace(info, liquidity_gross=liquidity_gross_after, liquidity_net=liquidity_net)
    return flipped


def clear(ticks: Dict[int, TickInfo], tick: int) -> None:
    """Release a tick that no position references any more."""
    ticks.pop(tick, None)


def cross(
    ticks: Dict[int, TickInfo],
    tick: int,
    fee_growth_global_0_x128: int,
    fee_growth_global_1_x128: int,
    seconds_per_liquidity_cumulative_x128: int,
    tick_cumulative: int,
    time: int,
) -> int:
    """
    Transition to ``tick`` as price moves across it.

    Returns:
        The liquidity net delta of the tick (to be added when moving
        left to right, subtracted when moving right to left)
    """
    info = ticks.get(tick, EMPTY_TICK)
    ticks[tick] = replace(
        info,
        fee_growth_outside_0_x128=wrap_uint256(fee_growth_global_0_x128 - info.fee_growth_outside_0_x128),
        fee_growth_outside_1_x128=wrap_uint256(fee_growth_global_1_x128 - info.fee_growth_outside_1_x128),
        seconds_per_liquidity_outside_x128=wrap_uint160(
            seconds_per_liquidity_cumulative_x128 - info.seconds_per_liquidity_outside_x128
        ),
        tick_cumulative_outside=wrap_int56(tick_cumulative - info.tick_cumulative_outside),
        seconds_outside=wrap_uint32(time - info.seconds_outside),
    )
    return info.liquidity_net
