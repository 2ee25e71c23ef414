"""
Oracle ring buffer.

Stores time-stamped observations of the cumulative tick and cumulative
seconds-per-liquidity so time-weighted averages can be reconstructed over
any window still retained by the buffer.

The buffer is a list whose populated length is the *next* cardinality.
Slots past the active cardinality are pre-allocated with a sentinel so the
first write into them is a plain replacement. At most one observation is
written per timestamp; a second write in the same second is a no-op.

Timestamps are uint32 and wrap; comparisons go through ``lte`` which treats
any timestamp greater than "now" as belonging to the previous epoch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ..exceptions import OracleError
from .safe_math import MAX_UINT16, div_trunc, wrap_int56, wrap_uint160, wrap_uint32

MAX_CARDINALITY: int = MAX_UINT16


@dataclass(frozen=True)
class Observation:
    block_timestamp: int = 0
    tick_cumulative: int = 0
    seconds_per_liquidity_cumulative_x128: int = 0
    initialized: bool = False


# Non-zero timestamp so a pre-allocated slot is never mistaken for "never grown"
SENTINEL = Observation(block_timestamp=1)


def transform(last: Observation, block_timestamp: int, tick: int, liquidity: int) -> Observation:
    """Extrapolate ``last`` forward to ``block_timestamp`` at a constant tick and liquidity."""
    delta = wrap_uint32(block_timestamp - last.block_timestamp)
    return Observation(
        block_timestamp=block_timestamp,
        tick_cumulative=wrap_int56(last.tick_cumulative + tick * delta),
        seconds_per_liquidity_cumulative_x128=wrap_uint160(
            last.seconds_per_liquidity_cumulative_x128 + (delta << 128) // (liquidity if liquidity > 0 else 1)
        ),
        initialized=True,
    )


def initialize(observations: List[Observation], time: int) -> Tuple[int, int]:
    """
    Write the first slot.

    Returns:
        (cardinality, cardinality_next), both 1
    """
    first = Observation(block_timestamp=time, initialized=True)
    if observations:
        observations[0] = first
    else:
        observations.append(first)
    return 1, 1


def write(
    observations: List[Observation],
    index: int,
    block_timestamp: int,
    tick: int,
    liquidity: int,
    cardinality: int,
    cardinality_next: int,
) -> Tuple[int, int]:
    """
    Append an observation, at most once per timestamp.

    ``tick`` and ``liquidity`` are the values in effect since the previous
    observation. The pending ``cardinality_next`` is adopted only when the
    cursor sits on the last active slot, so the ring stays ordered.

    Returns:
        (index_updated, cardinality_updated)
    """
    last = observations[index]

    if last.block_timestamp == block_timestamp:
        return index, cardinality

    if cardinality_next > cardinality and index == cardinality - 1:
        cardinality_updated = cardinality_next
    else:
        cardinality_updated = cardinality

    index_updated = (index + 1) % cardinality_updated
    observations[index_updated] = transform(last, block_timestamp, tick, liquidity)
    return index_updated, cardinality_updated


def grow(observations: List[Observation], current: int, next_cardinality: int) -> int:
    """
    Pre-allocate slots up to ``next_cardinality``.

    Returns:
        max(current, next_cardinality)
    """
    if current <= 0:
        raise OracleError("Oracle not initialized", code="I")
    if next_cardinality > MAX_CARDINALITY:
        raise OracleError(
            f"Observation cardinality cannot exceed {MAX_CARDINALITY}",
            {"cardinality_next": next_cardinality},
        )
    if next_cardinality <= current:
        return current

    for i in range(current, next_cardinality):
        if i < len(observations):
            observations[i] = SENTINEL
        else:
            observations.append(SENTINEL)
    return next_cardinality


def lte(time: int, a: int, b: int) -> bool:
    """``a <= b`` for 32-bit timestamps, both assumed chronologically at or before ``time``."""
    if a <= time and b <= time:
        return a <= b

    a_adjusted = a if a > time else a + (1 << 32)
    b_adjusted = b if b > time else b + (1 << 32)
    return a_adjusted <= b_adjusted


def binary_search(
    observations: Sequence[Observation],
    time: int,
    target: int,
    index: int,
    cardinality: int,
) -> Tuple[Observation, Observation]:
    """Observations immediately at-or-before and at-or-after ``target``.

    The caller guarantees the target lies within the retained window.
    """
    left = (index + 1) % cardinality  # oldest observation
    right = left + cardinality - 1    # newest observation

    while True:
        i = (left + right) // 2
        before_or_at = observations[i % cardinality]

        # Landed on a slot not yet written since growth: search higher
        if not before_or_at.initialized:
            left = i + 1
            continue

        at_or_after = observations[(i + 1) % cardinality]
        target_at_or_after = lte(time, before_or_at.block_timestamp, target)

        if target_at_or_after and lte(time, target, at_or_after.block_timestamp):
            return before_or_at, at_or_after

        if not target_at_or_after:
            right = i - 1
        else:
            left = i + 1


def get_surrounding_observations(
    observations: Sequence[Observation],
    time: int,
    target: int,
    tick: int,
    index: int,
    liquidity: int,
    cardinality: int,
) -> Tuple[Observation, Observation]:
    """
    Observations bracketing ``target``.

    If the target is at or after the newest observation, the second element
    is the newest observation extrapolated to the target.

    Raises:
        OracleError: ``OLD`` if the target predates the oldest retained observation
    """
    before_or_at = observations[index]

    if lte(time, before_or_at.block_timestamp, target):
        if before_or_at.block_timestamp == target:
            return before_or_at, before_or_at
        return before_or_at, transform(before_or_at, target, tick, liquidity)

    # Oldest observation is the next slot, or slot 0 if the ring has not wrapped yet
    before_or_at = observations[(index + 1) % cardinality]
    if not before_or_at.initialized:
        before_or_at = observations[0]

    if not lte(time, before_or_at.block_timestamp, target):
        raise OracleError(
            "Target predates the oldest observation",
            {"target": target, "oldest": before_or_at.block_timestamp},
            code="OLD",
        )

    return binary_search(observations, time, target, index, cardinality)


def observe_single(
    observations: Sequence[Observation],
    time: int,
    seconds_ago: int,
    tick: int,
    index: int,
    liquidity: int,
    cardinality: int,
) -> Tuple[int, int]:
    """
    Cumulative tick and seconds-per-liquidity as of ``seconds_ago`` before ``time``.

    Exact at recorded timestamps; linearly interpolated between them.

    Returns:
        (tick_cumulative, seconds_per_liquidity_cumulative_x128)
    """
    if seconds_ago == 0:
        last = observations[index]
        if last.block_timestamp != time:
            last = transform(last, time, tick, liquidity)
        return last.tick_cumulative, last.seconds_per_liquidity_cumulative_x128

    target = wrap_uint32(time - seconds_ago)

    before_or_at, at_or_after = get_surrounding_observations(
        observations, time, target, tick, index, liquidity, cardinality
    )

    if target == before_or_at.block_timestamp:
        return before_or_at.tick_cumulative, before_or_at.seconds_per_liquidity_cumulative_x128
    if target == at_or_after.block_timestamp:
        return at_or_after.tick_cumulative, at_or_after.seconds_per_liquidity_cumulative_x128

    observation_time_delta = wrap_uint32(at_or_after.block_timestamp - before_or_at.block_timestamp)
    target_delta = wrap_uint32(target - before_or_at.block_timestamp)

    tick_cumulative = before_or_at.tick_cumulative + div_trunc(
        at_or_after.tick_cumulative - before_or_at.tick_cumulative, observation_time_delta
    ) * target_delta
    seconds_per_liquidity = before_or_at.seconds_per_liquidity_cumulative_x128 + (
        wrap_uint160(
            at_or_after.seconds_per_liquidity_cumulative_x128 - before_or_at.seconds_per_liquidity_cumulative_x128
        )
        * target_delta
    ) // observation_time_delta
    return tick_cumulative, wrap_uint160(seconds_per_liquidity)


def observe(
    observations: Sequence[Observation],
    time: int,
    seconds_agos: Sequence[int],
    tick: int,
    index: int,
    liquidity: int,
    cardinality: int,
) -> Tuple[List[int], List[int]]:
    """Batch form of ``observe_single``, one result per entry of ``seconds_agos``."""
    if cardinality <= 0:
        raise OracleError("Oracle not initialized", code="I")

    tick_cumulatives: List[int] = []
    seconds_per_liquidity_cumulatives: List[int] = []
    for seconds_ago in seconds_agos:
        tick_cumulative, seconds_per_liquidity = observe_single(
            observations, time, seconds_ago, tick, index, liquidity, cardinality
        )
        tick_cumulatives.append(tick_cumulative)
        seconds_per_liquidity_cumulatives.append(seconds_per_liquidity)
    return tick_cumulatives, seconds_per_liquidity_cumulatives
