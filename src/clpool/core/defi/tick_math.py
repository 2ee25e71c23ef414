"""
Tick Math - tick <-> sqrt price conversion.

Exact integer implementation of the tick/price mapping:

    price = 1.0001^tick
    sqrt_price_x96 = sqrt(price) * 2^96

``get_sqrt_ratio_at_tick`` and ``get_tick_at_sqrt_ratio`` are inverse up to
rounding: for every sqrt price p in range,
``get_sqrt_ratio_at_tick(get_tick_at_sqrt_ratio(p)) <= p``.
"""

from __future__ import annotations

import math

from ..exceptions import TickRangeError, ValidationError
from .safe_math import MAX_UINT128, MAX_UINT256, Q96

MIN_TICK: int = -887272
MAX_TICK: int = -MIN_TICK

# get_sqrt_ratio_at_tick(MIN_TICK) and get_sqrt_ratio_at_tick(MAX_TICK)
MIN_SQRT_RATIO: int = 4295128739
MAX_SQRT_RATIO: int = 1461446703485210103287273052203988822378723970342

# 1 / sqrt(1.0001)^(2^i) in Q128.128, for i = 1 .. 19
_RATIO_FACTORS = (
    (0x2, 0xfff97272373d413259a46990580e213a),
    (0x4, 0xfff2e50f5f656932ef12357cf3c7fdcc),
    (0x8, 0xffe5caca7e10e4e61c3624eaa0941cd0),
    (0x10, 0xffcb9843d60f6159c9db58835c926644),
    (0x20, 0xff973b41fa98c081472e6896dfb254c0),
    (0x40, 0xff2ea16466c96a3843ec78b326b52861),
    (0x80, 0xfe5dee046a99a2a811c461f1969c3053),
    (0x100, 0xfcbe86c7900a88aedcffc83b479aa3a4),
    (0x200, 0xf987a7253ac413176f2b074cf7815e54),
    (0x400, 0xf3392b0822b70005940c7a398e4b70f3),
    (0x800, 0xe7159475a2c29b7443b29c7fa6e889d9),
    (0x1000, 0xd097f3bdfd2022b8845ad8f792aa5825),
    (0x2000, 0xa9f746462d870fdf8a65dc1f90e061e5),
    (0x4000, 0x70d869a156d2a1b890bb3df62baf32f7),
    (0x8000, 0x31be135f97d08fd981231505542fcfa6),
    (0x10000, 0x9aa508b5b7a84e1c677de54f3e99bc9),
    (0x20000, 0x5d6af8dedb81196699c329225ee604),
    (0x40000, 0x2216e584f5fa1ea926041bedfe98),
    (0x80000, 0x48a170391f7dc42444e8fa2),
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """
    Calculate sqrt(1.0001^tick) * 2^96.

    Args:
        tick: Tick index (MIN_TICK .. MAX_TICK)

    Returns:
        sqrt price as a Q64.96 number (rounded up)

    Raises:
        TickRangeError: If |tick| > MAX_TICK
    """
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise TickRangeError(f"Tick out of range: {tick}", {"tick": tick}, code="T")

    ratio = 0xfffcb933bd6fad37aa2d162d1a594001 if abs_tick & 0x1 else 1 << 128
    for bit, factor in _RATIO_FACTORS:
        if abs_tick & bit:
            ratio = (ratio * factor) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up so the result is never below the true price
    return (ratio >> 32) + (1 if ratio & 0xFFFFFFFF else 0)


def get_tick_at_sqrt_ratio(sqrt_price_x96: int) -> int:
    """
    Calculate the greatest tick whose sqrt ratio is <= ``sqrt_price_x96``.

    Raises:
        ValidationError: If the price is outside [MIN_SQRT_RATIO, MAX_SQRT_RATIO)
    """
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ValidationError(
            f"sqrt price out of range: {sqrt_price_x96}",
            {"sqrt_price_x96": sqrt_price_x96},
            code="R",
        )

    ratio = sqrt_price_x96 << 32
    msb = ratio.bit_length() - 1

    if msb >= 128:
        r = ratio >> (msb - 127)
    else:
        r = ratio << (127 - msb)

    log_2 = (msb - 128) << 64

    # 14 bits of fractional log2 are enough to pin the tick to one of two candidates
    for i in range(14):
        r = (r * r) >> 127
        f = r >> 128
        log_2 |= f << (63 - i)
        r >>= f

    log_sqrt10001 = log_2 * 255738958999603826347141

    tick_low = (log_sqrt10001 - 3402992956809132418596140100660247210) >> 128
    tick_high = (log_sqrt10001 + 291339464771989622907027621153398088495) >> 128

    if tick_low == tick_high:
        return tick_low
    return tick_high if get_sqrt_ratio_at_tick(tick_high) <= sqrt_price_x96 else tick_low


def tick_spacing_to_max_liquidity_per_tick(tick_spacing: int) -> int:
    """Maximum gross liquidity one tick may reference for a given spacing.

    Spreads uint128 evenly over every usable tick so the sum of all
    in-range liquidity cannot overflow.
    """
    if tick_spacing <= 0:
        raise TickRangeError("Tick spacing must be positive", {"tick_spacing": tick_spacing}, code="TS")
    min_tick = -(MAX_TICK // tick_spacing) * tick_spacing
    max_tick = (MAX_TICK // tick_spacing) * tick_spacing
    num_ticks = (max_tick - min_tick) // tick_spacing + 1
    return MAX_UINT128 // num_ticks


def tick_to_price(tick: int) -> float:
    """Convert tick to actual price (for display)."""
    return 1.0001 ** tick


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> float:
    """Convert a Q64.96 sqrt price to a float price (for display)."""
    return (sqrt_price_x96 / Q96) ** 2


def encode_price_sqrt(reserve1: int, reserve0: int) -> int:
    """Q64.96 sqrt price for the ratio reserve1 / reserve0, rounded down."""
    if reserve0 <= 0 or reserve1 <= 0:
        raise ValidationError("Reserves must be positive", {"reserve0": reserve0, "reserve1": reserve1})
    return math.isqrt((reserve1 << 192) // reserve0)
