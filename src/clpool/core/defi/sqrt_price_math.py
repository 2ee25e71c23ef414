"""
Sqrt Price Math - price movement and token amounts for a liquidity amount.

Every function takes an explicit rounding direction. Amounts the pool
receives are rounded up; amounts it pays out are rounded down; prices are
moved no further than the input pays for.
"""

from __future__ import annotations

from ..exceptions import MathError
from .safe_math import (
    MAX_UINT160,
    MAX_UINT256,
    Q96,
    RESOLUTION,
    div_rounding_up,
    mul_div,
    mul_div_rounding_up,
    to_int256,
    to_uint160,
)


def get_next_sqrt_price_from_amount0_rounding_up(
    sqrt_price_x96: int,
    liquidity: int,
    amount: int,
    add: bool,
) -> int:
    """Next sqrt price after adding or removing ``amount`` of token0.

    Rounds up so the price moves far enough to cover the input (add) or not
    so far that more than ``amount`` leaves the pool (remove).
    """
    if amount == 0:
        return sqrt_price_x96

    numerator1 = liquidity << RESOLUTION
    product = amount * sqrt_price_x96

    if add:
        if product <= MAX_UINT256:
            denominator = numerator1 + product
            if denominator <= MAX_UINT256:
                return mul_div_rounding_up(numerator1, sqrt_price_x96, denominator)
        return div_rounding_up(numerator1, numerator1 // sqrt_price_x96 + amount)

    if product > MAX_UINT256 or numerator1 <= product:
        raise MathError(
            "Insufficient token0 liquidity for output",
            {"sqrt_price_x96": sqrt_price_x96, "liquidity": liquidity, "amount": amount},
        )
    denominator = numerator1 - product
    return to_uint160(mul_div_rounding_up(numerator1, sqrt_price_x96, denominator))


def get_next_sqrt_price_from_amount1_rounding_down(
    sqrt_price_x96: int,
    liquidity: int,
    amount: int,
    add: bool,
) -> int:
    """Next sqrt price after adding or removing ``amount`` of token1."""
    if add:
        if amount <= MAX_UINT160:
            quotient = (amount << RESOLUTION) // liquidity
        else:
            quotient = mul_div(amount, Q96, liquidity)
        return to_uint160(sqrt_price_x96 + quotient)

    if amount <= MAX_UINT160:
        quotient = div_rounding_up(amount << RESOLUTION, liquidity)
    else:
        quotient = mul_div_rounding_up(amount, Q96, liquidity)

    if sqrt_price_x96 <= quotient:
        raise MathError(
            "Insufficient token1 liquidity for output",
            {"sqrt_price_x96": sqrt_price_x96, "liquidity": liquidity, "amount": amount},
        )
    return sqrt_price_x96 - quotient


def get_next_sqrt_price_from_input(
    sqrt_price_x96: int,
    liquidity: int,
    amount_in: int,
    zero_for_one: bool,
) -> int:
    """Next sqrt price given an input amount of token0 or token1."""
    if sqrt_price_x96 <= 0 or liquidity <= 0:
        raise MathError("Price and liquidity must be positive")

    if zero_for_one:
        return get_next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_in, True)
    return get_next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_in, True)


def get_next_sqrt_price_from_output(
    sqrt_price_x96: int,
    liquidity: int,
    amount_out: int,
    zero_for_one: bool,
) -> int:
    """Next sqrt price given an output amount of token0 or token1."""
    if sqrt_price_x96 <= 0 or liquidity <= 0:
        raise MathError("Price and liquidity must be positive")

    if zero_for_one:
        return get_next_sqrt_price_from_amount1_rounding_down(sqrt_price_x96, liquidity, amount_out, False)
    return get_next_sqrt_price_from_amount0_rounding_up(sqrt_price_x96, liquidity, amount_out, False)


def get_amount0_delta(
    sqrt_ratio_a_x96: int,
    sqrt_ratio_b_x96: int,
    liquidity: int,
    round_up: bool,
) -> int:
    """
    Token0 amount between two prices for ``liquidity``.

    amount0 = liquidity / sqrt(lower) - liquidity / sqrt(upper)
    """
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96

    if sqrt_ratio_a_x96 <= 0:
        raise MathError("sqrt ratio must be positive")

    numerator1 = liquidity << RESOLUTION
    numerator2 = sqrt_ratio_b_x96 - sqrt_ratio_a_x96

    if round_up:
        return div_rounding_up(
            mul_div_rounding_up(numerator1, numerator2, sqrt_ratio_b_x96),
            sqrt_ratio_a_x96,
        )
    return mul_div(numerator1, numerator2, sqrt_ratio_b_x96) // sqrt_ratio_a_x96


def get_amount1_delta(
    sqrt_ratio_a_x96: int,
    sqrt_ratio_b_x96: int,
    liquidity: int,
    round_up: bool,
) -> int:
    """
    Token1 amount between two prices for ``liquidity``.

    amount1 = liquidity * (sqrt(upper) - sqrt(lower))
    """
    if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
        sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96

    return mul_div(liquidity, sqrt_ratio_b_x96 - sqrt_ratio_a_x96, Q96, round_up=round_up)


def get_amount0_delta_signed(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int) -> int:
    """Signed token0 delta: positive (rounded up) when adding liquidity, negative (rounded down) when removing."""
    if liquidity < 0:
        return -to_int256(get_amount0_delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, -liquidity, False))
    return to_int256(get_amount0_delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity, True))


def get_amount1_delta_signed(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int) -> int:
    """Signed token1 delta: positive (rounded up) when adding liquidity, negative (rounded down) when removing."""
    if liquidity < 0:
        return -to_int256(get_amount1_delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, -liquidity, False))
    return to_int256(get_amount1_delta(sqrt_ratio_a_x96, sqrt_ratio_b_x96, liquidity, True))
