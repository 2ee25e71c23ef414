"""
Unit tests for fixed-width arithmetic helpers and liquidity math.
"""

import pytest

from clpool.core.defi.liquidity_math import add_delta
from clpool.core.defi.safe_math import (
    MAX_INT56,
    MAX_UINT128,
    MAX_UINT256,
    MIN_INT56,
    Q128,
    SafeMath,
    div_rounding_up,
    div_trunc,
    mul_div,
    mul_div_rounding_up,
    to_int128,
    to_uint128,
    to_uint160,
    wrap_int56,
    wrap_uint128,
    wrap_uint256,
    wrap_uint32,
)
from clpool.core.exceptions import MathError


def test_mul_div_rounds_in_requested_direction():
    assert mul_div(6, 7, 4) == 10
    assert mul_div(6, 7, 4, round_up=True) == 11
    assert mul_div(8, 2, 4, round_up=True) == 4
    assert mul_div_rounding_up(Q128, 1, 3) == Q128 // 3 + 1


def test_mul_div_keeps_full_precision_for_intermediate_products():
    """The product may exceed 256 bits as long as the result fits."""
    assert mul_div(MAX_UINT256, MAX_UINT256, MAX_UINT256) == MAX_UINT256
    assert mul_div(Q128, Q128 * 3, Q128) == Q128 * 3


def test_mul_div_rejects_zero_denominator_and_overflow():
    with pytest.raises(MathError):
        mul_div(1, 1, 0)
    with pytest.raises(MathError):
        mul_div(MAX_UINT256, MAX_UINT256, 1)
    with pytest.raises(MathError):
        mul_div_rounding_up(MAX_UINT256, MAX_UINT256, MAX_UINT256 - 1)


def test_div_helpers():
    assert div_rounding_up(7, 2) == 4
    assert div_rounding_up(8, 2) == 4
    assert div_trunc(-7, 2) == -3
    assert div_trunc(7, -2) == -3
    assert div_trunc(7, 2) == 3


def test_checked_casts():
    assert to_uint128(MAX_UINT128) == MAX_UINT128
    with pytest.raises(MathError):
        to_uint128(-1)
    with pytest.raises(MathError):
        to_uint128(MAX_UINT128 + 1)
    with pytest.raises(MathError):
        to_int128(1 << 127)
    assert to_int128(-(1 << 127)) == -(1 << 127)
    with pytest.raises(MathError):
        to_uint160(1 << 160)


def test_wrapping_helpers():
    assert wrap_uint32((1 << 32) + 5) == 5
    assert wrap_uint32(-1) == (1 << 32) - 1
    assert wrap_uint128(MAX_UINT128 + 2) == 1
    assert wrap_uint256(-1) == MAX_UINT256
    assert wrap_int56(MAX_INT56 + 1) == MIN_INT56
    assert wrap_int56(MIN_INT56 - 1) == MAX_INT56
    assert wrap_int56(-5) == -5


def test_safe_math_checks_bounds():
    assert SafeMath.safe_add(1, 2) == 3
    with pytest.raises(MathError):
        SafeMath.safe_add(MAX_UINT128, 1, MAX_UINT128)


def test_add_delta():
    assert add_delta(1, 0) == 1
    assert add_delta(1, -1) == 0
    assert add_delta(1, 1) == 2

    with pytest.raises(MathError) as underflow:
        add_delta(0, -1)
    assert underflow.value.code == "LS"

    with pytest.raises(MathError) as overflow:
        add_delta(MAX_UINT128, 1)
    assert overflow.value.code == "LA"
