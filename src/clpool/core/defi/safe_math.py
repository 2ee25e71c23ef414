"""
Fixed-width integer arithmetic for the pool engine.

Python integers never overflow, so every fixed-width behaviour the engine
relies on is explicit here:

- Checked operations (``SafeMath``, ``mul_div``, ``to_*`` casts) raise
  ``MathError`` instead of silently producing out-of-width values.
- Wrapping operations (``wrap_*``) reproduce modular arithmetic for the
  accumulators that wrap on purpose: fee growth (uint256), seconds per
  liquidity (uint160), tick cumulative (int56), timestamps (uint32) and owed
  amounts (uint128).

Rounding direction is always a parameter so call sites can choose the
direction that favours the pool.
"""

from __future__ import annotations

from ..exceptions import MathError

# Fixed-point scales
Q96: int = 1 << 96
Q128: int = 1 << 128
RESOLUTION: int = 96

# Unsigned bounds
MAX_UINT16: int = (1 << 16) - 1
MAX_UINT32: int = (1 << 32) - 1
MAX_UINT128: int = (1 << 128) - 1
MAX_UINT160: int = (1 << 160) - 1
MAX_UINT256: int = (1 << 256) - 1

# Signed bounds
MIN_INT56: int = -(1 << 55)
MAX_INT56: int = (1 << 55) - 1
MIN_INT128: int = -(1 << 127)
MAX_INT128: int = (1 << 127) - 1
MIN_INT256: int = -(1 << 255)
MAX_INT256: int = (1 << 255) - 1


class SafeMath:
    """Checked addition against an explicit upper bound."""

    @staticmethod
    def safe_add(a: int, b: int, max_value: int = MAX_UINT256) -> int:
        result = a + b
        if result > max_value:
            raise MathError("Addition overflow", {"a": a, "b": b, "max": max_value})
        return result


def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """
    Calculate (a * b) / denominator with full precision and controlled rounding.

    The intermediate product may exceed 256 bits; only the result must fit.

    Args:
        a: First multiplicand (uint256)
        b: Second multiplicand (uint256)
        denominator: Divisor
        round_up: If True, round up (for charging users)
                  If False, round down (for paying users)

    Returns:
        Result of (a * b) / denominator

    Raises:
        MathError: If denominator is zero or the result exceeds uint256
    """
    if denominator == 0:
        raise MathError("Division by zero")

    quotient, remainder = divmod(a * b, denominator)
    if round_up and remainder:
        quotient += 1

    if quotient > MAX_UINT256:
        raise MathError("mul_div result overflows uint256", {"a": a, "b": b, "denominator": denominator})
    return quotient


def mul_div_rounding_up(a: int, b: int, denominator: int) -> int:
    return mul_div(a, b, denominator, round_up=True)


def div_rounding_up(x: int, y: int) -> int:
    """Unsigned division rounding toward positive infinity."""
    if y == 0:
        raise MathError("Division by zero")
    return -(-x // y)


def div_trunc(a: int, b: int) -> int:
    """Signed division truncating toward zero (fixed-width integer semantics)."""
    if b == 0:
        raise MathError("Division by zero")
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


# ==================== Checked casts ====================


def to_uint160(value: int) -> int:
    if not 0 <= value <= MAX_UINT160:
        raise MathError("uint160 cast overflow", {"value": value})
    return value


def to_uint128(value: int) -> int:
    if not 0 <= value <= MAX_UINT128:
        raise MathError("uint128 cast overflow", {"value": value})
    return value


def to_int128(value: int) -> int:
    if not MIN_INT128 <= value <= MAX_INT128:
        raise MathError("int128 cast overflow", {"value": value})
    return value


def to_int256(value: int) -> int:
    if not MIN_INT256 <= value <= MAX_INT256:
        raise MathError("int256 cast overflow", {"value": value})
    return value


# ==================== Wraparound ====================


def wrap_uint32(value: int) -> int:
    return value & MAX_UINT32


def wrap_uint128(value: int) -> int:
    return value & MAX_UINT128


def wrap_uint160(value: int) -> int:
    return value & MAX_UINT160


def wrap_uint256(value: int) -> int:
    return value & MAX_UINT256


def wrap_int56(value: int) -> int:
    value &= (1 << 56) - 1
    return value - (1 << 56) if value > MAX_INT56 else value
