"""Liquidity arithmetic."""

from __future__ import annotations

from ..exceptions import MathError
from .safe_math import MAX_UINT128


def add_delta(x: int, y: int) -> int:
    """Add a signed liquidity delta to an unsigned liquidity value.

    Raises:
        MathError: ``LS`` if the result would go negative,
                   ``LA`` if it would exceed uint128
    """
    z = x + y
    if y < 0 and z < 0:
        raise MathError("Liquidity subtraction underflow", {"x": x, "y": y}, code="LS")
    if y >= 0 and z > MAX_UINT128:
        raise MathError("Liquidity addition overflow", {"x": x, "y": y}, code="LA")
    return z
