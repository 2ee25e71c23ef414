"""
Unit tests for the tick ledger.

Coverage targets:
- Fee growth inside a range for every position of the current tick
- Initialization convention and flip detection on update
- Per-tick liquidity cap
- Accumulator flip on cross
"""

import pytest

from clpool.core.defi import tick as tick_ledger
from clpool.core.defi.safe_math import MAX_UINT256
from clpool.core.defi.tick import TickInfo
from clpool.core.defi.tick_math import tick_spacing_to_max_liquidity_per_tick
from clpool.core.exceptions import MathError

MAX_LIQUIDITY = tick_spacing_to_max_liquidity_per_tick(1)


def _update(ticks, tick, current, delta, upper=False, fee_growth=(0, 0), time=0, max_liquidity=MAX_LIQUIDITY):
    return tick_ledger.update(
        ticks, tick, current, delta, fee_growth[0], fee_growth[1], 0, 0, time, upper, max_liquidity
    )


class TestFeeGrowthInside:
    def test_uninitialized_ticks_with_current_inside(self):
        assert tick_ledger.get_fee_growth_inside({}, -2, 2, 0, 15, 15) == (15, 15)

    def test_uninitialized_ticks_with_current_outside(self):
        assert tick_ledger.get_fee_growth_inside({}, -2, 2, 4, 15, 15) == (0, 0)
        assert tick_ledger.get_fee_growth_inside({}, -2, 2, -4, 15, 15) == (0, 0)

    def test_subtracts_upper_tick_growth(self):
        ticks = {2: TickInfo(fee_growth_outside_0_x128=2, fee_growth_outside_1_x128=3, initialized=True)}
        assert tick_ledger.get_fee_growth_inside(ticks, -2, 2, 0, 15, 15) == (13, 12)

    def test_subtracts_lower_tick_growth(self):
        ticks = {-2: TickInfo(fee_growth_outside_0_x128=2, fee_growth_outside_1_x128=3, initialized=True)}
        assert tick_ledger.get_fee_growth_inside(ticks, -2, 2, 0, 15, 15) == (13, 12)

    def test_wraps_on_overflow(self):
        ticks = {
            -2: TickInfo(
                fee_growth_outside_0_x128=MAX_UINT256 - 3,
                fee_growth_outside_1_x128=MAX_UINT256 - 2,
                initialized=True,
            ),
            2: TickInfo(fee_growth_outside_0_x128=3, fee_growth_outside_1_x128=5, initialized=True),
        }
        assert tick_ledger.get_fee_growth_inside(ticks, -2, 2, 0, 15, 15) == (16, 13)


class TestUpdate:
    def test_flips_only_between_zero_and_nonzero(self):
        ticks = {}
        assert _update(ticks, 0, 0, 1) is True
        assert _update(ticks, 0, 0, 1) is False
        assert _update(ticks, 0, 0, -1) is False
        assert _update(ticks, 0, 0, -1) is True
        assert ticks[0].liquidity_gross == 0

    def test_net_liquidity_sign_depends_on_boundary(self):
        ticks = {}
        _update(ticks, 0, 0, 2)
        _update(ticks, 0, 0, 1, upper=True)
        _update(ticks, 0, 0, 3, upper=True)
        info = ticks[0]
        assert info.liquidity_gross == 6
        assert info.liquidity_net == 2 - 1 - 3

    def test_initialization_assumes_growth_below_current_tick(self):
        ticks = {}
        _update(ticks, 1, 1, 1, fee_growth=(1, 2), time=7)
        assert ticks[1].fee_growth_outside_0_x128 == 1
        assert ticks[1].fee_growth_outside_1_x128 == 2
        assert ticks[1].seconds_outside == 7
        assert ticks[1].initialized is True

        _update(ticks, 2, 1, 1, fee_growth=(1, 2), time=7)
        assert ticks[2].fee_growth_outside_0_x128 == 0
        assert ticks[2].fee_growth_outside_1_x128 == 0
        assert ticks[2].seconds_outside == 0

    def test_does_not_reset_outside_values_on_later_updates(self):
        ticks = {}
        _update(ticks, 1, 1, 1, fee_growth=(1, 2))
        _update(ticks, 1, 1, 1, fee_growth=(6, 7))
        assert ticks[1].fee_growth_outside_0_x128 == 1
        assert ticks[1].fee_growth_outside_1_x128 == 2

    def test_rejects_gross_liquidity_above_cap(self):
        ticks = {}
        _update(ticks, 0, 0, 2, max_liquidity=3)
        _update(ticks, 0, 0, 1, upper=True, max_liquidity=3)
        with pytest.raises(MathError) as exc_info:
            _update(ticks, 0, 0, 1, max_liquidity=3)
        assert exc_info.value.code == "LO"

    def test_rejects_removing_more_than_gross(self):
        ticks = {}
        _update(ticks, 0, 0, 1)
        with pytest.raises(MathError) as exc_info:
            _update(ticks, 0, 0, -2)
        assert exc_info.value.code == "LS"


def test_clear_removes_tick():
    ticks = {2: TickInfo(liquidity_gross=3, liquidity_net=4, initialized=True)}
    tick_ledger.clear(ticks, 2)
    assert 2 not in ticks
    tick_ledger.clear(ticks, 2)


def test_cross_flips_outside_accumulators():
    ticks = {
        2: TickInfo(
            liquidity_gross=3,
            liquidity_net=4,
            fee_growth_outside_0_x128=1,
            fee_growth_outside_1_x128=2,
            seconds_per_liquidity_outside_x128=5,
            tick_cumulative_outside=6,
            seconds_outside=7,
            initialized=True,
        )
    }

    liquidity_net = tick_ledger.cross(ticks, 2, 7, 9, 8, 15, 10)

    assert liquidity_net == 4
    info = ticks[2]
    assert info.fee_growth_outside_0_x128 == 6
    assert info.fee_growth_outside_1_x128 == 7
    assert info.seconds_per_liquidity_outside_x128 == 3
    assert info.tick_cumulative_outside == 9
    assert info.seconds_outside == 3
    assert info.liquidity_gross == 3


def test_cross_twice_restores_outside_values():
    ticks = {2: TickInfo(liquidity_gross=1, liquidity_net=1, fee_growth_outside_0_x128=5, initialized=True)}
    tick_ledger.cross(ticks, 2, 20, 0, 0, 0, 0)
    tick_ledger.cross(ticks, 2, 20, 0, 0, 0, 0)
    assert ticks[2].fee_growth_outside_0_x128 == 5
