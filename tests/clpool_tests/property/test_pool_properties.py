"""
Property-based tests for concentrated liquidity pool invariants.

These tests check that tick math is monotonic and consistent, that the
initialization bitmap agrees with a brute-force scan, that swaps move the
price in their direction and leave the pool solvent, and that a mint/burn
round trip never pays a provider more than they paid in.

Uses Hypothesis for property-based testing with random inputs.
"""

import pytest
from hypothesis import Phase, given, settings, strategies as st

from clpool.core.defi import tick_bitmap
from clpool.core.defi.concentrated_liquidity import ConcentratedLiquidityFactory, FeeTier
from clpool.core.defi.safe_math import MAX_UINT128
from clpool.core.defi.tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    encode_price_sqrt,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)
from clpool.core.defi.token import Token

pytestmark = pytest.mark.property

LP = "lp"
TRADER = "trader"
FUNDING = 2**200
SPACING = FeeTier.STANDARD.tick_spacing
MAX_USABLE = (MAX_TICK // SPACING) * SPACING


def _make_pool():
    """Fresh 0.30% pool priced at 1 with well-funded accounts."""
    token_a = Token(address="0x" + "11" * 20, symbol="TKA")
    token_b = Token(address="0x" + "22" * 20, symbol="TKB")
    factory = ConcentratedLiquidityFactory(owner="owner", address="0x" + "fa" * 20, clock=lambda: 1_000)
    pool = factory.create_pool(token_a, token_b, FeeTier.STANDARD.fee, initial_sqrt_price_x96=encode_price_sqrt(1, 1))
    for token in (token_a, token_b):
        token.mint(LP, FUNDING)
        token.mint(TRADER, FUNDING)
    return pool


def _payer(pool, account):
    def pay(amount0, amount1, data):
        if amount0 > 0:
            pool.token0.transfer(account, pool.address, amount0)
        if amount1 > 0:
            pool.token1.transfer(account, pool.address, amount1)

    return pay


@st.composite
def tick_ranges(draw):
    """Spacing-aligned (lower, upper) pairs anywhere in the usable tick range."""
    lower = draw(st.integers(min_value=-MAX_USABLE // SPACING, max_value=MAX_USABLE // SPACING - 1))
    upper = draw(st.integers(min_value=lower + 1, max_value=MAX_USABLE // SPACING))
    return lower * SPACING, upper * SPACING


liquidity_amounts = st.integers(min_value=1, max_value=10**24)


class TestTickMathProperties:
    """Tick and sqrt price conversions."""

    @given(tick=st.integers(min_value=MIN_TICK, max_value=MAX_TICK - 1))
    @settings(max_examples=200, phases=[Phase.generate, Phase.target])
    def test_sqrt_ratio_is_strictly_increasing(self, tick):
        assert get_sqrt_ratio_at_tick(tick) < get_sqrt_ratio_at_tick(tick + 1)

    @given(tick=st.integers(min_value=MIN_TICK, max_value=MAX_TICK - 1))
    @settings(max_examples=200, phases=[Phase.generate, Phase.target])
    def test_tick_round_trips(self, tick):
        assert get_tick_at_sqrt_ratio(get_sqrt_ratio_at_tick(tick)) == tick

    @given(sqrt_price=st.integers(min_value=MIN_SQRT_RATIO, max_value=MAX_SQRT_RATIO - 1))
    @settings(max_examples=200, phases=[Phase.generate, Phase.target])
    def test_tick_is_floor_of_price(self, sqrt_price):
        tick = get_tick_at_sqrt_ratio(sqrt_price)
        assert get_sqrt_ratio_at_tick(tick) <= sqrt_price
        if tick < MAX_TICK:
            assert sqrt_price < get_sqrt_ratio_at_tick(tick + 1)


class TestBitmapProperties:
    """Bitmap search agrees with a scan of the initialized set."""

    @given(
        initialized=st.sets(st.integers(min_value=-1024, max_value=1024), max_size=40),
        tick=st.integers(min_value=-1024, max_value=1024),
        lte=st.booleans(),
    )
    @settings(max_examples=200, phases=[Phase.generate, Phase.target])
    def test_next_initialized_tick_matches_scan(self, initialized, tick, lte):
        words = {}
        for t in initialized:
            tick_bitmap.flip_tick(words, t, 1)

        result = tick_bitmap.next_initialized_tick_within_one_word(words, tick, 1, lte)

        if lte:
            word_start = (tick >> 8) << 8
            candidates = [t for t in initialized if word_start <= t <= tick]
            expected = (max(candidates), True) if candidates else (word_start, False)
        else:
            word_start = ((tick + 1) >> 8) << 8
            word_end = word_start + 255
            candidates = [t for t in initialized if tick < t <= word_end]
            expected = (min(candidates), True) if candidates else (word_end, False)
        assert result == expected


class TestPoolProperties:
    """Swap and liquidity invariants on a live pool."""

    @given(
        lower_spacings=st.integers(min_value=1, max_value=200),
        upper_spacings=st.integers(min_value=1, max_value=200),
        liquidity=st.integers(min_value=10**6, max_value=10**24),
        zero_for_one=st.booleans(),
        exact_input=st.booleans(),
        amount=st.integers(min_value=1, max_value=10**22),
    )
    @settings(max_examples=100, phases=[Phase.generate, Phase.target], deadline=None)
    def test_swap_moves_price_and_stays_solvent(
        self, lower_spacings, upper_spacings, liquidity, zero_for_one, exact_input, amount
    ):
        pool = _make_pool()
        lower, upper = -lower_spacings * SPACING, upper_spacings * SPACING
        pool.mint(LP, LP, lower, upper, liquidity, _payer(pool, LP))
        price_before = pool.slot0.sqrt_price_x96

        amount_specified = amount if exact_input else -amount
        amount0, amount1 = pool.swap(TRADER, TRADER, zero_for_one, amount_specified, None, _payer(pool, TRADER))

        slot0 = pool.slot0
        if zero_for_one:
            assert slot0.sqrt_price_x96 <= price_before
            assert amount0 >= 0 and amount1 <= 0
            paid_in, paid_out = amount0, -amount1
        else:
            assert slot0.sqrt_price_x96 >= price_before
            assert amount1 >= 0 and amount0 <= 0
            paid_in, paid_out = amount1, -amount0
        if exact_input:
            assert paid_in <= amount
        else:
            assert paid_out <= amount

        assert get_sqrt_ratio_at_tick(slot0.tick) <= slot0.sqrt_price_x96
        assert slot0.sqrt_price_x96 <= get_sqrt_ratio_at_tick(slot0.tick + 1)

        # Provider can always withdraw everything it is owed
        pool.burn(LP, lower, upper, liquidity)
        pool.collect(LP, LP, lower, upper, MAX_UINT128, MAX_UINT128)
        assert pool.token0.balance_of(pool.address) >= 0
        assert pool.token1.balance_of(pool.address) >= 0
        assert pool.liquidity == 0

    @given(ticks=tick_ranges(), liquidity=liquidity_amounts)
    @settings(max_examples=100, phases=[Phase.generate, Phase.target], deadline=None)
    def test_mint_burn_round_trip_never_profits(self, ticks, liquidity):
        pool = _make_pool()
        lower, upper = ticks

        paid0, paid1 = pool.mint(LP, LP, lower, upper, liquidity, _payer(pool, LP))
        owed0, owed1 = pool.burn(LP, lower, upper, liquidity)

        assert 0 <= paid0 - owed0 <= 2
        assert 0 <= paid1 - owed1 <= 2

        pool.collect(LP, LP, lower, upper, MAX_UINT128, MAX_UINT128)
        assert pool.token0.balance_of(LP) <= FUNDING
        assert pool.token1.balance_of(LP) <= FUNDING
        assert pool.state.ticks == {}
        assert pool.state.tick_bitmap == {}


SWAP_FLOOR = get_sqrt_ratio_at_tick(-3000)
SWAP_CEILING = get_sqrt_ratio_at_tick(3000)

pool_operations = st.lists(
    st.one_of(
        st.tuples(
            st.just("mint"),
            st.integers(min_value=-20, max_value=19),
            st.integers(min_value=1, max_value=10),
            st.integers(min_value=1, max_value=10**20),
        ),
        st.tuples(
            st.just("burn"),
            st.integers(min_value=0, max_value=15),
            st.integers(min_value=1, max_value=4),
        ),
        st.tuples(
            st.just("swap"),
            st.booleans(),
            st.integers(min_value=-(10**20), max_value=10**20).filter(lambda amount: amount != 0),
        ),
    ),
    min_size=1,
    max_size=15,
)


def _bitmap_ticks(bitmap):
    return {
        ((word_position << 8) + bit) * SPACING
        for word_position, word in bitmap.items()
        for bit in range(256)
        if word >> bit & 1
    }


class TestOperationSequences:
    """Ledger invariants hold after every step of a random mint/burn/swap sequence."""

    @given(operations=pool_operations)
    @settings(max_examples=50, phases=[Phase.generate, Phase.target], deadline=None)
    def test_ticks_bitmap_liquidity_and_fee_growth_stay_consistent(self, operations):
        pool = _make_pool()
        open_ranges = {}
        fee_growth = (0, 0)

        for operation in operations:
            kind = operation[0]
            if kind == "mint":
                _, lower_index, width, liquidity = operation
                lower, upper = lower_index * SPACING, (lower_index + width) * SPACING
                pool.mint(LP, LP, lower, upper, liquidity, _payer(pool, LP))
                open_ranges[(lower, upper)] = open_ranges.get((lower, upper), 0) + liquidity
            elif kind == "burn":
                if not open_ranges:
                    continue
                _, choice, quarters = operation
                lower, upper = sorted(open_ranges)[choice % len(open_ranges)]
                held = open_ranges[(lower, upper)]
                amount = max(1, held * quarters // 4)
                pool.burn(LP, lower, upper, amount)
                if held == amount:
                    del open_ranges[(lower, upper)]
                else:
                    open_ranges[(lower, upper)] = held - amount
            else:
                _, zero_for_one, amount = operation
                price = pool.slot0.sqrt_price_x96
                limit = SWAP_FLOOR if zero_for_one else SWAP_CEILING
                if (zero_for_one and price <= limit) or (not zero_for_one and price >= limit):
                    continue
                pool.swap(TRADER, TRADER, zero_for_one, amount, limit, _payer(pool, TRADER))

            state = pool.state
            current_tick = pool.slot0.tick

            initialized = {tick for tick, info in state.ticks.items() if info.initialized}
            assert initialized == _bitmap_ticks(state.tick_bitmap)
            assert all(info.liquidity_gross > 0 for info in state.ticks.values())

            in_range = sum(info.liquidity_net for tick, info in state.ticks.items() if tick <= current_tick)
            assert in_range == pool.liquidity
            assert pool.liquidity == sum(
                liquidity for (lower, upper), liquidity in open_ranges.items() if lower <= current_tick < upper
            )

            current_growth = (pool.fee_growth_global_0_x128, pool.fee_growth_global_1_x128)
            assert current_growth[0] >= fee_growth[0]
            assert current_growth[1] >= fee_growth[1]
            fee_growth = current_growth
