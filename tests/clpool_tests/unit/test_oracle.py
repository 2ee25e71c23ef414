"""
Unit tests for the oracle observation ring buffer.

Coverage targets:
- Initialization, growth and sentinel slots
- Write-once-per-timestamp and cardinality adoption
- Exact and interpolated reads, OLD targets
- uint32 timestamp wraparound
"""

import pytest

from clpool.core.defi import oracle
from clpool.core.defi.oracle import MAX_CARDINALITY, SENTINEL, Observation
from clpool.core.exceptions import OracleError

Q128 = 1 << 128


@pytest.fixture
def observations():
    """Oracle initialized at t=5, grown to 4 slots, written at t=9 and t=13."""
    obs = []
    oracle.initialize(obs, 5)
    oracle.grow(obs, 1, 4)
    index, cardinality = oracle.write(obs, 0, 9, 3, 4, 1, 4)
    index, cardinality = oracle.write(obs, index, 13, -1, 4, cardinality, 4)
    assert (index, cardinality) == (2, 4)
    return obs


def test_initialize():
    obs = []
    assert oracle.initialize(obs, 5) == (1, 1)
    assert obs == [Observation(block_timestamp=5, initialized=True)]


def test_grow_preallocates_sentinels():
    obs = []
    oracle.initialize(obs, 5)
    assert oracle.grow(obs, 1, 3) == 3
    assert obs[1] == SENTINEL
    assert obs[1].block_timestamp == 1
    assert not obs[2].initialized
    # Shrinking is a no-op
    assert oracle.grow(obs, 3, 2) == 3
    assert len(obs) == 3


def test_grow_rejects_uninitialized_and_oversized():
    with pytest.raises(OracleError) as exc_info:
        oracle.grow([], 0, 2)
    assert exc_info.value.code == "I"

    obs = []
    oracle.initialize(obs, 5)
    with pytest.raises(OracleError):
        oracle.grow(obs, 1, MAX_CARDINALITY + 1)


def test_write_accumulates(observations):
    assert observations[1] == Observation(
        block_timestamp=9, tick_cumulative=12, seconds_per_liquidity_cumulative_x128=Q128, initialized=True
    )
    assert observations[2].tick_cumulative == 8
    assert observations[2].seconds_per_liquidity_cumulative_x128 == 2 * Q128


def test_write_is_noop_within_same_timestamp():
    obs = []
    oracle.initialize(obs, 5)
    assert oracle.write(obs, 0, 5, 10, 1, 1, 1) == (0, 1)
    assert obs[0].tick_cumulative == 0


def test_write_overwrites_single_slot_without_growth():
    obs = []
    oracle.initialize(obs, 5)
    index, cardinality = oracle.write(obs, 0, 6, 2, 1, 1, 1)
    assert (index, cardinality) == (0, 1)
    assert obs[0].tick_cumulative == 2
    index, cardinality = oracle.write(obs, index, 8, 2, 1, cardinality, 1)
    assert obs[0].tick_cumulative == 6
    assert len(obs) == 1


def test_write_adopts_pending_cardinality_only_at_last_slot():
    obs = []
    oracle.initialize(obs, 5)
    oracle.grow(obs, 1, 2)
    index, cardinality = oracle.write(obs, 0, 6, 0, 1, 1, 2)
    assert (index, cardinality) == (1, 2)
    index, cardinality = oracle.write(obs, index, 7, 0, 1, cardinality, 2)
    assert (index, cardinality) == (0, 2)


def test_zero_liquidity_counts_as_one():
    last = Observation(block_timestamp=0, initialized=True)
    assert oracle.transform(last, 3, 0, 0).seconds_per_liquidity_cumulative_x128 == 3 * Q128


@pytest.mark.parametrize(
    "seconds_ago, expected",
    [
        (0, 8),
        (2, 10),
        (4, 12),
        (6, 6),
        (8, 0),
    ],
)
def test_observe_single(observations, seconds_ago, expected):
    tick_cumulative, _ = oracle.observe_single(observations, 13, seconds_ago, -1, 2, 4, 4)
    assert tick_cumulative == expected


def test_observe_interpolates_seconds_per_liquidity(observations):
    _, seconds_per_liquidity = oracle.observe_single(observations, 13, 2, -1, 2, 4, 4)
    assert seconds_per_liquidity == Q128 + Q128 // 2


def test_observe_extrapolates_after_newest(observations):
    tick_cumulative, seconds_per_liquidity = oracle.observe_single(observations, 15, 0, -1, 2, 4, 4)
    assert tick_cumulative == 6
    assert seconds_per_liquidity == 2 * Q128 + (2 * Q128) // 4


def test_observe_rejects_targets_before_oldest(observations):
    with pytest.raises(OracleError) as exc_info:
        oracle.observe_single(observations, 13, 9, -1, 2, 4, 4)
    assert exc_info.value.code == "OLD"


def test_observe_batch(observations):
    tick_cumulatives, seconds_per_liquidity = oracle.observe(observations, 13, [0, 4, 8], -1, 2, 4, 4)
    assert tick_cumulatives == [8, 12, 0]
    assert seconds_per_liquidity == [2 * Q128, Q128, 0]


def test_observe_requires_initialized_oracle():
    with pytest.raises(OracleError) as exc_info:
        oracle.observe([], 0, [0], 0, 0, 0, 0)
    assert exc_info.value.code == "I"


def test_lte_handles_timestamp_wraparound():
    before_wrap = (1 << 32) - 5
    assert oracle.lte(10, before_wrap, 5)
    assert not oracle.lte(10, 5, before_wrap)
    assert oracle.lte(10, 3, 5)
    assert oracle.lte(10, 5, 5)


def test_observe_across_timestamp_wraparound():
    obs = []
    oracle.initialize(obs, (1 << 32) - 4)
    oracle.grow(obs, 1, 2)
    index, cardinality = oracle.write(obs, 0, 4, 1, 1, 1, 2)

    tick_cumulative, _ = oracle.observe_single(obs, 4, 0, 1, index, 1, cardinality)
    assert tick_cumulative == 8
    tick_cumulative, _ = oracle.observe_single(obs, 4, 4, 1, index, 1, cardinality)
    assert tick_cumulative == 4
