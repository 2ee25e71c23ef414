"""
Shared fixtures for pool engine tests.
"""

import pytest

from clpool.core.defi.concentrated_liquidity import ConcentratedLiquidityFactory, FeeTier
from clpool.core.defi.tick_math import encode_price_sqrt
from clpool.core.defi.token import Token

OWNER = "owner"
LP = "lp"
TRADER = "trader"
START_TIME = 1_000
INITIAL_BALANCE = 10**30


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def token_a():
    return Token(address="0x" + "11" * 20, symbol="TKA")


@pytest.fixture
def token_b():
    return Token(address="0x" + "22" * 20, symbol="TKB")


@pytest.fixture
def factory(clock):
    return ConcentratedLiquidityFactory(owner=OWNER, address="0x" + "fa" * 20, clock=clock)


@pytest.fixture
def pool(factory, token_a, token_b):
    """0.30% pool priced at 1 with funded LP and trader accounts."""
    pool = factory.create_pool(token_a, token_b, FeeTier.STANDARD.fee, initial_sqrt_price_x96=encode_price_sqrt(1, 1))
    for token in (token_a, token_b):
        token.mint(LP, INITIAL_BALANCE)
        token.mint(TRADER, INITIAL_BALANCE)
    return pool


@pytest.fixture
def payer():
    """Build a callback that pays whatever the pool reports as owed from ``account``."""

    def make(pool, account):
        def pay(amount0, amount1, data):
            if amount0 > 0:
                pool.token0.transfer(account, pool.address, amount0)
            if amount1 > 0:
                pool.token1.transfer(account, pool.address, amount1)

        return pay

    return make
