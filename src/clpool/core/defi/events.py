"""
Facts emitted by pools and the pool registry.

Append-only and causally ordered per pool. Nothing inside the engine reads
them back; they exist for observers (logs, tests, indexers).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class PoolEvent:
    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Initialize(PoolEvent):
    sqrt_price_x96: int
    tick: int


@dataclass(frozen=True)
class Mint(PoolEvent):
    sender: str
    owner: str
    tick_lower: int
    tick_upper: int
    amount: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class Burn(PoolEvent):
    owner: str
    tick_lower: int
    tick_upper: int
    amount: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class Collect(PoolEvent):
    owner: str
    recipient: str
    tick_lower: int
    tick_upper: int
    amount0: int
    amount1: int


@dataclass(frozen=True)
class Swap(PoolEvent):
    sender: str
    recipient: str
    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int


@dataclass(frozen=True)
class Flash(PoolEvent):
    sender: str
    recipient: str
    amount0: int
    amount1: int
    paid0: int
    paid1: int


@dataclass(frozen=True)
class IncreaseObservationCardinalityNext(PoolEvent):
    observation_cardinality_next_old: int
    observation_cardinality_next_new: int


@dataclass(frozen=True)
class SetFeeProtocol(PoolEvent):
    fee_protocol0_old: int
    fee_protocol1_old: int
    fee_protocol0_new: int
    fee_protocol1_new: int


@dataclass(frozen=True)
class CollectProtocol(PoolEvent):
    sender: str
    recipient: str
    amount0: int
    amount1: int


# ==================== Registry ====================


@dataclass(frozen=True)
class PoolCreated(PoolEvent):
    token0: str
    token1: str
    fee: int
    tick_spacing: int
    pool: str


@dataclass(frozen=True)
class OwnerChanged(PoolEvent):
    old_owner: str
    new_owner: str


@dataclass(frozen=True)
class FeeAmountEnabled(PoolEvent):
    fee: int
    tick_spacing: int
