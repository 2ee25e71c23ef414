"""
Concentrated Liquidity Pool Implementation.

Provides capital-efficient liquidity provision through:
- Price range positions keyed by (owner, lower tick, upper tick)
- Tick-based price representation with a paired initialization bitmap
- Per-range fee accrual through fee-growth-outside snapshots
- A growable time-weighted price/liquidity oracle
- Protocol fee skimming and flash loans

Security features:
- Tick bounds and spacing validation
- Lock flag spanning every mutating call, including its untrusted callback
- Balance-delta verification of every payment, never trusting claimed amounts
- Whole-call rollback on any failure
- Rounding that always favours the pool
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..exceptions import (
    AlreadyInitializedError,
    AuthorizationError,
    CallbackError,
    FeeTierError,
    NotInitializedError,
    PoolError,
    PoolExistsError,
    PriceLimitError,
    ProtocolFeeError,
    ReentrancyError,
    SettlementError,
    TickRangeError,
    TransferError,
    ValidationError,
    ZeroAmountError,
)
from . import oracle
from . import position as position_ledger
from . import tick as tick_ledger
from . import tick_bitmap
from .events import (
    Burn,
    Collect,
    CollectProtocol,
    FeeAmountEnabled,
    Flash,
    IncreaseObservationCardinalityNext,
    Initialize,
    Mint,
    OwnerChanged,
    PoolCreated,
    PoolEvent,
    SetFeeProtocol,
    Swap,
)
from .interfaces import Asset, FlashCallback, Journaled, MintCallback, OwnerSource, SwapCallback
from .journal import Journal, JournaledDict, JournaledList, shared_journal
from .liquidity_math import add_delta
from .oracle import Observation
from .position import PositionInfo, PositionKey
from .safe_math import (
    MAX_UINT128,
    Q128,
    SafeMath,
    mul_div,
    mul_div_rounding_up,
    to_int128,
    to_int256,
    to_uint128,
    wrap_int56,
    wrap_uint160,
    wrap_uint256,
    wrap_uint32,
)
from .sqrt_price_math import get_amount0_delta_signed, get_amount1_delta_signed
from .swap_math import FEE_DENOMINATOR, compute_swap_step
from .tick import TickInfo
from .tick_math import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
    tick_spacing_to_max_liquidity_per_tick,
    tick_to_price,
)

logger = logging.getLogger(__name__)

MAX_TICK_SPACING = 16384


def _wall_clock() -> int:
    return int(time.time())


class FeeTier(Enum):
    """Default fee tiers with corresponding tick spacing."""
    LOW = (100, 1)          # 0.01% fee, 1 tick spacing
    MEDIUM = (500, 10)      # 0.05% fee, 10 tick spacing
    STANDARD = (3000, 60)   # 0.30% fee, 60 tick spacing
    HIGH = (10000, 200)     # 1.00% fee, 200 tick spacing

    def __init__(self, fee: int, tick_spacing: int):
        self.fee = fee  # In hundredths of a basis point (1_000_000 = 100%)
        self.tick_spacing = tick_spacing


@dataclass(frozen=True)
class Slot0:
    """Live price, oracle cursor, protocol fee setting and lock flag."""
    sqrt_price_x96: int = 0
    tick: int = 0
    observation_index: int = 0
    observation_cardinality: int = 0
    observation_cardinality_next: int = 0
    fee_protocol: int = 0  # token0 rate in the low 4 bits, token1 rate in the high 4 bits
    unlocked: bool = False


@dataclass(frozen=True)
class ProtocolFees:
    token0: int = 0
    token1: int = 0


@dataclass
class PoolState:
    """
    Mutable aggregate owned by exactly one pool.

    Ledger records are immutable and replaced on update. Attribute
    assignments and container writes are recorded in ``journal``, so a failed
    operation restores only the entries it touched.
    """
    slot0: Slot0 = field(default_factory=Slot0)
    liquidity: int = 0
    fee_growth_global_0_x128: int = 0
    fee_growth_global_1_x128: int = 0
    protocol_fees: ProtocolFees = field(default_factory=ProtocolFees)
    ticks: Dict[int, TickInfo] = field(default_factory=dict)
    tick_bitmap: Dict[int, int] = field(default_factory=dict)
    positions: Dict[PositionKey, PositionInfo] = field(default_factory=dict)
    observations: List[Observation] = field(default_factory=list)
    journal: Journal = field(default_factory=shared_journal, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "ticks", JournaledDict(self.journal, self.ticks))
        object.__setattr__(self, "tick_bitmap", JournaledDict(self.journal, self.tick_bitmap))
        object.__setattr__(self, "positions", JournaledDict(self.journal, self.positions))
        object.__setattr__(self, "observations", JournaledList(self.journal, self.observations))

    def __setattr__(self, name: str, value: Any) -> None:
        journal = self.__dict__.get("journal")
        if journal is not None and journal.active and name in self.__dict__:
            journal.record(partial(object.__setattr__, self, name, self.__dict__[name]))
        object.__setattr__(self, name, value)


def compute_pool_address(factory_address: str, token0: str, token1: str, fee: int) -> str:
    """Deterministic pool address for (factory, sorted asset pair, fee)."""
    digest = hashlib.sha3_256(f"clp:{factory_address}:{token0}:{token1}:{fee}".encode()).digest()
    return f"0x{digest[-20:].hex()}"


def _event_key(event: PoolEvent) -> str:
    return "clpool." + re.sub(r"(?<!^)(?=[A-Z])", "_", event.name).lower()


@dataclass
class ConcentratedLiquidityPool:
    """
    Concentrated liquidity pool for one asset pair and fee tier.

    Key features:
    - LPs provide liquidity in specific tick ranges
    - Swap fees accumulate only to liquidity in range
    - Oracle observations record cumulative tick and seconds per liquidity

    Price representation:
    - sqrt price in Q64.96 format
    - tick = floor(log_1.0001(price)), kept consistent with the sqrt price

    Mutating operations take the pool lock for their whole duration,
    callback included, and are atomic: each runs inside a journal savepoint,
    so on any failure everything recorded since it started is undone. That
    covers this pool, its assets, and any other pool sharing the journal
    that the callback touched. Read-only views never lock.
    """

    token0: Asset
    token1: Asset
    fee: int
    tick_spacing: int
    factory: OwnerSource
    address: str = ""
    clock: Callable[[], int] = field(default=_wall_clock, repr=False)
    journal: Journal = field(default_factory=shared_journal, repr=False, compare=False)

    max_liquidity_per_tick: int = field(init=False)
    state: PoolState = field(init=False, repr=False)
    events: List[PoolEvent] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate immutables and assets, derive the per-tick cap."""
        if not 0 <= self.fee < FEE_DENOMINATOR:
            raise FeeTierError(f"Invalid fee: {self.fee}", {"fee": self.fee})
        if not 0 < self.tick_spacing < MAX_TICK_SPACING:
            raise TickRangeError(
                f"Invalid tick spacing: {self.tick_spacing}", {"tick_spacing": self.tick_spacing}, code="TS"
            )
        # Every payout must be undoable together with the operation
        for asset in self._distinct_assets():
            if not isinstance(asset, Journaled) or asset.journal is not self.journal:
                raise ValidationError(
                    "Pool assets must record balance changes in the pool's journal",
                    {"asset": asset.address},
                    code="AJ",
                )
        self.state = PoolState(journal=self.journal)
        self.max_liquidity_per_tick = tick_spacing_to_max_liquidity_per_tick(self.tick_spacing)
        if not self.address:
            self.address = compute_pool_address("", self.token0.address, self.token1.address, self.fee)

    # ==================== Read-only views ====================

    @property
    def slot0(self) -> Slot0:
        return self.state.slot0

    @property
    def liquidity(self) -> int:
        return self.state.liquidity

    @property
    def fee_growth_global_0_x128(self) -> int:
        return self.state.fee_growth_global_0_x128

    @property
    def fee_growth_global_1_x128(self) -> int:
        return self.state.fee_growth_global_1_x128

    @property
    def protocol_fees(self) -> ProtocolFees:
        return self.state.protocol_fees

    def ticks(self, tick: int) -> TickInfo:
        return self.state.ticks.get(tick, tick_ledger.EMPTY_TICK)

    def tick_bitmap(self, word_position: int) -> int:
        return self.state.tick_bitmap.get(word_position, 0)

    def positions(self, owner: str, tick_lower: int, tick_upper: int) -> PositionInfo:
        return position_ledger.get(self.state.positions, owner, tick_lower, tick_upper)

    def observations(self, index: int) -> Observation:
        if 0 <= index < len(self.state.observations):
            return self.state.observations[index]
        return Observation()

    def observe(self, seconds_agos: Sequence[int]) -> Tuple[List[int], List[int]]:
        """
        Cumulative tick and seconds-per-liquidity values as of each ``seconds_ago``.

        Returns:
            (tick_cumulatives, seconds_per_liquidity_cumulative_x128s)
        """
        slot0 = self._require_initialized()
        return oracle.observe(
            self.state.observations,
            self._block_timestamp(),
            seconds_agos,
            slot0.tick,
            slot0.observation_index,
            self.state.liquidity,
            slot0.observation_cardinality,
        )

    def snapshot_cumulatives_inside(self, tick_lower: int, tick_upper: int) -> Tuple[int, int, int]:
        """
        Tick cumulative, seconds per liquidity and seconds spent inside a range.

        Only differences between two snapshots of the same range are
        meaningful, and only while the range stays initialized.

        Returns:
            (tick_cumulative_inside, seconds_per_liquidity_inside_x128, seconds_inside)
        """
        self._check_ticks(tick_lower, tick_upper)
        slot0 = self._require_initialized()

        lower = self.state.ticks.get(tick_lower)
        upper = self.state.ticks.get(tick_upper)
        if lower is None or not lower.initialized or upper is None or not upper.initialized:
            raise ValidationError(
                "Range bounds must be initialized",
                {"tick_lower": tick_lower, "tick_upper": tick_upper},
                code="TNI",
            )

        if slot0.tick < tick_lower:
            return (
                wrap_int56(lower.tick_cumulative_outside - upper.tick_cumulative_outside),
                wrap_uint160(lower.seconds_per_liquidity_outside_x128 - upper.seconds_per_liquidity_outside_x128),
                wrap_uint32(lower.seconds_outside - upper.seconds_outside),
            )
        if slot0.tick < tick_upper:
            now = self._block_timestamp()
            tick_cumulative, seconds_per_liquidity = oracle.observe_single(
                self.state.observations,
                now,
                0,
                slot0.tick,
                slot0.observation_index,
                self.state.liquidity,
                slot0.observation_cardinality,
            )
            return (
                wrap_int56(tick_cumulative - lower.tick_cumulative_outside - upper.tick_cumulative_outside),
                wrap_uint160(
                    seconds_per_liquidity
                    - lower.seconds_per_liquidity_outside_x128
                    - upper.seconds_per_liquidity_outside_x128
                ),
                wrap_uint32(now - lower.seconds_outside - upper.seconds_outside),
            )
        return (
            wrap_int56(upper.tick_cumulative_outside - lower.tick_cumulative_outside),
            wrap_uint160(upper.seconds_per_liquidity_outside_x128 - lower.seconds_per_liquidity_outside_x128),
            wrap_uint32(upper.seconds_outside - lower.seconds_outside),
        )

    def get_pool_state(self) -> Dict[str, Any]:
        """Get current pool state."""
        slot0 = self.state.slot0
        return {
            "address": self.address,
            "token0": self.token0.address,
            "token1": self.token1.address,
            "fee": self.fee,
            "tick_spacing": self.tick_spacing,
            "sqrt_price_x96": slot0.sqrt_price_x96,
            "tick": slot0.tick,
            "price": tick_to_price(slot0.tick) if slot0.sqrt_price_x96 else None,
            "liquidity": self.state.liquidity,
            "fee_growth_global_0_x128": self.state.fee_growth_global_0_x128,
            "fee_growth_global_1_x128": self.state.fee_growth_global_1_x128,
            "protocol_fees_0": self.state.protocol_fees.token0,
            "protocol_fees_1": self.state.protocol_fees.token1,
            "fee_protocol": slot0.fee_protocol,
            "observation_index": slot0.observation_index,
            "observation_cardinality": slot0.observation_cardinality,
            "observation_cardinality_next": slot0.observation_cardinality_next,
            "positions_count": len(self.state.positions),
            "initialized_ticks": sum(1 for t in self.state.ticks.values() if t.initialized),
            "unlocked": slot0.unlocked,
        }

    # ==================== Initialization ====================

    def initialize(self, sqrt_price_x96: int) -> None:
        """
        Set the starting price and seed the oracle.

        Raises:
            AlreadyInitializedError: If the pool already has a price
            ValidationError: If the price is outside the representable range
        """
        if self.state.slot0.sqrt_price_x96 != 0:
            raise AlreadyInitializedError("Pool already initialized", code="AI")

        tick = get_tick_at_sqrt_ratio(sqrt_price_x96)
        cardinality, cardinality_next = oracle.initialize(self.state.observations, self._block_timestamp())

        self.state.slot0 = Slot0(
            sqrt_price_x96=sqrt_price_x96,
            tick=tick,
            observation_index=0,
            observation_cardinality=cardinality,
            observation_cardinality_next=cardinality_next,
            fee_protocol=0,
            unlocked=True,
        )
        self._emit(Initialize(sqrt_price_x96=sqrt_price_x96, tick=tick), "Pool initialized")

    # ==================== Position Management ====================

    def mint(
        self,
        caller: str,
        recipient: str,
        tick_lower: int,
        tick_upper: int,
        amount: int,
        callback: MintCallback,
        data: bytes = b"",
    ) -> Tuple[int, int]:
        """
        Add liquidity for ``recipient`` over [tick_lower, tick_upper).

        The callback must transfer the owed amounts to the pool before
        returning; the pool verifies its own balances afterwards.

        Returns:
            (amount0, amount1) - tokens paid in
        """
        if amount <= 0:
            raise ZeroAmountError("Liquidity amount must be positive", {"amount": amount}, code="AS")
        to_int128(amount)

        with self._lock("mint"):
            _, amount0, amount1 = self._modify_position(recipient, tick_lower, tick_upper, amount)

            balance0_before = self._balance0() if amount0 > 0 else 0
            balance1_before = self._balance1() if amount1 > 0 else 0
            self._invoke_callback("mint", callback, amount0, amount1, data)
            if amount0 > 0 and balance0_before + amount0 > self._balance0():
                raise SettlementError(
                    "Insufficient token0 paid for mint",
                    {"required": amount0, "received": self._balance0() - balance0_before},
                    code="M0",
                )
            if amount1 > 0 and balance1_before + amount1 > self._balance1():
                raise SettlementError(
                    "Insufficient token1 paid for mint",
                    {"required": amount1, "received": self._balance1() - balance1_before},
                    code="M1",
                )

            self._emit(
                Mint(
                    sender=caller,
                    owner=recipient,
                    tick_lower=tick_lower,
                    tick_upper=tick_upper,
                    amount=amount,
                    amount0=amount0,
                    amount1=amount1,
                ),
                "Position minted",
            )

        return amount0, amount1

    def burn(self, caller: str, tick_lower: int, tick_upper: int, amount: int) -> Tuple[int, int]:
        """
        Remove liquidity from the caller's position.

        Withdrawn amounts are credited to the position's owed balances and
        leave the pool only through ``collect``. ``amount=0`` refreshes the
        position's owed fees.

        Returns:
            (amount0, amount1) - tokens credited to the position
        """
        if amount < 0:
            raise ValidationError("Liquidity amount must be non-negative", {"amount": amount}, code="AS")
        to_uint128(amount)

        with self._lock("burn"):
            _, amount0_delta, amount1_delta = self._modify_position(
                caller, tick_lower, tick_upper, -to_int128(amount)
            )
            amount0, amount1 = -amount0_delta, -amount1_delta

            if amount0 > 0 or amount1 > 0:
                position_ledger.credit(
                    self.state.positions,
                    position_ledger.key(caller, tick_lower, tick_upper),
                    amount0,
                    amount1,
                )

            self._emit(
                Burn(
                    owner=caller,
                    tick_lower=tick_lower,
                    tick_upper=tick_upper,
                    amount=amount,
                    amount0=amount0,
                    amount1=amount1,
                ),
                "Position burned",
            )

        return amount0, amount1

    def collect(
        self,
        caller: str,
        recipient: str,
        tick_lower: int,
        tick_upper: int,
        amount0_requested: int,
        amount1_requested: int,
    ) -> Tuple[int, int]:
        """
        Withdraw owed tokens from the caller's position.

        Transfers min(requested, owed) of each token; never fails on under-request.

        Returns:
            (amount0, amount1) - tokens transferred to ``recipient``
        """
        if amount0_requested < 0 or amount1_requested < 0:
            raise ValidationError("Requested amounts must be non-negative")

        with self._lock("collect"):
            position_key = position_ledger.key(caller, tick_lower, tick_upper)
            current = position_ledger.get(self.state.positions, caller, tick_lower, tick_upper)

            amount0 = min(amount0_requested, current.tokens_owed_0)
            amount1 = min(amount1_requested, current.tokens_owed_1)

            if amount0 > 0 or amount1 > 0:
                position_ledger.debit(self.state.positions, position_key, amount0, amount1)
            if amount0 > 0:
                self._transfer(self.token0, recipient, amount0)
            if amount1 > 0:
                self._transfer(self.token1, recipient, amount1)

            self._emit(
                Collect(
                    owner=caller,
                    recipient=recipient,
                    tick_lower=tick_lower,
                    tick_upper=tick_upper,
                    amount0=amount0,
                    amount1=amount1,
                ),
                "Fees collected",
            )

        return amount0, amount1

    def _modify_position(
        self,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
    ) -> Tuple[PositionInfo, int, int]:
        """
        Apply a liquidity delta to a position and compute the token deltas.

        Returns:
            (position, amount0, amount1) - amounts are owed to the pool when
            positive and owed to the owner when negative
        """
        self._check_ticks(tick_lower, tick_upper)

        slot0 = self.state.slot0
        position = self._update_position(owner, tick_lower, tick_upper, liquidity_delta, slot0.tick)

        amount0 = 0
        amount1 = 0
        if liquidity_delta != 0:
            sqrt_price_lower = get_sqrt_ratio_at_tick(tick_lower)
            sqrt_price_upper = get_sqrt_ratio_at_tick(tick_upper)

            if slot0.tick < tick_lower:
                # Below range - only token0
                amount0 = get_amount0_delta_signed(sqrt_price_lower, sqrt_price_upper, liquidity_delta)
            elif slot0.tick < tick_upper:
                # In range - both tokens; in-range liquidity changes, so record the old value first
                liquidity_before = self.state.liquidity
                index, cardinality = oracle.write(
                    self.state.observations,
                    slot0.observation_index,
                    self._block_timestamp(),
                    slot0.tick,
                    liquidity_before,
                    slot0.observation_cardinality,
                    slot0.observation_cardinality_next,
                )
                self.state.slot0 = replace(slot0, observation_index=index, observation_cardinality=cardinality)

                amount0 = get_amount0_delta_signed(slot0.sqrt_price_x96, sqrt_price_upper, liquidity_delta)
                amount1 = get_amount1_delta_signed(sqrt_price_lower, slot0.sqrt_price_x96, liquidity_delta)
                self.state.liquidity = add_delta(liquidity_before, liquidity_delta)
            else:
                # Above range - only token1
                amount1 = get_amount1_delta_signed(sqrt_price_lower, sqrt_price_upper, liquidity_delta)

        return position, amount0, amount1

    def _update_position(
        self,
        owner: str,
        tick_lower: int,
        tick_upper: int,
        liquidity_delta: int,
        tick: int,
    ) -> PositionInfo:
        """Update boundary ticks, bitmap and the position's fee snapshot."""
        state = self.state
        slot0 = state.slot0
        fee_growth_global_0 = state.fee_growth_global_0_x128
        fee_growth_global_1 = state.fee_growth_global_1_x128

        flipped_lower = False
        flipped_upper = False
        if liquidity_delta != 0:
            now = self._block_timestamp()
            tick_cumulative, seconds_per_liquidity = oracle.observe_single(
                state.observations,
                now,
                0,
                slot0.tick,
                slot0.observation_index,
                state.liquidity,
                slot0.observation_cardinality,
            )

            flipped_lower = tick_ledger.update(
                state.ticks,
                tick_lower,
                tick,
                liquidity_delta,
                fee_growth_global_0,
                fee_growth_global_1,
                seconds_per_liquidity,
                tick_cumulative,
                now,
                False,
                self.max_liquidity_per_tick,
            )
            flipped_upper = tick_ledger.update(
                state.ticks,
                tick_upper,
                tick,
                liquidity_delta,
                fee_growth_global_0,
                fee_growth_global_1,
                seconds_per_liquidity,
                tick_cumulative,
                now,
                True,
                self.max_liquidity_per_tick,
            )

            if flipped_lower:
                tick_bitmap.flip_tick(state.tick_bitmap, tick_lower, self.tick_spacing)
            if flipped_upper:
                tick_bitmap.flip_tick(state.tick_bitmap, tick_upper, self.tick_spacing)

        fee_growth_inside_0, fee_growth_inside_1 = tick_ledger.get_fee_growth_inside(
            state.ticks, tick_lower, tick_upper, tick, fee_growth_global_0, fee_growth_global_1
        )
        position = position_ledger.update(
            state.positions,
            position_ledger.key(owner, tick_lower, tick_upper),
            liquidity_delta,
            fee_growth_inside_0,
            fee_growth_inside_1,
        )

        # Ticks that no position references any more are released
        if liquidity_delta < 0:
            if flipped_lower:
                tick_ledger.clear(state.ticks, tick_lower)
            if flipped_upper:
                tick_ledger.clear(state.ticks, tick_upper)

        return position

    # ==================== Swapping ====================

    def swap(
        self,
        caller: str,
        recipient: str,
        zero_for_one: bool,
        amount_specified: int,
        sqrt_price_limit_x96: Optional[int],
        callback: SwapCallback,
        data: bytes = b"",
    ) -> Tuple[int, int]:
        """
        Execute a swap through the pool.

        Args:
            caller: Swap initiator
            recipient: Receiver of the output tokens
            zero_for_one: True for token0->token1, False for token1->token0
            amount_specified: Positive for exact input, negative for exact output
            sqrt_price_limit_x96: Price the swap may not cross (None for the range bound)
            callback: Pays the input amount before returning
            data: Opaque data passed to the callback

        Returns:
            (amount0, amount1) - pool balance deltas (negative = paid out)
        """
        if amount_specified == 0:
            raise ZeroAmountError("Amount must be non-zero", code="AS")
        to_int256(amount_specified)

        with self._lock("swap"):
            slot0_start = self.state.slot0

            if sqrt_price_limit_x96 is None:
                sqrt_price_limit_x96 = MIN_SQRT_RATIO + 1 if zero_for_one else MAX_SQRT_RATIO - 1

            if zero_for_one:
                valid_limit = MIN_SQRT_RATIO < sqrt_price_limit_x96 < slot0_start.sqrt_price_x96
            else:
                valid_limit = slot0_start.sqrt_price_x96 < sqrt_price_limit_x96 < MAX_SQRT_RATIO
            if not valid_limit:
                raise PriceLimitError(
                    "Price limit inconsistent with swap direction",
                    {
                        "zero_for_one": zero_for_one,
                        "sqrt_price_limit_x96": sqrt_price_limit_x96,
                        "sqrt_price_x96": slot0_start.sqrt_price_x96,
                    },
                    code="SPL",
                )

            amount0, amount1 = self._execute_swap(
                slot0_start, zero_for_one, amount_specified, sqrt_price_limit_x96
            )

            # Pay out first, then collect the input through the callback
            if zero_for_one:
                if amount1 < 0:
                    self._transfer(self.token1, recipient, -amount1)
                balance0_before = self._balance0()
                self._invoke_callback("swap", callback, amount0, amount1, data)
                if balance0_before + amount0 > self._balance0():
                    raise SettlementError(
                        "Insufficient input amount",
                        {"required": amount0, "received": self._balance0() - balance0_before},
                        code="IIA",
                    )
            else:
                if amount0 < 0:
                    self._transfer(self.token0, recipient, -amount0)
                balance1_before = self._balance1()
                self._invoke_callback("swap", callback, amount0, amount1, data)
                if balance1_before + amount1 > self._balance1():
                    raise SettlementError(
                        "Insufficient input amount",
                        {"required": amount1, "received": self._balance1() - balance1_before},
                        code="IIA",
                    )

            slot0 = self.state.slot0
            self._emit(
                Swap(
                    sender=caller,
                    recipient=recipient,
                    amount0=amount0,
                    amount1=amount1,
                    sqrt_price_x96=slot0.sqrt_price_x96,
                    liquidity=self.state.liquidity,
                    tick=slot0.tick,
                ),
                "Swap executed",
            )

        return amount0, amount1

    def _execute_swap(
        self,
        slot0_start: Slot0,
        zero_for_one: bool,
        amount_specified: int,
        sqrt_price_limit_x96: int,
    ) -> Tuple[int, int]:
        """Run the swap loop and persist the resulting price, tick, liquidity and fees."""
        state = self.state
        exact_input = amount_specified > 0
        fee_protocol = slot0_start.fee_protocol % 16 if zero_for_one else slot0_start.fee_protocol >> 4
        block_timestamp = self._block_timestamp()
        liquidity_start = state.liquidity

        amount_remaining = amount_specified
        amount_calculated = 0
        sqrt_price = slot0_start.sqrt_price_x96
        tick = slot0_start.tick
        liquidity = liquidity_start
        fee_growth_global = state.fee_growth_global_0_x128 if zero_for_one else state.fee_growth_global_1_x128
        protocol_fee = 0
        # Oracle cumulatives as of the swap start, computed on the first tick crossing
        cumulatives: Optional[Tuple[int, int]] = None

        while amount_remaining != 0 and sqrt_price != sqrt_price_limit_x96:
            sqrt_price_start = sqrt_price

            tick_next, initialized = tick_bitmap.next_initialized_tick_within_one_word(
                state.tick_bitmap, tick, self.tick_spacing, zero_for_one
            )
            tick_next = max(MIN_TICK, min(MAX_TICK, tick_next))
            sqrt_price_next = get_sqrt_ratio_at_tick(tick_next)

            if zero_for_one:
                sqrt_price_target = max(sqrt_price_next, sqrt_price_limit_x96)
            else:
                sqrt_price_target = min(sqrt_price_next, sqrt_price_limit_x96)

            sqrt_price, amount_in, amount_out, fee_amount = compute_swap_step(
                sqrt_price, sqrt_price_target, liquidity, amount_remaining, self.fee
            )

            if exact_input:
                amount_remaining -= amount_in + fee_amount
                amount_calculated -= amount_out
            else:
                amount_remaining += amount_out
                amount_calculated += amount_in + fee_amount

            if fee_protocol > 0:
                protocol_delta = fee_amount // fee_protocol
                fee_amount -= protocol_delta
                protocol_fee += protocol_delta

            if liquidity > 0:
                fee_growth_global = wrap_uint256(fee_growth_global + mul_div(fee_amount, Q128, liquidity))

            if sqrt_price == sqrt_price_next:
                if initialized:
                    if cumulatives is None:
                        cumulatives = oracle.observe_single(
                            state.observations,
                            block_timestamp,
                            0,
                            slot0_start.tick,
                            slot0_start.observation_index,
                            liquidity_start,
                            slot0_start.observation_cardinality,
                        )
                    tick_cumulative, seconds_per_liquidity = cumulatives
                    liquidity_net = tick_ledger.cross(
                        state.ticks,
                        tick_next,
                        fee_growth_global if zero_for_one else state.fee_growth_global_0_x128,
                        state.fee_growth_global_1_x128 if zero_for_one else fee_growth_global,
                        seconds_per_liquidity,
                        tick_cumulative,
                        block_timestamp,
                    )
                    if zero_for_one:
                        liquidity_net = -liquidity_net
                    liquidity = add_delta(liquidity, liquidity_net)

                # Moving left lands just below the crossed tick so tick == floor(price)
                tick = tick_next - 1 if zero_for_one else tick_next
            elif sqrt_price != sqrt_price_start:
                tick = get_tick_at_sqrt_ratio(sqrt_price)

        if tick != slot0_start.tick:
            index, cardinality = oracle.write(
                state.observations,
                slot0_start.observation_index,
                block_timestamp,
                slot0_start.tick,
                liquidity_start,
                slot0_start.observation_cardinality,
                slot0_start.observation_cardinality_next,
            )
            state.slot0 = replace(
                slot0_start,
                sqrt_price_x96=sqrt_price,
                tick=tick,
                observation_index=index,
                observation_cardinality=cardinality,
            )
        else:
            state.slot0 = replace(slot0_start, sqrt_price_x96=sqrt_price)

        if liquidity != liquidity_start:
            state.liquidity = liquidity

        fees = state.protocol_fees
        if zero_for_one:
            state.fee_growth_global_0_x128 = fee_growth_global
            if protocol_fee > 0:
                state.protocol_fees = replace(fees, token0=SafeMath.safe_add(fees.token0, protocol_fee, MAX_UINT128))
        else:
            state.fee_growth_global_1_x128 = fee_growth_global
            if protocol_fee > 0:
                state.protocol_fees = replace(fees, token1=SafeMath.safe_add(fees.token1, protocol_fee, MAX_UINT128))

        if zero_for_one == exact_input:
            return amount_specified - amount_remaining, amount_calculated
        return amount_calculated, amount_specified - amount_remaining

    # ==================== Flash ====================

    def flash(
        self,
        caller: str,
        recipient: str,
        amount0: int,
        amount1: int,
        callback: FlashCallback,
        data: bytes = b"",
    ) -> Tuple[int, int]:
        """
        Lend tokens for the duration of the callback.

        The callback must return the principal plus ``fee0``/``fee1``. Anything
        paid beyond the principal is distributed like swap fees.

        Returns:
            (paid0, paid1) - amounts received on top of the principal
        """
        if amount0 < 0 or amount1 < 0:
            raise ValidationError("Flash amounts must be non-negative")

        with self._lock("flash"):
            liquidity = self.state.liquidity
            if liquidity <= 0:
                raise ZeroAmountError("No in-range liquidity", code="L")

            fee0 = mul_div_rounding_up(amount0, self.fee, FEE_DENOMINATOR)
            fee1 = mul_div_rounding_up(amount1, self.fee, FEE_DENOMINATOR)
            balance0_before = self._balance0()
            balance1_before = self._balance1()

            if amount0 > 0:
                self._transfer(self.token0, recipient, amount0)
            if amount1 > 0:
                self._transfer(self.token1, recipient, amount1)

            self._invoke_callback("flash", callback, fee0, fee1, data)

            balance0_after = self._balance0()
            balance1_after = self._balance1()
            if balance0_before + fee0 > balance0_after:
                raise SettlementError(
                    "Flash loan token0 not repaid",
                    {"owed": amount0 + fee0, "repaid": balance0_after - balance0_before + amount0},
                    code="F0",
                )
            if balance1_before + fee1 > balance1_after:
                raise SettlementError(
                    "Flash loan token1 not repaid",
                    {"owed": amount1 + fee1, "repaid": balance1_after - balance1_before + amount1},
                    code="F1",
                )

            paid0 = balance0_after - balance0_before
            paid1 = balance1_after - balance1_before
            fee_protocol = self.state.slot0.fee_protocol

            if paid0 > 0:
                fee_protocol0 = fee_protocol % 16
                protocol_fee0 = paid0 // fee_protocol0 if fee_protocol0 else 0
                if protocol_fee0 > 0:
                    fees = self.state.protocol_fees
                    self.state.protocol_fees = replace(
                        fees, token0=SafeMath.safe_add(fees.token0, protocol_fee0, MAX_UINT128)
                    )
                self.state.fee_growth_global_0_x128 = wrap_uint256(
                    self.state.fee_growth_global_0_x128 + mul_div(paid0 - protocol_fee0, Q128, liquidity)
                )
            if paid1 > 0:
                fee_protocol1 = fee_protocol >> 4
                protocol_fee1 = paid1 // fee_protocol1 if fee_protocol1 else 0
                if protocol_fee1 > 0:
                    fees = self.state.protocol_fees
                    self.state.protocol_fees = replace(
                        fees, token1=SafeMath.safe_add(fees.token1, protocol_fee1, MAX_UINT128)
                    )
                self.state.fee_growth_global_1_x128 = wrap_uint256(
                    self.state.fee_growth_global_1_x128 + mul_div(paid1 - protocol_fee1, Q128, liquidity)
                )

            self._emit(
                Flash(
                    sender=caller,
                    recipient=recipient,
                    amount0=amount0,
                    amount1=amount1,
                    paid0=paid0,
                    paid1=paid1,
                ),
                "Flash loan executed",
            )

        return paid0, paid1

    # ==================== Administration ====================

    def increase_observation_cardinality_next(self, caller: str, observation_cardinality_next: int) -> int:
        """
        Grow the oracle so it retains at least ``observation_cardinality_next`` observations.

        Returns:
            The resulting pending cardinality
        """
        with self._lock("increase_observation_cardinality_next"):
            self._require_owner(caller)
            slot0 = self.state.slot0
            old = slot0.observation_cardinality_next
            new = oracle.grow(self.state.observations, old, observation_cardinality_next)
            self.state.slot0 = replace(slot0, observation_cardinality_next=new)
            if old != new:
                self._emit(
                    IncreaseObservationCardinalityNext(
                        observation_cardinality_next_old=old,
                        observation_cardinality_next_new=new,
                    ),
                    "Observation cardinality increased",
                )
        return new

    def set_fee_protocol(self, caller: str, fee_protocol0: int, fee_protocol1: int) -> None:
        """
        Set the protocol's share of swap and flash fees per token.

        A rate n diverts 1/n of fees; 0 disables it. Valid rates are 0 and 4..10.
        """
        with self._lock("set_fee_protocol"):
            self._require_owner(caller)
            for rate in (fee_protocol0, fee_protocol1):
                if not (rate == 0 or 4 <= rate <= 10):
                    raise ProtocolFeeError(
                        f"Invalid protocol fee rate: {rate}",
                        {"fee_protocol0": fee_protocol0, "fee_protocol1": fee_protocol1},
                    )

            slot0 = self.state.slot0
            old = slot0.fee_protocol
            self.state.slot0 = replace(slot0, fee_protocol=fee_protocol0 + (fee_protocol1 << 4))
            self._emit(
                SetFeeProtocol(
                    fee_protocol0_old=old % 16,
                    fee_protocol1_old=old >> 4,
                    fee_protocol0_new=fee_protocol0,
                    fee_protocol1_new=fee_protocol1,
                ),
                "Protocol fee updated",
            )

    def collect_protocol(
        self,
        caller: str,
        recipient: str,
        amount0_requested: int,
        amount1_requested: int,
    ) -> Tuple[int, int]:
        """
        Withdraw accrued protocol fees.

        Returns:
            (amount0, amount1) - min(requested, accrued) per token
        """
        if amount0_requested < 0 or amount1_requested < 0:
            raise ValidationError("Requested amounts must be non-negative")

        with self._lock("collect_protocol"):
            self._require_owner(caller)
            fees = self.state.protocol_fees
            amount0 = min(amount0_requested, fees.token0)
            amount1 = min(amount1_requested, fees.token1)

            self.state.protocol_fees = ProtocolFees(token0=fees.token0 - amount0, token1=fees.token1 - amount1)
            if amount0 > 0:
                self._transfer(self.token0, recipient, amount0)
            if amount1 > 0:
                self._transfer(self.token1, recipient, amount1)

            self._emit(
                CollectProtocol(sender=caller, recipient=recipient, amount0=amount0, amount1=amount1),
                "Protocol fees collected",
            )

        return amount0, amount1

    # ==================== Helpers ====================

    @contextmanager
    def _lock(self, operation: str) -> Iterator[None]:
        """Hold the pool lock for one operation inside a journal savepoint."""
        slot0 = self._require_initialized()
        if not slot0.unlocked:
            raise ReentrancyError("Pool is locked", {"operation": operation}, code="LOK")

        with self.journal.savepoint():
            self.state.slot0 = replace(slot0, unlocked=False)
            try:
                yield
            except BaseException as exc:
                logger.warning(
                    "Pool operation reverted: %s - %s",
                    type(exc).__name__,
                    exc,
                    extra={
                        "event": "clpool.revert",
                        "pool": self.address[:10],
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "code": getattr(exc, "code", None),
                    },
                )
                raise
            finally:
                self.state.slot0 = replace(self.state.slot0, unlocked=True)

    def _require_initialized(self) -> Slot0:
        slot0 = self.state.slot0
        if slot0.sqrt_price_x96 == 0:
            raise NotInitializedError("Pool is not initialized", code="NI")
        return slot0

    def _require_owner(self, caller: str) -> None:
        if caller != self.factory.owner:
            raise AuthorizationError("Caller is not the owner", {"caller": caller})

    def _check_ticks(self, tick_lower: int, tick_upper: int) -> None:
        """Validate tick range."""
        if tick_lower >= tick_upper:
            raise TickRangeError(
                "tick_lower must be less than tick_upper",
                {"tick_lower": tick_lower, "tick_upper": tick_upper},
                code="TLU",
            )
        if tick_lower < MIN_TICK:
            raise TickRangeError("tick_lower below minimum", {"tick_lower": tick_lower}, code="TLM")
        if tick_upper > MAX_TICK:
            raise TickRangeError("tick_upper above maximum", {"tick_upper": tick_upper}, code="TUM")
        if tick_lower % self.tick_spacing or tick_upper % self.tick_spacing:
            raise TickRangeError(
                f"Ticks must be multiples of {self.tick_spacing}",
                {"tick_lower": tick_lower, "tick_upper": tick_upper},
                code="TS",
            )

    def _block_timestamp(self) -> int:
        return wrap_uint32(self.clock())

    def _balance0(self) -> int:
        return self.token0.balance_of(self.address)

    def _balance1(self) -> int:
        return self.token1.balance_of(self.address)

    def _distinct_assets(self) -> List[Asset]:
        return [self.token0] if self.token0 is self.token1 else [self.token0, self.token1]

    def _transfer(self, asset: Asset, recipient: str, amount: int) -> None:
        try:
            asset.transfer(self.address, recipient, amount)
        except PoolError:
            raise
        except Exception as exc:
            raise TransferError(
                f"Transfer of {amount} to {recipient} failed: {exc}",
                {"asset": asset.address, "recipient": recipient, "amount": amount},
                code="TF",
            ) from exc

    def _invoke_callback(self, operation: str, callback: Callable[..., Any], *args: Any) -> None:
        """Run an untrusted callback, turning foreign failures into a pool-level error."""
        try:
            callback(*args)
        except PoolError:
            raise
        except Exception as exc:
            raise CallbackError(
                f"{operation} callback failed: {exc}",
                {"operation": operation, "error_type": type(exc).__name__},
                code="CB",
            ) from exc

    def _emit(self, event: PoolEvent, message: str) -> None:
        """Publish a fact once the outermost enclosing operation commits."""
        self.journal.on_commit(partial(self._publish, event, message))

    def _publish(self, event: PoolEvent, message: str) -> None:
        self.events.append(event)
        logger.info(
            message,
            extra={"event": _event_key(event), "pool": self.address[:10], **event.to_dict()},
        )


@dataclass
class ConcentratedLiquidityFactory:
    """
    Registry of concentrated liquidity pools.

    Maps (asset pair, fee) to one canonical pool, governs which fee tiers may
    be used and holds the owner identity pools consult for administration.
    """

    owner: str
    address: str = ""
    clock: Callable[[], int] = field(default=_wall_clock, repr=False)
    journal: Journal = field(default_factory=shared_journal, repr=False, compare=False)

    # Enabled fee tiers: fee -> tick spacing
    fee_amount_tick_spacing: Dict[int, int] = field(
        default_factory=lambda: {tier.fee: tier.tick_spacing for tier in FeeTier}
    )

    # Deployed pools
    pools: Dict[str, ConcentratedLiquidityPool] = field(default_factory=dict, repr=False)

    # Pool lookup by pair
    pool_by_pair: Dict[str, Dict[int, str]] = field(default_factory=dict, repr=False)

    events: List[PoolEvent] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        """Initialize factory."""
        if not self.address:
            addr_hash = hashlib.sha3_256(f"clp_factory:{self.owner}:{time.time_ns()}".encode()).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"
        # Registry writes made inside a pool callback are undone with it
        self.fee_amount_tick_spacing = JournaledDict(self.journal, self.fee_amount_tick_spacing)
        self.pools = JournaledDict(self.journal, self.pools)
        self.pool_by_pair = JournaledDict(self.journal, self.pool_by_pair)
        self.events = JournaledList(self.journal, self.events)

    def create_pool(
        self,
        token_a: Asset,
        token_b: Asset,
        fee: int,
        initial_sqrt_price_x96: Optional[int] = None,
    ) -> ConcentratedLiquidityPool:
        """
        Create a new concentrated liquidity pool.

        Args:
            token_a: One asset of the pair
            token_b: The other asset
            fee: Enabled fee tier
            initial_sqrt_price_x96: Initialize the pool at this price (token1/token0 after sorting)

        Returns:
            Created pool
        """
        if token_a.address == token_b.address:
            raise ValidationError("Pool assets must differ", {"token": token_a.address})

        token0, token1 = sorted((token_a, token_b), key=lambda asset: asset.address)
        if not token0.address:
            raise ValidationError("Pool assets must have an address")

        tick_spacing = self.fee_amount_tick_spacing.get(fee)
        if not tick_spacing:
            raise FeeTierError(f"Fee tier {fee} is not enabled", {"fee": fee})

        if self.get_pool(token0.address, token1.address, fee) is not None:
            raise PoolExistsError(
                f"Pool already exists for {token0.address}:{token1.address} at {fee} fee",
                {"token0": token0.address, "token1": token1.address, "fee": fee},
            )

        pool = ConcentratedLiquidityPool(
            token0=token0,
            token1=token1,
            fee=fee,
            tick_spacing=tick_spacing,
            factory=self,
            address=compute_pool_address(self.address, token0.address, token1.address, fee),
            clock=self.clock,
            journal=self.journal,
        )
        if initial_sqrt_price_x96 is not None:
            pool.initialize(initial_sqrt_price_x96)

        pair_key = f"{token0.address}:{token1.address}"
        self.pools[pool.address] = pool
        self.pool_by_pair[pair_key] = {**self.pool_by_pair.get(pair_key, {}), fee: pool.address}

        self.events.append(
            PoolCreated(
                token0=token0.address,
                token1=token1.address,
                fee=fee,
                tick_spacing=tick_spacing,
                pool=pool.address,
            )
        )
        self.journal.on_commit(
            partial(
                logger.info,
                "Concentrated liquidity pool created",
                extra={
                    "event": "factory.pool_created",
                    "pool": pool.address[:10],
                    "pair": pair_key,
                    "fee": fee,
                    "tick_spacing": tick_spacing,
                },
            )
        )

        return pool

    def get_pool(self, token_a: str, token_b: str, fee: int) -> Optional[ConcentratedLiquidityPool]:
        """Get pool by asset addresses (either order) and fee."""
        token0, token1 = sorted((token_a, token_b))
        pool_address = self.pool_by_pair.get(f"{token0}:{token1}", {}).get(fee)
        if not pool_address:
            return None
        return self.pools.get(pool_address)

    def get_all_pools_for_pair(self, token_a: str, token_b: str) -> List[ConcentratedLiquidityPool]:
        """Get all pools for an asset pair (all fee tiers)."""
        token0, token1 = sorted((token_a, token_b))
        return [
            self.pools[addr]
            for addr in self.pool_by_pair.get(f"{token0}:{token1}", {}).values()
            if addr in self.pools
        ]

    def set_owner(self, caller: str, new_owner: str) -> None:
        """Hand administration of the registry and its pools to ``new_owner``."""
        self._require_owner(caller)
        old_owner = self.owner
        self.journal.record(partial(setattr, self, "owner", old_owner))
        self.owner = new_owner
        self.events.append(OwnerChanged(old_owner=old_owner, new_owner=new_owner))
        self.journal.on_commit(
            partial(
                logger.info,
                "Factory owner changed",
                extra={"event": "factory.owner_changed", "factory": self.address[:10], "new_owner": new_owner},
            )
        )

    def enable_fee_amount(self, caller: str, fee: int, tick_spacing: int) -> None:
        """Enable a new fee tier with the given tick spacing. Tiers cannot be removed."""
        self._require_owner(caller)
        if not 0 <= fee < FEE_DENOMINATOR:
            raise FeeTierError(f"Fee must be below {FEE_DENOMINATOR}", {"fee": fee})
        # Spacing is capped so a single bitmap word step can never skip past MAX_TICK
        if not 0 < tick_spacing < MAX_TICK_SPACING:
            raise FeeTierError(f"Tick spacing must be in (0, {MAX_TICK_SPACING})", {"tick_spacing": tick_spacing})
        if self.fee_amount_tick_spacing.get(fee):
            raise FeeTierError(f"Fee tier {fee} already enabled", {"fee": fee})

        self.fee_amount_tick_spacing[fee] = tick_spacing
        self.events.append(FeeAmountEnabled(fee=fee, tick_spacing=tick_spacing))
        self.journal.on_commit(
            partial(
                logger.info,
                "Fee tier enabled",
                extra={"event": "factory.fee_enabled", "fee": fee, "tick_spacing": tick_spacing},
            )
        )

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise AuthorizationError("Caller is not the factory owner", {"caller": caller})
