"""
Interfaces of the collaborators a pool talks to.

The pool never trusts a callback's claims: whatever a callback does, the
pool measures its own balances before and after.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .journal import Journal


class Asset(Protocol):
    """Minimal fungible asset: balance query and transfer-or-abort."""

    address: str

    def balance_of(self, account: str) -> int:
        """Current balance of ``account``."""
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` from sender to recipient in full, or raise."""
        ...


@runtime_checkable
class Journaled(Protocol):
    """Assets whose balance changes are recorded in a journal and undone with it."""

    journal: Journal


class OwnerSource(Protocol):
    """Registry view exposing the administrator identity."""

    owner: str


class MintCallback(Protocol):
    """Pays for minted liquidity; must transfer the owed amounts to the pool before returning."""

    def __call__(self, amount0_owed: int, amount1_owed: int, data: bytes) -> None:
        ...


class SwapCallback(Protocol):
    """Pays for a swap.

    Deltas are from the pool's perspective: a positive delta is owed to the
    pool, a negative delta was already sent to the recipient.
    """

    def __call__(self, amount0_delta: int, amount1_delta: int, data: bytes) -> None:
        ...


class FlashCallback(Protocol):
    """Repays a flash loan plus ``fee0``/``fee1`` before returning."""

    def __call__(self, fee0: int, fee1: int, data: bytes) -> None:
        ...
