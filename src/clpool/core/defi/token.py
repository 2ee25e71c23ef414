"""
In-memory fungible asset.

Reference implementation of the asset collaborator used by the CLI and the
tests. Transfers are all-or-nothing and every balance change is recorded in
a journal, so a failed pool operation also undoes the transfers made while
it ran.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Dict

from ..exceptions import TransferError, ValidationError
from .journal import Journal, JournaledDict, shared_journal

logger = logging.getLogger(__name__)


@dataclass
class Token:
    """Fungible asset with an address, a symbol and a balance sheet."""

    address: str
    symbol: str = ""
    balances: Dict[str, int] = field(default_factory=dict)
    total_supply: int = 0
    journal: Journal = field(default_factory=shared_journal, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.balances = JournaledDict(self.journal, self.balances)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def mint(self, account: str, amount: int) -> None:
        """Create ``amount`` new units for ``account``."""
        if amount < 0:
            raise ValidationError("Mint amount must be non-negative", {"amount": amount})
        self.balances[account] = self.balance_of(account) + amount
        self.journal.record(partial(setattr, self, "total_supply", self.total_supply))
        self.total_supply += amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise TransferError("Transfer amount must be non-negative", {"amount": amount}, code="TF")

        balance = self.balance_of(sender)
        if balance < amount:
            raise TransferError(
                f"Insufficient {self.symbol or self.address} balance",
                {"sender": sender, "balance": balance, "amount": amount},
                code="TF",
            )

        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balance_of(recipient) + amount

        logger.debug(
            "Token transfer",
            extra={
                "event": "token.transfer",
                "token": self.symbol or self.address[:10],
                "sender": sender[:10],
                "recipient": recipient[:10],
                "amount": amount,
            },
        )
