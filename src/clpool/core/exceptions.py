"""
Pool-specific exception hierarchy for clpool.

Provides typed exceptions for pool operations so callers can tell a
caller-correctable validation failure from an integration bug (re-entrancy),
a settlement shortfall, an authorization failure or an arithmetic fault.

Every exception carries a short ``code`` naming the failed check (``"TLU"``,
``"SPL"``, ``"IIA"``...) so tests and integrators can discriminate without
matching on message text.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PoolError(Exception):
    """Base exception for all pool-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        code: Short identifier of the failed check
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.code = code


# ==================== Validation Errors ====================


class ValidationError(PoolError):
    """Raised when caller-supplied arguments or pool state fail a precondition.

    Validation failures never change state and can be corrected by the caller.
    """
    pass


class TickRangeError(ValidationError):
    """Raised for bad tick ordering, out-of-bound ticks or misaligned spacing."""
    pass


class PriceLimitError(ValidationError):
    """Raised when a swap price limit is inconsistent with direction or current price."""
    pass


class ZeroAmountError(ValidationError):
    """Raised when an operation requires a non-zero amount or non-zero liquidity."""
    pass


class NotInitializedError(ValidationError):
    """Raised when a pool operation is attempted before ``initialize``."""
    pass


class AlreadyInitializedError(ValidationError):
    """Raised when ``initialize`` is called on a pool that already has a price."""
    pass


class PositionError(ValidationError):
    """Raised when a position cannot be modified (e.g. poking an empty position)."""
    pass


class OracleError(ValidationError):
    """Raised when an oracle query targets data older than the retained window."""
    pass


class ProtocolFeeError(ValidationError):
    """Raised when a protocol fee rate is outside {0} ∪ [4, 10]."""
    pass


class FeeTierError(ValidationError):
    """Raised for unknown, invalid or already-enabled fee tiers."""
    pass


class PoolExistsError(ValidationError):
    """Raised when a pool for the asset pair and fee tier is already registered."""
    pass


# ==================== Concurrency Errors ====================


class ReentrancyError(PoolError):
    """Raised when a mutating call is made while the pool is locked.

    Always an integration bug; never retried internally.
    """
    pass


# ==================== Settlement Errors ====================


class SettlementError(PoolError):
    """Raised when the post-callback balance check finds a shortfall."""
    pass


class CallbackError(SettlementError):
    """Raised when a payment callback fails with a non-pool exception.

    The original exception is chained as ``__cause__``.
    """
    pass


class TransferError(SettlementError):
    """Raised when an asset transfer cannot be completed in full."""
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(PoolError):
    """Raised when an administrative call is made by someone other than the owner."""
    pass


# ==================== Arithmetic Errors ====================


class MathError(PoolError, ArithmeticError):
    """Raised on checked-arithmetic failures.

    Examples: division by zero, full-precision result exceeding 256 bits,
    signed/unsigned cast overflow, liquidity under/overflow, per-tick cap.
    """
    pass


# ==================== Configuration Errors ====================


class ConfigurationError(PoolError):
    """Raised when required configuration is missing or invalid."""
    pass
