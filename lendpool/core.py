"""
Core types and fixed-point helpers for the lending risk engine.

This module provides the foundations every other module builds on:
1. Decimal context configuration (deterministic arithmetic)
2. Constants: slot count, year length, fixed-point scale and bound
3. Exceptions: LendingError and the domain-specific error taxonomy
4. Enums: requirement regimes and operation outcomes
5. Fixed-point helpers: checked conversion and directional rounding
6. EngineConfig: the engine-wide policy parameters

Every quantity that enters the engine (amounts, shares, indices, prices) is a
Decimal with at most FIXED_POINT_PLACES fractional digits and an absolute
value below FIXED_POINT_MAX. Arithmetic that would leave that range raises
MathOverflow instead of silently losing precision.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import (
    Decimal, ROUND_HALF_EVEN, ROUND_FLOOR, ROUND_CEILING,
    getcontext, localcontext,
)
from enum import Enum
from typing import Optional, Union


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# The engine requires deterministic Decimal arithmetic. The global context is
# configured once at import time; directional rounding is always done inside
# decimal.localcontext() so the global rounding mode never changes.
#
# Context parameters:
#   - prec=50: 29 integer digits (FIXED_POINT_MAX) plus 18 fractional digits
#     fit without rounding
#   - rounding=ROUND_HALF_EVEN: only used for intermediate non-directional math
#
_LENDING_DECIMAL_CONTEXT = getcontext()
_LENDING_DECIMAL_CONTEXT.prec = 50
_LENDING_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed number of balance slots per account.
MAX_BALANCES = 16

# Year length used to turn an APR into a per-second rate.
SECONDS_PER_YEAR = 31_536_000

# Fractional digits kept for shares, amounts, and indices.
FIXED_POINT_PLACES = 18

# Largest absolute value any stored quantity may take.
FIXED_POINT_MAX = Decimal(2) ** 96

ZERO = Decimal("0")
ONE = Decimal("1")
INFINITY = Decimal("Infinity")

# Engine policy defaults.
DEFAULT_MAX_PRICE_AGE = 60                      # seconds
DEFAULT_CONFIDENCE_MULTIPLIER = Decimal("2.12")  # ~96.6% two-sided normal band
DEFAULT_CLOSE_FACTOR = Decimal("0.5")
DEFAULT_MAX_ACCRUAL_INTERVAL = SECONDS_PER_YEAR  # one compounding step per year at most


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all expected, recoverable engine failures."""
    pass


class StalePrice(LendingError):
    """Raised when a price quote is missing or older than the allowed age."""
    pass


class InvalidPrice(LendingError):
    """Raised when a price quote is non-positive or carries a negative confidence."""
    pass


class CapExceeded(LendingError):
    """Raised when a deposit or borrow would push a bank past its cap."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when a bank cannot pay out without borrowing exceeding deposits."""
    pass


class HealthCheckFailed(LendingError):
    """Raised when an operation would leave an account below Initial health 1.0."""
    pass


class AccountHealthy(LendingError):
    """Raised when liquidation is attempted on an account that is not liquidatable."""
    pass


class InsufficientCollateral(LendingError):
    """Raised when the nominated collateral cannot cover the bonus-adjusted seizure."""
    pass


class BalanceSlotsFull(LendingError):
    """Raised when an account would need a 17th distinct bank balance."""
    pass


class MathOverflow(LendingError):
    """Raised when a computed quantity leaves the fixed-point range."""
    pass


class InvalidBank(LendingError):
    """Raised when a bank reference does not resolve."""
    pass


class InvalidAccount(LendingError):
    """Raised when an account reference does not resolve."""
    pass


class InvalidAmount(LendingError):
    """Raised when an operation amount is not a positive finite number."""
    pass


class IllegalBalanceState(LendingError):
    """Raised when a balance change would leave shares negative or on the wrong side."""
    pass


class IllegalLiquidation(LendingError):
    """Raised when a liquidation request is malformed or would worsen the liquidatee."""
    pass


class BankPaused(LendingError):
    """Raised when an operation touches a paused bank."""
    pass


class BankReduceOnly(LendingError):
    """Raised when a reduce-only bank receives a new deposit or borrow."""
    pass


class AccountDisabled(LendingError):
    """Raised when a disabled account participates in a mutating operation."""
    pass


class AccountNotBankrupt(LendingError):
    """Raised when bankruptcy handling is requested for an account with collateral left."""
    pass


# ============================================================================
# ENUMS
# ============================================================================

class RequirementType(Enum):
    """
    Weight regime used for valuation.

    INITIAL: strict weights gating risk-increasing operations (withdraw, borrow).
    MAINTENANCE: looser weights gating liquidation eligibility.
    EQUITY: unit weights, used for bankruptcy detection and reporting.
    """
    INITIAL = "initial"
    MAINTENANCE = "maintenance"
    EQUITY = "equity"


class OperationStatus(Enum):
    """
    Outcome of an engine operation.

    APPLIED: every check passed and the staged state was committed.
    REJECTED: a LendingError was raised; no state changed.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def check_fixed(value: Decimal, what: str = "value") -> Decimal:
    """Return value unchanged, or raise MathOverflow if it is not representable."""
    if not value.is_finite():
        raise MathOverflow(f"{what} is not finite: {value}")
    if abs(value) >= FIXED_POINT_MAX:
        raise MathOverflow(f"{what} exceeds fixed-point range: {value}")
    return value


def _scale(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_down(value: Decimal, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Quantize toward negative infinity after a range check."""
    check_fixed(value)
    return value.quantize(_scale(places), rounding=ROUND_FLOOR)


def round_up(value: Decimal, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Quantize toward positive infinity after a range check."""
    check_fixed(value)
    return value.quantize(_scale(places), rounding=ROUND_CEILING)


def mul_fixed(a: Decimal, b: Decimal, up: bool, places: int = FIXED_POINT_PLACES) -> Decimal:
    """
    Multiply two fixed-point values, rounding the product in one direction.

    The product is computed in a context that already rounds in the requested
    direction, so the 50-digit intermediate can never round the wrong way
    before quantization.
    """
    rounding = ROUND_CEILING if up else ROUND_FLOOR
    with localcontext() as ctx:
        ctx.rounding = rounding
        product = a * b
    check_fixed(product, "product")
    return product.quantize(_scale(places), rounding=rounding)


def div_fixed(a: Decimal, b: Decimal, up: bool, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Divide two fixed-point values, rounding the quotient in one direction."""
    if b == 0:
        raise MathOverflow(f"division of {a} by zero")
    rounding = ROUND_CEILING if up else ROUND_FLOOR
    with localcontext() as ctx:
        ctx.rounding = rounding
        quotient = a / b
    check_fixed(quotient, "quotient")
    return quotient.quantize(_scale(places), rounding=rounding)


def validate_amount(amount: Number, places: int = FIXED_POINT_PLACES) -> Decimal:
    """
    Parse an operation amount.

    Amounts must be positive, finite, representable, and have no more than
    `places` fractional digits.

    Raises:
        InvalidAmount: If any of the above does not hold.
        MathOverflow: If the amount is outside the fixed-point range.
    """
    try:
        value = to_decimal(amount)
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise InvalidAmount(f"not a number: {amount!r}") from exc
    if value.is_nan():
        raise InvalidAmount(f"amount is NaN: {amount!r}")
    check_fixed(value, "amount")
    if value <= 0:
        raise InvalidAmount(f"amount must be positive, got {value}")
    if value != value.quantize(_scale(places), rounding=ROUND_FLOOR):
        raise InvalidAmount(f"amount has more than {places} fractional digits: {value}")
    return value


# ============================================================================
# ENGINE CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Engine-wide policy parameters.

    Attributes:
        max_price_age: Oldest acceptable quote in seconds, unless a bank overrides it.
        confidence_multiplier: k in price_low = price - k * confidence.
        close_factor: Largest fraction of one liability repayable per liquidation.
        max_accrual_interval: Upper bound on the seconds compounded by one accrual.
        seconds_per_year: Year length used to scale APRs.
        fixed_point_places: Fractional digits kept for stored quantities.
    """
    max_price_age: int = DEFAULT_MAX_PRICE_AGE
    confidence_multiplier: Decimal = DEFAULT_CONFIDENCE_MULTIPLIER
    close_factor: Decimal = DEFAULT_CLOSE_FACTOR
    max_accrual_interval: int = DEFAULT_MAX_ACCRUAL_INTERVAL
    seconds_per_year: int = SECONDS_PER_YEAR
    fixed_point_places: int = FIXED_POINT_PLACES

    def __post_init__(self):
        if not isinstance(self.confidence_multiplier, Decimal):
            object.__setattr__(self, 'confidence_multiplier', to_decimal(self.confidence_multiplier))
        if not isinstance(self.close_factor, Decimal):
            object.__setattr__(self, 'close_factor', to_decimal(self.close_factor))

        if self.max_price_age < 0:
            raise ValueError(f"max_price_age must be non-negative, got {self.max_price_age}")
        if self.confidence_multiplier < 0:
            raise ValueError(
                f"confidence_multiplier must be non-negative, got {self.confidence_multiplier}"
            )
        if not (0 < self.close_factor <= 1):
            raise ValueError(f"close_factor must be in (0, 1], got {self.close_factor}")
        if self.max_accrual_interval < 1:
            raise ValueError(
                f"max_accrual_interval must be at least 1 second, got {self.max_accrual_interval}"
            )
        if self.seconds_per_year < 1:
            raise ValueError(f"seconds_per_year must be positive, got {self.seconds_per_year}")
        if not (9 <= self.fixed_point_places <= FIXED_POINT_PLACES):
            raise ValueError(
                f"fixed_point_places must be between 9 and {FIXED_POINT_PLACES}, "
                f"got {self.fixed_point_places}"
            )


def optional_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """to_decimal() that passes None through."""
    if value is None:
        return None
    return to_decimal(value)
