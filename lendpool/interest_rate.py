"""
interest_rate.py - Kinked utilization curve for bank interest rates

Pure functions mapping a bank's utilization to borrow and lend APRs.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs/outputs):
   - InterestRateConfig: curve parameters and protocol fee fractions
   - InterestRates: every rate derived from one utilization reading

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - No hidden state: identical inputs always give identical outputs,
     which is what makes repeated accrual inside one second a no-op

3. INSPECTION (rate_curve):
   - Samples the curve with numpy for plotting and audit reports

Key Formulas:
    u = total_borrow_amount / total_deposit_amount   (0 with no deposits)

    u <= u_opt:  borrow = base + (u / u_opt) * (optimal - base)
    u >  u_opt:  borrow = optimal + ((u - u_opt) / (1 - u_opt)) * (max - optimal)

    lend = borrow * u * (1 - f),   f = insurance_fee_fraction + group_fee_fraction

Example: u_opt = 0.8, base = 1%, optimal = 10%, max = 100%, u = 0.4
    borrow = 0.01 + 0.5 * 0.09 = 0.055
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

import numpy as np

from .core import ZERO, ONE, to_decimal


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class InterestRateConfig:
    """
    Immutable curve parameters for one bank.

    All rates are APRs expressed as fractions (0.10 for 10%).
    """
    optimal_utilization: Decimal     # Kink position, strictly between 0 and 1
    base_rate: Decimal               # Borrow APR at zero utilization
    optimal_rate: Decimal            # Borrow APR at the kink
    max_rate: Decimal                # Borrow APR at full utilization
    insurance_fee_fraction: Decimal = ZERO  # Share of borrow interest kept for insurance
    group_fee_fraction: Decimal = ZERO      # Share of borrow interest kept for the group

    def __post_init__(self):
        """Convert to Decimal and validate the curve shape."""
        for name in ('optimal_utilization', 'base_rate', 'optimal_rate', 'max_rate',
                     'insurance_fee_fraction', 'group_fee_fraction'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

        if not (ZERO < self.optimal_utilization < ONE):
            raise ValueError(
                f"optimal_utilization must be in (0, 1), got {self.optimal_utilization}"
            )
        if self.base_rate < 0:
            raise ValueError(f"base_rate must be non-negative, got {self.base_rate}")
        if not (self.base_rate <= self.optimal_rate <= self.max_rate):
            raise ValueError(
                "rates must satisfy base_rate <= optimal_rate <= max_rate, got "
                f"{self.base_rate}, {self.optimal_rate}, {self.max_rate}"
            )
        if self.insurance_fee_fraction < 0 or self.group_fee_fraction < 0:
            raise ValueError("fee fractions must be non-negative")
        if self.protocol_fee_fraction >= ONE:
            raise ValueError(
                f"fee fractions must sum to less than 1, got {self.protocol_fee_fraction}"
            )

    @property
    def protocol_fee_fraction(self) -> Decimal:
        """Total share of borrow interest retained by the protocol."""
        return self.insurance_fee_fraction + self.group_fee_fraction


@dataclass(frozen=True, slots=True)
class InterestRates:
    """Rates derived from a single utilization reading."""
    utilization: Decimal
    borrow_rate: Decimal
    lend_rate: Decimal
    insurance_fee_rate: Decimal   # APR on borrowed amount routed to insurance
    group_fee_rate: Decimal       # APR on borrowed amount routed to the group


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_utilization(total_deposit_amount: Decimal, total_borrow_amount: Decimal) -> Decimal:
    """
    Fraction of deposits currently lent out, clamped to [0, 1].

    Returns 0 when nothing is deposited.
    """
    if total_deposit_amount <= 0:
        return ZERO
    utilization = total_borrow_amount / total_deposit_amount
    if utilization < 0:
        return ZERO
    if utilization > 1:
        return ONE
    return utilization


def calculate_borrow_rate(config: InterestRateConfig, utilization: Decimal) -> Decimal:
    """Borrow APR at the given utilization, following the two-segment curve."""
    u = min(max(to_decimal(utilization), ZERO), ONE)
    u_opt = config.optimal_utilization

    if u <= u_opt:
        return config.base_rate + (u / u_opt) * (config.optimal_rate - config.base_rate)

    excess = (u - u_opt) / (ONE - u_opt)
    return config.optimal_rate + excess * (config.max_rate - config.optimal_rate)


def calculate_interest_rates(config: InterestRateConfig, utilization: Decimal) -> InterestRates:
    """
    All rates for one utilization reading.

    Args:
        config: Curve parameters and fee fractions
        utilization: Borrowed / deposited, normally from calculate_utilization()

    Returns:
        InterestRates with borrow, lend and fee APRs.
    """
    u = min(max(to_decimal(utilization), ZERO), ONE)
    borrow_rate = calculate_borrow_rate(config, u)
    lend_rate = borrow_rate * u * (ONE - config.protocol_fee_fraction)
    return InterestRates(
        utilization=u,
        borrow_rate=borrow_rate,
        lend_rate=lend_rate,
        insurance_fee_rate=borrow_rate * config.insurance_fee_fraction,
        group_fee_rate=borrow_rate * config.group_fee_fraction,
    )


# ============================================================================
# INSPECTION
# ============================================================================

def rate_curve(
    config: InterestRateConfig,
    n_points: int = 101,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Sample the curve on an evenly spaced utilization grid.

    Floats are fine here: the output is for charts and reports, never for
    accrual.

    Returns:
        (utilization, borrow_rate, lend_rate) arrays of length n_points.
    """
    if n_points < 2:
        raise ValueError(f"n_points must be at least 2, got {n_points}")

    u = np.linspace(0.0, 1.0, n_points)
    u_opt = float(config.optimal_utilization)
    base = float(config.base_rate)
    optimal = float(config.optimal_rate)
    maximum = float(config.max_rate)

    borrow = np.where(
        u <= u_opt,
        base + (u / u_opt) * (optimal - base),
        optimal + ((u - u_opt) / (1.0 - u_opt)) * (maximum - optimal),
    )
    lend = borrow * u * (1.0 - float(config.protocol_fee_fraction))
    return u, borrow, lend
