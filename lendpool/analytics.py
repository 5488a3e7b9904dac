"""
analytics.py - Price-shock sweeps and liquidation prices

Read-only risk analytics built on HealthReport. Nothing here feeds back into
engine state; float arithmetic is acceptable and numpy does the sweeps.

Every weighted value in a report is linear in its bank's price (the quote's
confidence band scales with the price), so shocking one bank's price by a
factor s gives:

    collateral(s) = C_other + C_bank * s
    liability(s)  = L_other + L_bank * s
    health(s)     = collateral(s) / liability(s)

The price at which health crosses 1.0 follows in closed form:

    s* = (L_other - C_other) / (C_bank - L_bank)
"""

from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from .core import ONE, ZERO
from .risk import HealthReport


Numeric = Union[float, np.ndarray]


# ============================================================================
# INTERNAL FLOAT IMPLEMENTATION
# ============================================================================

def _split_values(report: HealthReport, bank_id: str) -> Tuple[float, float, float, float]:
    """(collateral from other banks, collateral from bank_id, liabilities other, liabilities bank_id)."""
    c_other = c_bank = l_other = l_bank = 0.0
    for valuation in report.valuations:
        if valuation.bank_id == bank_id:
            c_bank += float(valuation.asset_value)
            l_bank += float(valuation.liability_value)
        else:
            c_other += float(valuation.asset_value)
            l_other += float(valuation.liability_value)
    return c_other, c_bank, l_other, l_bank


def _health_float(c_other: float, c_bank: float, l_other: float, l_bank: float,
                  shocks: Numeric) -> Numeric:
    """Vectorized health factor for multiplicative shocks; inf where debt is zero."""
    s = np.asarray(shocks, dtype=float)
    collateral = c_other + c_bank * s
    liabilities = l_other + l_bank * s
    with np.errstate(divide='ignore', invalid='ignore'):
        health = np.where(liabilities > 0, collateral / liabilities, np.inf)
    return health


# ============================================================================
# PUBLIC INTERFACE
# ============================================================================

def health_under_price_shocks(report: HealthReport, bank_id: str,
                              shocks: Sequence[float]) -> np.ndarray:
    """
    Health factor after multiplying bank_id's price by each shock.

    Args:
        report: Valuation of the account (any requirement)
        bank_id: Bank whose price moves
        shocks: Multiplicative factors, e.g. np.linspace(0.5, 1.5, 11)

    Returns:
        Array of health factors, same length as shocks.
    """
    if np.any(np.asarray(shocks, dtype=float) < 0):
        raise ValueError("price shocks must be non-negative")
    return np.atleast_1d(_health_float(*_split_values(report, bank_id), shocks))


def shortfall_under_price_shocks(reports: Iterable[HealthReport], bank_id: str,
                                 shocks: Sequence[float]) -> np.ndarray:
    """
    Total weighted shortfall across accounts for each shock.

    Shortfall of one account is max(liabilities - collateral, 0); the sum is
    the value that would have to be liquidated or written off.
    """
    s = np.asarray(shocks, dtype=float)
    total = np.zeros_like(s)
    for report in reports:
        c_other, c_bank, l_other, l_bank = _split_values(report, bank_id)
        gap = (l_other + l_bank * s) - (c_other + c_bank * s)
        total += np.maximum(gap, 0.0)
    return total


def liquidation_price(report: HealthReport, bank_id: str,
                      current_price: Decimal) -> Optional[Decimal]:
    """
    Price of bank_id at which the account's health factor equals 1.0.

    Returns None when moving this price alone cannot bring health to 1.0
    (the bank does not appear in the account, or the crossing would need a
    non-positive price).

    Example:
        Collateral 10 ETH at 2000 with weight 0.8 (16000), debt 12000 USDC:
        liquidation_price(report, "eth", Decimal("2000")) -> 1500
    """
    c_other, c_bank = ZERO, ZERO
    l_other, l_bank = ZERO, ZERO
    for valuation in report.valuations:
        if valuation.bank_id == bank_id:
            c_bank += valuation.asset_value
            l_bank += valuation.liability_value
        else:
            c_other += valuation.asset_value
            l_other += valuation.liability_value

    slope = c_bank - l_bank
    if slope == 0:
        return None
    shock = (l_other - c_other) / slope
    if shock <= 0:
        return None
    return (current_price * shock).quantize(Decimal("0.00000001"), rounding=ROUND_HALF_EVEN)


def distance_to_liquidation(report: HealthReport, bank_id: str) -> Optional[Decimal]:
    """
    Fractional price move of bank_id that brings health to 1.0.

    Negative for collateral (price must fall), positive for debt (price must
    rise). None when no such move exists.
    """
    crossing = liquidation_price(report, bank_id, ONE)
    if crossing is None:
        return None
    return crossing - ONE
