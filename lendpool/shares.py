"""
shares.py - Share/amount conversion and lazy index compounding

A bank never updates individual balances when interest accrues. Every
balance is stored as shares; the bank keeps one deposit index and one borrow
index, and the absolute amount of a balance is shares * index. Accruing
interest is then a single multiplication per index.

Rounding always favours the pool:

    conversion                        rounding
    --------------------------------  --------
    shares for a new asset            down
    shares removed from an asset      up
    shares for a new liability        up
    shares removed from a liability   down
    asset shares -> amount            down
    liability shares -> amount        up
    compounded deposit index          down
    compounded borrow index           up

Accrual compounds once per call, by (1 + rate * dt / year), over the whole
number of seconds elapsed. dt = 0 is a no-op, so calling accrual twice at the
same instant cannot compound twice.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Tuple

from .core import (
    FIXED_POINT_PLACES, ZERO, ONE,
    MathOverflow, check_fixed, div_fixed, mul_fixed,
)
from .interest_rate import (
    InterestRateConfig, InterestRates, calculate_interest_rates, calculate_utilization,
)


# ============================================================================
# AMOUNT <-> SHARE CONVERSION
# ============================================================================

def amount_to_shares(amount: Decimal, index: Decimal, round_up: bool,
                     places: int = FIXED_POINT_PLACES) -> Decimal:
    """shares = amount / index, rounded in the requested direction."""
    if index <= 0:
        raise MathOverflow(f"index must be positive, got {index}")
    return div_fixed(amount, index, round_up, places)


def shares_to_amount(shares: Decimal, index: Decimal, round_up: bool,
                     places: int = FIXED_POINT_PLACES) -> Decimal:
    """amount = shares * index, rounded in the requested direction."""
    return mul_fixed(shares, index, round_up, places)


def asset_shares_for_deposit(amount: Decimal, deposit_index: Decimal,
                             places: int = FIXED_POINT_PLACES) -> Decimal:
    return amount_to_shares(amount, deposit_index, False, places)


def asset_shares_for_withdraw(amount: Decimal, deposit_index: Decimal,
                              places: int = FIXED_POINT_PLACES) -> Decimal:
    return amount_to_shares(amount, deposit_index, True, places)


def liability_shares_for_borrow(amount: Decimal, borrow_index: Decimal,
                                places: int = FIXED_POINT_PLACES) -> Decimal:
    return amount_to_shares(amount, borrow_index, True, places)


def liability_shares_for_repay(amount: Decimal, borrow_index: Decimal,
                               places: int = FIXED_POINT_PLACES) -> Decimal:
    return amount_to_shares(amount, borrow_index, False, places)


def asset_amount(shares: Decimal, deposit_index: Decimal,
                 places: int = FIXED_POINT_PLACES) -> Decimal:
    """Amount a depositor can claim: rounded down."""
    return shares_to_amount(shares, deposit_index, False, places)


def liability_amount(shares: Decimal, borrow_index: Decimal,
                     places: int = FIXED_POINT_PLACES) -> Decimal:
    """Amount a borrower owes: rounded up."""
    return shares_to_amount(shares, borrow_index, True, places)


# ============================================================================
# ACCRUAL
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccrualResult:
    """
    Outcome of one accrual step.

    elapsed_seconds is the dt actually compounded (after clamping); when it
    is zero every other field equals its input and the fees are zero.
    """
    deposit_index: Decimal
    borrow_index: Decimal
    insurance_fees: Decimal
    group_fees: Decimal
    elapsed_seconds: int
    rates: InterestRates


def calculate_elapsed_seconds(last_update: datetime, now: datetime,
                              max_interval: int) -> Tuple[int, bool]:
    """
    Whole seconds to compound between last_update and now.

    Returns:
        (seconds, clamped). seconds is 0 when now is not at least one second
        past last_update; clamped is True when max_interval cut it short.
    """
    elapsed = int((now - last_update).total_seconds())
    if elapsed <= 0:
        return 0, False
    if elapsed > max_interval:
        return max_interval, True
    return elapsed, False


def compound_index(index: Decimal, rate: Decimal, elapsed_seconds: int,
                   seconds_per_year: int, round_up: bool,
                   places: int = FIXED_POINT_PLACES) -> Decimal:
    """
    index * (1 + rate * dt / year), rounded in the requested direction.

    The result is never below the input index, whatever the rounding.
    """
    if elapsed_seconds <= 0 or rate <= 0:
        return index
    growth = ONE + rate * Decimal(elapsed_seconds) / Decimal(seconds_per_year)
    check_fixed(growth, "index growth")
    new_index = mul_fixed(index, growth, round_up, places)
    return max(new_index, index)


def calculate_accrual(
    deposit_index: Decimal,
    borrow_index: Decimal,
    total_deposit_shares: Decimal,
    total_borrow_shares: Decimal,
    rate_config: InterestRateConfig,
    elapsed_seconds: int,
    seconds_per_year: int,
    places: int = FIXED_POINT_PLACES,
) -> AccrualResult:
    """
    Compound both indices over elapsed_seconds using pre-accrual utilization.

    Fees are the protocol's share of the borrow interest earned over the
    period, split between insurance and group in proportion to their
    fee fractions. Fees round down; the index rounding already keeps the
    pool whole.
    """
    total_deposits = asset_amount(total_deposit_shares, deposit_index, places)
    total_borrows = liability_amount(total_borrow_shares, borrow_index, places)
    rates = calculate_interest_rates(
        rate_config, calculate_utilization(total_deposits, total_borrows)
    )

    if elapsed_seconds <= 0:
        return AccrualResult(
            deposit_index=deposit_index,
            borrow_index=borrow_index,
            insurance_fees=ZERO,
            group_fees=ZERO,
            elapsed_seconds=0,
            rates=rates,
        )

    new_borrow_index = compound_index(
        borrow_index, rates.borrow_rate, elapsed_seconds, seconds_per_year, True, places
    )
    new_deposit_index = compound_index(
        deposit_index, rates.lend_rate, elapsed_seconds, seconds_per_year, False, places
    )

    period = Decimal(elapsed_seconds) / Decimal(seconds_per_year)
    insurance_fees = mul_fixed(total_borrows, rates.insurance_fee_rate * period, False, places)
    group_fees = mul_fixed(total_borrows, rates.group_fee_rate * period, False, places)

    return AccrualResult(
        deposit_index=new_deposit_index,
        borrow_index=new_borrow_index,
        insurance_fees=insurance_fees,
        group_fees=group_fees,
        elapsed_seconds=elapsed_seconds,
        rates=rates,
    )


def next_accrual_timestamp(last_update: datetime, now: datetime,
                           elapsed_seconds: int, clamped: bool) -> datetime:
    """
    New last-accrual timestamp.

    Advances by exactly the compounded seconds so sub-second remainders are
    kept for the next call; a clamped accrual jumps straight to now.
    """
    if clamped:
        return now
    return last_update + timedelta(seconds=elapsed_seconds)
