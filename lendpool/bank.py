"""
bank.py - Per-asset lending pools

A Bank is one pool for one asset inside a group. It is split the same way
every pooled instrument is: a BankConfig set by governance and a BankState
snapshot that changes with every operation. Both are frozen; every function
here returns a new Bank.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - BankConfig: weights, rate curve, liquidation terms, caps, operational state
   - BankState: indices, share totals, vault balances, outstanding fees
   - Bank: identity plus one config and one state

2. PURE FUNCTIONS:
   - accrue(): lazy interest accrual up to `now`
   - record_deposit / record_withdraw / record_borrow / record_repay:
     share bookkeeping for token-moving operations, with caps and
     liquidity checks
   - adjust_shares(): share bookkeeping for transfers between accounts
     (liquidation, bankruptcy) where no tokens enter or leave the vault
   - credit_insurance(): liquidation cut kept in the pool as insurance
     deposit shares
   - collect_fees(), cover_bad_debt(): vault movements

Pool invariants (checked on every mutation that could break them):
    total_borrow_amount <= total_deposit_amount
    liquidity_vault >= 0
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from .core import (
    FIXED_POINT_PLACES, ZERO, ONE,
    BankPaused, BankReduceOnly, CapExceeded, EngineConfig, IllegalBalanceState,
    InsufficientLiquidity, RequirementType,
    check_fixed, mul_fixed, optional_decimal, to_decimal,
)
from .interest_rate import InterestRateConfig, calculate_utilization
from .shares import (
    AccrualResult,
    asset_amount, asset_shares_for_deposit, asset_shares_for_withdraw,
    calculate_accrual, calculate_elapsed_seconds,
    liability_amount, liability_shares_for_borrow, liability_shares_for_repay,
    next_accrual_timestamp,
)


class BankOperationalState(str, Enum):
    """Whether a bank accepts new exposure."""
    OPERATIONAL = "OPERATIONAL"
    PAUSED = "PAUSED"            # every operation rejected
    REDUCE_ONLY = "REDUCE_ONLY"  # repay, withdraw, liquidation only


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BankConfig:
    """
    Governance-set parameters of one bank.

    Weight rules (maintenance is always the more permissive regime):
        0 <= asset_weight_init <= asset_weight_maint <= 1
        1 <= liability_weight_maint <= liability_weight_init

    insurance_fee_cut is the part of the liquidation bonus that goes to the
    insurance vault instead of the liquidator, so it cannot exceed the bonus.
    """
    asset_id: str
    oracle_ref: str
    asset_weight_init: Decimal
    asset_weight_maint: Decimal
    liability_weight_init: Decimal
    liability_weight_maint: Decimal
    interest_rate_config: InterestRateConfig
    liquidation_bonus: Decimal = Decimal("0.05")
    insurance_fee_cut: Decimal = Decimal("0.025")
    deposit_limit: Optional[Decimal] = None
    borrow_limit: Optional[Decimal] = None
    operational_state: BankOperationalState = BankOperationalState.OPERATIONAL
    max_price_age: Optional[int] = None

    def __post_init__(self):
        """Convert to Decimal and validate."""
        for name in ('asset_weight_init', 'asset_weight_maint', 'liability_weight_init',
                     'liability_weight_maint', 'liquidation_bonus', 'insurance_fee_cut'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        object.__setattr__(self, 'deposit_limit', optional_decimal(self.deposit_limit))
        object.__setattr__(self, 'borrow_limit', optional_decimal(self.borrow_limit))
        if not isinstance(self.operational_state, BankOperationalState):
            object.__setattr__(self, 'operational_state',
                               BankOperationalState(self.operational_state))

        if not self.asset_id or not self.asset_id.strip():
            raise ValueError("asset_id cannot be empty")
        if not self.oracle_ref or not self.oracle_ref.strip():
            raise ValueError("oracle_ref cannot be empty")
        if not (ZERO <= self.asset_weight_init <= self.asset_weight_maint <= ONE):
            raise ValueError(
                "asset weights must satisfy 0 <= init <= maint <= 1, got "
                f"init={self.asset_weight_init}, maint={self.asset_weight_maint}"
            )
        if not (ONE <= self.liability_weight_maint <= self.liability_weight_init):
            raise ValueError(
                "liability weights must satisfy 1 <= maint <= init, got "
                f"init={self.liability_weight_init}, maint={self.liability_weight_maint}"
            )
        if self.liquidation_bonus < 0:
            raise ValueError(f"liquidation_bonus must be non-negative, got {self.liquidation_bonus}")
        if not (ZERO <= self.insurance_fee_cut <= self.liquidation_bonus):
            raise ValueError(
                "insurance_fee_cut must be between 0 and liquidation_bonus, got "
                f"{self.insurance_fee_cut} (bonus {self.liquidation_bonus})"
            )
        for name in ('deposit_limit', 'borrow_limit'):
            limit = getattr(self, name)
            if limit is not None and limit < 0:
                raise ValueError(f"{name} must be non-negative, got {limit}")
        if self.max_price_age is not None and self.max_price_age < 0:
            raise ValueError(f"max_price_age must be non-negative, got {self.max_price_age}")

    def asset_weight(self, requirement: RequirementType) -> Decimal:
        if requirement == RequirementType.INITIAL:
            return self.asset_weight_init
        if requirement == RequirementType.MAINTENANCE:
            return self.asset_weight_maint
        return ONE

    def liability_weight(self, requirement: RequirementType) -> Decimal:
        if requirement == RequirementType.INITIAL:
            return self.liability_weight_init
        if requirement == RequirementType.MAINTENANCE:
            return self.liability_weight_maint
        return ONE


@dataclass(frozen=True, slots=True)
class BankState:
    """
    Mutable-by-replacement pool state.

    Vault balances are token amounts actually held by the pool:
        liquidity_vault: tokens available to withdraw or borrow
        insurance_vault: swept insurance fees
        fee_vault: group fees

    insurance_shares are deposit shares owned by the insurance fund. They
    are part of total_deposit_shares and hold liquidation cuts.
    """
    last_update: datetime
    deposit_index: Decimal = ONE
    borrow_index: Decimal = ONE
    total_deposit_shares: Decimal = ZERO
    total_borrow_shares: Decimal = ZERO
    liquidity_vault: Decimal = ZERO
    insurance_vault: Decimal = ZERO
    fee_vault: Decimal = ZERO
    outstanding_insurance_fees: Decimal = ZERO
    outstanding_group_fees: Decimal = ZERO
    uncovered_bad_debt: Decimal = ZERO
    insurance_shares: Decimal = ZERO

    def __post_init__(self):
        for name in ('deposit_index', 'borrow_index', 'total_deposit_shares',
                     'total_borrow_shares', 'liquidity_vault', 'insurance_vault',
                     'fee_vault', 'outstanding_insurance_fees', 'outstanding_group_fees',
                     'uncovered_bad_debt', 'insurance_shares'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))


@dataclass(frozen=True, slots=True)
class Bank:
    """One asset pool: identity, governance config, and current state."""
    bank_id: str
    group: str
    config: BankConfig
    state: BankState

    def __repr__(self) -> str:
        return (f"Bank({self.bank_id}: {self.config.asset_id} in {self.group}, "
                f"deposit_index={self.state.deposit_index}, "
                f"borrow_index={self.state.borrow_index})")


def create_bank(bank_id: str, group: str, config: BankConfig, created_at: datetime) -> Bank:
    """A fresh bank: both indices at 1, no shares, empty vaults."""
    if not bank_id or not bank_id.strip():
        raise ValueError("bank_id cannot be empty")
    return Bank(bank_id=bank_id, group=group, config=config,
                state=BankState(last_update=created_at))


# ============================================================================
# TOTALS AND VALUATION
# ============================================================================

def total_asset_amount(bank: Bank, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Total deposited amount (rounded down)."""
    return asset_amount(bank.state.total_deposit_shares, bank.state.deposit_index, places)


def total_liability_amount(bank: Bank, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Total borrowed amount (rounded up)."""
    return liability_amount(bank.state.total_borrow_shares, bank.state.borrow_index, places)


def total_asset_value(bank: Bank, price: Decimal, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Unweighted value of all deposits at `price`."""
    return mul_fixed(total_asset_amount(bank, places), price, False, places)


def total_liability_value(bank: Bank, price: Decimal, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Unweighted value of all borrows at `price`."""
    return mul_fixed(total_liability_amount(bank, places), price, True, places)


def utilization(bank: Bank, places: int = FIXED_POINT_PLACES) -> Decimal:
    return calculate_utilization(total_asset_amount(bank, places),
                                 total_liability_amount(bank, places))


def free_liquidity(bank: Bank, places: int = FIXED_POINT_PLACES) -> Decimal:
    """
    Vault tokens not owed to depositors.

    This is what fee collection may take: the vault must always keep enough
    to cover total deposits minus total borrows.
    """
    owed = total_asset_amount(bank, places) - total_liability_amount(bank, places)
    return bank.state.liquidity_vault - max(owed, ZERO)


# ============================================================================
# ACCRUAL
# ============================================================================

def accrue(bank: Bank, now: datetime, config: EngineConfig) -> Tuple[Bank, AccrualResult]:
    """
    Bring the bank's indices up to `now`.

    A call less than one second after the previous accrual returns the bank
    unchanged.
    """
    state = bank.state
    elapsed, clamped = calculate_elapsed_seconds(
        state.last_update, now, config.max_accrual_interval
    )
    result = calculate_accrual(
        deposit_index=state.deposit_index,
        borrow_index=state.borrow_index,
        total_deposit_shares=state.total_deposit_shares,
        total_borrow_shares=state.total_borrow_shares,
        rate_config=bank.config.interest_rate_config,
        elapsed_seconds=elapsed,
        seconds_per_year=config.seconds_per_year,
        places=config.fixed_point_places,
    )
    if elapsed == 0:
        return bank, result

    new_state = replace(
        state,
        deposit_index=result.deposit_index,
        borrow_index=result.borrow_index,
        outstanding_insurance_fees=check_fixed(
            state.outstanding_insurance_fees + result.insurance_fees, "insurance fees"),
        outstanding_group_fees=check_fixed(
            state.outstanding_group_fees + result.group_fees, "group fees"),
        last_update=next_accrual_timestamp(state.last_update, now, elapsed, clamped),
    )
    return replace(bank, state=new_state), result


# ============================================================================
# SHARE BOOKKEEPING
# ============================================================================

def require_not_paused(bank: Bank) -> None:
    if bank.config.operational_state == BankOperationalState.PAUSED:
        raise BankPaused(f"bank {bank.bank_id} is paused")


def require_accepts_new_exposure(bank: Bank) -> None:
    require_not_paused(bank)
    if bank.config.operational_state == BankOperationalState.REDUCE_ONLY:
        raise BankReduceOnly(f"bank {bank.bank_id} only accepts repayments and withdrawals")


def adjust_shares(
    bank: Bank,
    deposit_shares: Decimal = ZERO,
    borrow_shares: Decimal = ZERO,
    liquidity: Decimal = ZERO,
    places: int = FIXED_POINT_PLACES,
    check_utilization: bool = True,
) -> Bank:
    """
    Apply share-total and vault deltas, enforcing the pool invariants.

    Transfers between positions inside the pool pass
    check_utilization=False: no tokens leave the vault, so they cannot
    create a shortfall even when the bank is fully borrowed.

    Raises:
        IllegalBalanceState: If a share total would go negative.
        InsufficientLiquidity: If the vault would go negative, or borrows
            would exceed deposits after a change that removes deposits or
            adds borrows.
    """
    state = bank.state
    new_deposit_shares = check_fixed(state.total_deposit_shares + deposit_shares, "deposit shares")
    new_borrow_shares = check_fixed(state.total_borrow_shares + borrow_shares, "borrow shares")
    new_vault = check_fixed(state.liquidity_vault + liquidity, "liquidity vault")

    if new_deposit_shares < 0 or new_borrow_shares < 0:
        raise IllegalBalanceState(
            f"bank {bank.bank_id} share totals would go negative: "
            f"deposits={new_deposit_shares}, borrows={new_borrow_shares}"
        )
    if new_vault < 0:
        raise InsufficientLiquidity(
            f"bank {bank.bank_id} vault holds {state.liquidity_vault}, needs {-liquidity}"
        )

    updated = replace(bank, state=replace(
        state,
        total_deposit_shares=new_deposit_shares,
        total_borrow_shares=new_borrow_shares,
        liquidity_vault=new_vault,
    ))

    if check_utilization and (deposit_shares < 0 or borrow_shares > 0):
        deposits = total_asset_amount(updated, places)
        borrows = total_liability_amount(updated, places)
        if borrows > deposits:
            raise InsufficientLiquidity(
                f"bank {bank.bank_id} would have borrows {borrows} above deposits {deposits}"
            )
    return updated


def record_deposit(bank: Bank, amount: Decimal,
                   places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Book a deposit of `amount` tokens into the vault.

    Returns:
        (updated bank, asset shares minted)
    """
    require_accepts_new_exposure(bank)
    shares = asset_shares_for_deposit(amount, bank.state.deposit_index, places)
    updated = adjust_shares(bank, deposit_shares=shares, liquidity=amount, places=places)
    limit = bank.config.deposit_limit
    if limit is not None:
        new_total = total_asset_amount(updated, places)
        if new_total > limit:
            raise CapExceeded(
                f"bank {bank.bank_id} deposits would reach {new_total}, cap is {limit}"
            )
    return updated, shares


def record_withdraw(bank: Bank, amount: Decimal,
                    places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Book a withdrawal of `amount` tokens out of the vault.

    Returns:
        (updated bank, asset shares burned)
    """
    require_not_paused(bank)
    shares = asset_shares_for_withdraw(amount, bank.state.deposit_index, places)
    return adjust_shares(bank, deposit_shares=-shares, liquidity=-amount, places=places), shares


def record_withdraw_shares(bank: Bank, shares: Decimal,
                           places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Burn an exact number of asset shares (withdraw-all).

    Returns:
        (updated bank, tokens paid out, rounded down)
    """
    require_not_paused(bank)
    amount = asset_amount(shares, bank.state.deposit_index, places)
    return adjust_shares(bank, deposit_shares=-shares, liquidity=-amount, places=places), amount


def record_borrow(bank: Bank, amount: Decimal,
                  places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Book a borrow of `amount` tokens out of the vault.

    Returns:
        (updated bank, liability shares minted)
    """
    require_accepts_new_exposure(bank)
    shares = liability_shares_for_borrow(amount, bank.state.borrow_index, places)
    updated = adjust_shares(bank, borrow_shares=shares, liquidity=-amount, places=places)
    limit = bank.config.borrow_limit
    if limit is not None:
        new_total = total_liability_amount(updated, places)
        if new_total > limit:
            raise CapExceeded(
                f"bank {bank.bank_id} borrows would reach {new_total}, cap is {limit}"
            )
    return updated, shares


def record_repay(bank: Bank, amount: Decimal,
                 places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Book a repayment of `amount` tokens into the vault.

    Returns:
        (updated bank, liability shares burned)
    """
    require_not_paused(bank)
    shares = liability_shares_for_repay(amount, bank.state.borrow_index, places)
    return adjust_shares(bank, borrow_shares=-shares, liquidity=amount, places=places), shares


def record_repay_shares(bank: Bank, shares: Decimal,
                        places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Burn an exact number of liability shares (repay-all).

    Returns:
        (updated bank, tokens collected, rounded up)
    """
    require_not_paused(bank)
    amount = liability_amount(shares, bank.state.borrow_index, places)
    return adjust_shares(bank, borrow_shares=-shares, liquidity=amount, places=places), amount


# ============================================================================
# VAULT MOVEMENTS
# ============================================================================

def insurance_claim(bank: Bank, places: int = FIXED_POINT_PLACES) -> Decimal:
    """Tokens the insurance fund's deposit shares are worth, rounded down."""
    return asset_amount(bank.state.insurance_shares, bank.state.deposit_index, places)


def credit_insurance(bank: Bank, amount: Decimal,
                     places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Credit `amount` tokens of seized collateral to the insurance fund.

    The tokens stay in the liquidity vault. The fund receives deposit
    shares at the current deposit index, minted rounding down, and earns
    the lend rate like any other depositor.

    Returns:
        (updated bank, asset shares minted)
    """
    shares = asset_shares_for_deposit(amount, bank.state.deposit_index, places)
    updated = adjust_shares(bank, deposit_shares=shares, places=places)
    return replace(updated, state=replace(
        updated.state,
        insurance_shares=check_fixed(updated.state.insurance_shares + shares, "insurance shares"),
    )), shares


def collect_fees(bank: Bank, places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal, Decimal]:
    """
    Sweep outstanding protocol fees out of the liquidity vault.

    Only free liquidity can be swept; insurance fees are paid first and
    anything that does not fit stays outstanding.

    Returns:
        (updated bank, insurance fees moved, group fees moved)
    """
    state = bank.state
    available = max(free_liquidity(bank, places), ZERO)
    insurance = min(state.outstanding_insurance_fees, available)
    group = min(state.outstanding_group_fees, available - insurance)

    new_state = replace(
        state,
        liquidity_vault=state.liquidity_vault - insurance - group,
        insurance_vault=check_fixed(state.insurance_vault + insurance, "insurance vault"),
        fee_vault=check_fixed(state.fee_vault + group, "fee vault"),
        outstanding_insurance_fees=state.outstanding_insurance_fees - insurance,
        outstanding_group_fees=state.outstanding_group_fees - group,
    )
    return replace(bank, state=new_state), insurance, group


def cover_bad_debt(bank: Bank, amount: Decimal,
                   places: int = FIXED_POINT_PLACES) -> Tuple[Bank, Decimal]:
    """
    Cover written-off debt from the insurance fund.

    The insurance vault pays first, moving tokens back into the liquidity
    vault. The fund's deposit shares pay next and are burned, which takes
    their claim off total deposits. Whatever neither can cover is recorded
    as uncovered bad debt; indices are never reduced.

    Returns:
        (updated bank, amount covered by insurance)
    """
    state = bank.state
    from_vault = min(amount, state.insurance_vault)
    from_shares = min(amount - from_vault, insurance_claim(bank, places))
    burned = ZERO
    if from_shares > 0:
        burned = min(asset_shares_for_withdraw(from_shares, state.deposit_index, places),
                     state.insurance_shares)
    covered = from_vault + from_shares

    updated = adjust_shares(bank, deposit_shares=-burned, liquidity=from_vault,
                            places=places, check_utilization=False)
    new_state = replace(
        updated.state,
        insurance_vault=state.insurance_vault - from_vault,
        insurance_shares=state.insurance_shares - burned,
        uncovered_bad_debt=check_fixed(
            state.uncovered_bad_debt + (amount - covered), "bad debt"),
    )
    return replace(bank, state=new_state), covered
